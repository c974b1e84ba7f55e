"""References and nodes: the lazy object graph over a CXI file.

A :class:`Reference` names a child of an open node without touching the file.
Opening it acquires a container handle and yields a node; closing the node
releases its handle and every handle below it. Nodes never open their
children on their own, so the number of live handles follows what the caller
actually walks into.

    Reference (unopened) --open()--> node (open) --close()--> closed

A closed reference cannot be opened again; call :meth:`Reference.rederive`
for a fresh one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from pycxi.errors import PreconditionError
from pycxi.storage.container import Container, Handle
from pycxi.storage.discovery import SuffixEnumerator

if TYPE_CHECKING:
    from pycxi.entities import Group

N = TypeVar("N", bound="Node")


@dataclass(frozen=True)
class TreeContext:
    """What every node of one file shares: the container, discovery strategy and logger."""

    container: Container
    enumerator: SuffixEnumerator
    logger: logging.Logger


class NodeState(str, Enum):
    UNOPENED = "unopened"
    OPEN = "open"
    CLOSED = "closed"


class Reference(Generic[N]):
    """An unopened child: the parent node plus the child's name.

    The parent is not owned; a reference is only usable while its parent is open.
    """

    def __init__(self, parent: Group, name: str, node_type: type[N]) -> None:
        self.parent = parent
        self.name = name
        self.node_type = node_type
        self.entity: N | None = None
        self._closed = False

    @property
    def state(self) -> NodeState:
        if self._closed:
            return NodeState.CLOSED
        if self.entity is not None:
            return NodeState.OPEN
        return NodeState.UNOPENED

    @property
    def parent_handle(self) -> Handle:
        return self.parent.handle

    @property
    def path(self) -> str:
        return f"{self.parent.path.rstrip('/')}/{self.name}"

    def open(self) -> N:
        """Open the referenced node. Opening an open reference returns the same node."""
        state = self.state
        if state is NodeState.CLOSED:
            raise PreconditionError(f"{self.path} was closed; use rederive() to get a fresh reference.")
        if state is NodeState.OPEN:
            return self.entity
        self.entity = self.node_type._open(self)
        return self.entity

    def close(self) -> None:
        """Close the referenced node (and its subtree) if it is open."""
        if self.state is NodeState.OPEN:
            self.entity.close()

    def rederive(self) -> Reference[N]:
        """Return a fresh unopened reference to the same child.

        The parent's child list is updated to hold the new reference.
        """
        state = self.state
        if state is NodeState.OPEN:
            raise PreconditionError(f"{self.path} is still open; close it before rederiving.")
        if state is NodeState.UNOPENED:
            return self
        return self.parent._rederive(self)

    def _mark_closed(self) -> None:
        self._closed = True
        self.entity = None

    def __repr__(self) -> str:
        return f"Reference({self.node_type.__name__}, '{self.name}', {self.state.value})"


class Node:
    """Base class for everything that holds a container handle."""

    def __init__(self, context: TreeContext, handle: Handle, reference: Reference | None = None) -> None:
        self._context = context
        self._handle: Handle | None = handle
        self._path = handle.path
        self.reference = reference

    # --- Opening ---

    @classmethod
    def _acquire(cls, container: Container, parent: Handle, name: str) -> Handle:
        raise NotImplementedError

    @classmethod
    def _release_handle(cls, container: Container, handle: Handle) -> None:
        raise NotImplementedError

    @classmethod
    def _open(cls: type[N], reference: Reference[N]) -> N:
        parent = reference.parent
        parent._require_open()
        context = parent._context
        handle = cls._acquire(context.container, parent.handle, reference.name)
        try:
            node = cls(context, handle, reference)
            node._load()
        except Exception:
            cls._release_handle(context.container, handle)
            context.logger.debug("failed to open %s", reference.path)
            raise
        context.logger.debug("opened %s %s", cls.__name__.lower(), node.path)
        return node

    def _load(self) -> None:
        """Populate the node from the file after its handle was acquired."""

    # --- State ---

    @property
    def is_open(self) -> bool:
        return self._handle is not None

    @property
    def handle(self) -> Handle:
        self._require_open()
        return self._handle

    @property
    def path(self) -> str:
        return self._path

    @property
    def container(self) -> Container:
        return self._context.container

    @property
    def logger(self) -> logging.Logger:
        return self._context.logger

    def _require_open(self) -> None:
        if self._handle is None:
            raise PreconditionError(f"{type(self).__name__} {self._path} is closed.")

    # --- Closing ---

    def close(self) -> None:
        """Release every open node below this one, then this node's own handle."""
        if self._handle is None:
            raise PreconditionError(f"{type(self).__name__} {self._path} already closed.")
        self._close_children()
        self._release()
        self._handle = None
        if self.reference is not None:
            self.reference._mark_closed()
        self.logger.debug("closed %s %s", type(self).__name__.lower(), self._path)

    def _close_children(self) -> None:
        pass

    def _release(self) -> None:
        type(self)._release_handle(self.container, self._handle)

    def __enter__(self: N) -> N:
        return self

    def __exit__(self, *args: Any) -> None:
        if self.is_open:
            self.close()

    def __repr__(self) -> str:
        status = "open" if self.is_open else "closed"
        return f"{type(self).__name__}('{self._path}', {status})"
