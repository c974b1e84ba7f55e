"""HDF5 container handles for CXI files.

Wraps an ``h5py.File`` behind a small set of group/dataset primitives that
hand out opaque :class:`Handle` objects. Every handle that is acquired must be
released exactly once; the container keeps count so that callers can check
that a full open/close cycle leaves nothing behind.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Sequence

import h5py
import numpy as np

from pycxi.errors import PreconditionError, ResourceError

logger = logging.getLogger(__name__)

GROUP = "group"
DATASET = "dataset"

# Public open modes mapped onto h5py file modes
_MODES = {"r": "r", "w": "w", "a": "r+"}


class Handle:
    """An open group or dataset inside a :class:`Container`.

    Handles are opaque to the tree model: only the container that issued a
    handle can dereference it.
    """

    __slots__ = ("kind", "path", "_obj")

    def __init__(self, kind: str, obj: h5py.Group | h5py.Dataset) -> None:
        self.kind = kind
        self.path: str = obj.name
        self._obj: h5py.Group | h5py.Dataset | None = obj

    @property
    def is_open(self) -> bool:
        return self._obj is not None

    def __repr__(self) -> str:
        status = "open" if self.is_open else "released"
        return f"Handle({self.kind}, '{self.path}', {status})"


class Container:
    """A CXI file opened through h5py.

    Args:
        path: Location of the file.
        mode: ``"r"`` read-only, ``"w"`` create (truncating), ``"a"`` read/write
            an existing file.
    """

    def __init__(self, path: str | Path, file: h5py.File, mode: str) -> None:
        self.path = Path(path)
        self.mode = mode
        self._file: h5py.File | None = file
        self._open: dict[int, Handle] = {}
        self.root = self._acquire(GROUP, file)

    @classmethod
    def open(cls, path: str | Path, mode: str = "r") -> Container:
        if mode not in _MODES:
            raise PreconditionError(f"Invalid mode '{mode}'. Use one of: {', '.join(_MODES)}")
        try:
            file = h5py.File(str(path), _MODES[mode])
        except (OSError, ValueError) as e:
            raise ResourceError(f"Could not open {path} (mode '{mode}'): {e}") from e
        logger.debug("opened container %s (mode %s)", path, mode)
        return cls(path, file, mode)

    @property
    def is_open(self) -> bool:
        return self._file is not None

    @property
    def writable(self) -> bool:
        return self.mode != "r"

    @property
    def open_handle_count(self) -> int:
        """Number of handles currently held, including the root group."""
        return len(self._open)

    def close(self) -> None:
        """Release the root handle and close the file.

        Any handle still held at this point is a leak; it is released and
        reported.
        """
        if self._file is None:
            raise PreconditionError(f"Container {self.path} already closed.")
        leaked = [h for h in self._open.values() if h is not self.root]
        if leaked:
            logger.warning("closing %s with %d open handle(s): %s", self.path, len(leaked), leaked)
        for handle in list(self._open.values()):
            self._release(handle, handle.kind)
        self._file.close()
        self._file = None
        logger.debug("closed container %s", self.path)

    # --- Handle bookkeeping ---

    def _acquire(self, kind: str, obj: h5py.Group | h5py.Dataset) -> Handle:
        handle = Handle(kind, obj)
        self._open[id(handle)] = handle
        return handle

    def _release(self, handle: Handle, kind: str) -> None:
        if handle is None or not handle.is_open or id(handle) not in self._open:
            raise PreconditionError(f"{handle!r} is not an open handle of this container.")
        if handle.kind != kind:
            raise PreconditionError(f"{handle!r} is not a {kind}.")
        del self._open[id(handle)]
        handle._obj = None

    def _deref(self, handle: Handle, kind: str) -> Any:
        if self._file is None:
            raise PreconditionError(f"Container {self.path} is closed.")
        if handle is None or not handle.is_open:
            raise PreconditionError(f"{handle!r} is not open.")
        if handle.kind != kind:
            raise PreconditionError(f"{handle!r} is not a {kind}.")
        return handle._obj

    # --- Groups ---

    def open_group(self, parent: Handle, name: str) -> Handle:
        group = self._deref(parent, GROUP)
        try:
            obj = group[name]
        except (KeyError, OSError) as e:
            raise ResourceError(f"No group '{name}' under {parent.path}") from e
        if not isinstance(obj, h5py.Group):
            raise ResourceError(f"'{name}' under {parent.path} is not a group")
        return self._acquire(GROUP, obj)

    def create_group(self, parent: Handle, name: str) -> Handle:
        group = self._deref(parent, GROUP)
        try:
            obj = group.create_group(name)
        except (ValueError, OSError) as e:
            raise ResourceError(f"Could not create group '{name}' under {parent.path}: {e}") from e
        return self._acquire(GROUP, obj)

    def close_group(self, handle: Handle) -> None:
        self._release(handle, GROUP)

    def link_exists(self, parent: Handle, name: str) -> bool:
        return name in self._deref(parent, GROUP)

    def list_links(self, parent: Handle) -> list[str]:
        return list(self._deref(parent, GROUP).keys())

    def create_hard_link(self, parent: Handle, name: str, target: Handle) -> None:
        group = self._deref(parent, GROUP)
        if not target.is_open:
            raise PreconditionError(f"{target!r} is not open.")
        try:
            group[name] = target._obj
        except (ValueError, OSError) as e:
            raise ResourceError(f"Could not link '{name}' under {parent.path}: {e}") from e

    # --- Datasets ---

    def open_dataset(self, parent: Handle, name: str) -> Handle:
        group = self._deref(parent, GROUP)
        try:
            obj = group[name]
        except (KeyError, OSError) as e:
            raise ResourceError(f"No dataset '{name}' under {parent.path}") from e
        if not isinstance(obj, h5py.Dataset):
            raise ResourceError(f"'{name}' under {parent.path} is not a dataset")
        return self._acquire(DATASET, obj)

    def create_dataset(
        self,
        parent: Handle,
        name: str,
        element_type: Any,
        dimensions: Sequence[int],
    ) -> Handle:
        group = self._deref(parent, GROUP)
        try:
            obj = group.create_dataset(name, shape=tuple(dimensions), dtype=element_type)
        except (ValueError, TypeError, OSError) as e:
            raise ResourceError(f"Could not create dataset '{name}' under {parent.path}: {e}") from e
        return self._acquire(DATASET, obj)

    def close_dataset(self, handle: Handle) -> None:
        self._release(handle, DATASET)

    def get_dataset_shape(self, handle: Handle) -> tuple[np.dtype, tuple[int, ...]]:
        """Return ``(element_type, dimensions)`` of a dataset."""
        ds = self._deref(handle, DATASET)
        return ds.dtype, tuple(int(d) for d in ds.shape)

    def read_dataset(self, handle: Handle, as_type: Any = None) -> Any:
        """Read the full extent of a dataset, converting to ``as_type`` if given."""
        ds = self._deref(handle, DATASET)
        try:
            if as_type is None:
                return ds[()]
            return ds.astype(as_type)[()]
        except (OSError, TypeError) as e:
            raise ResourceError(f"Could not read {handle.path}: {e}") from e

    def write_dataset(self, handle: Handle, data: Any, as_type: Any = None) -> None:
        """Write the full extent of a dataset from ``data`` (held in memory as ``as_type``)."""
        ds = self._deref(handle, DATASET)
        if as_type is not None:
            data = np.asarray(data, dtype=as_type)
        try:
            ds[()] = data
        except (OSError, TypeError, ValueError) as e:
            raise ResourceError(f"Could not write {handle.path}: {e}") from e

    def read_dataset_region(
        self,
        handle: Handle,
        start: Sequence[int],
        count: Sequence[int],
        as_type: Any = None,
    ) -> np.ndarray:
        """Read the hyperrectangle ``[start, start + count)`` of a dataset."""
        ds = self._deref(handle, DATASET)
        selection = _region(ds.shape, start, count)
        try:
            if as_type is None:
                return ds[selection]
            return ds.astype(as_type)[selection]
        except (OSError, TypeError) as e:
            raise ResourceError(f"Could not read region of {handle.path}: {e}") from e

    def write_dataset_region(
        self,
        handle: Handle,
        start: Sequence[int],
        count: Sequence[int],
        data: Any,
        as_type: Any = None,
    ) -> None:
        """Write ``data`` into the hyperrectangle ``[start, start + count)``."""
        ds = self._deref(handle, DATASET)
        selection = _region(ds.shape, start, count)
        arr = np.asarray(data, dtype=as_type).reshape(tuple(count))
        try:
            ds[selection] = arr
        except (OSError, TypeError, ValueError) as e:
            raise ResourceError(f"Could not write region of {handle.path}: {e}") from e

    def __repr__(self) -> str:
        status = "open" if self.is_open else "closed"
        return f"Container('{self.path}', mode='{self.mode}', {status}, handles={len(self._open)})"


def _region(shape: tuple[int, ...], start: Sequence[int], count: Sequence[int]) -> tuple[slice, ...]:
    if len(start) != len(shape) or len(count) != len(shape):
        raise PreconditionError(
            f"Region rank mismatch: dataset has {len(shape)} dimensions, "
            f"got start={list(start)} count={list(count)}"
        )
    for s, c, d in zip(start, count, shape):
        if s < 0 or c < 0 or s + c > d:
            raise PreconditionError(f"Region start={list(start)} count={list(count)} outside shape {shape}")
    return tuple(slice(s, s + c) for s, c in zip(start, count))
