"""CXIFile — the root of a CXI file's object tree.

Usage:
    from pycxi import CXIFile, EntryRecord, InstrumentRecord

    # Write
    with CXIFile.open("run.cxi", "w") as f:
        entry = f.create(EntryRecord(start_time="2013-01-12T08:00:00+0100")).entity
        entry.create(InstrumentRecord(name="AMO"))

    # Read
    with CXIFile.open("run.cxi") as f:
        print(f.cxi_version)
        entry = f.entries[0].open()
        print(entry.start_time)

Closing the file closes every node that is still open below it.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from pycxi.entities import Entry, Group, _references
from pycxi.errors import PreconditionError
from pycxi.storage import format as fmt
from pycxi.storage.container import Container, Handle
from pycxi.storage.discovery import DEFAULT_ENUMERATOR, SuffixEnumerator
from pycxi.storage.fields import write_fields
from pycxi.tree import Reference, TreeContext
from pycxi.utils.logging import get_logger
from pycxi.utils.schema import EntryRecord, FileRecord


class CXIFile(Group):
    """An open CXI file. Holds references to its entries and nothing else.

    Use :meth:`CXIFile.open` rather than the constructor.
    """

    record_type = FileRecord
    child_types = {fmt.ENTRY: Entry}

    entries = _references(fmt.ENTRY)

    @classmethod
    def open(
        cls,
        path: str | Path,
        mode: str = "r",
        *,
        enumerator: SuffixEnumerator | None = None,
        logger: logging.Logger | None = None,
    ) -> CXIFile:
        """Open a CXI file.

        Args:
            path: File location.
            mode: ``"r"`` to read, ``"w"`` to create (truncating any existing
                file), ``"a"`` to read and add to an existing file.
            enumerator: Strategy for discovering ``name_N`` groups.
            logger: Where diagnostics go. Defaults to the silent ``pycxi`` logger.
        """
        container = Container.open(path, mode)
        context = TreeContext(
            container=container,
            enumerator=enumerator or DEFAULT_ENUMERATOR,
            logger=get_logger(logger),
        )
        file = cls(context, container.root)
        try:
            if mode == "w":
                file.record = FileRecord(cxi_version=fmt.CXI_VERSION)
                write_fields(container, container.root, FileRecord.field_specs(), file.record.present())
            else:
                file._load()
                file._check_version()
        except Exception:
            container.close()
            raise
        context.logger.debug("opened file %s (mode %s, %d entries)", path, mode, file.entry_count)
        return file

    @classmethod
    def _acquire(cls, container: Container, parent: Handle, name: str) -> Handle:
        raise PreconditionError("A CXI file is opened with CXIFile.open(), not through a reference.")

    def _check_version(self) -> None:
        version = self.record.cxi_version
        if version is None:
            self.logger.warning("%s: could not read the CXI version", self.filename)
        elif version > fmt.CXI_VERSION:
            self.logger.warning(
                "%s: CXI version %d is newer than the supported version %d",
                self.filename, version, fmt.CXI_VERSION,
            )

    def _release(self) -> None:
        self.container.close()

    @property
    def filename(self) -> Path:
        return self.container.path

    @property
    def entry_count(self) -> int:
        return self.count(fmt.ENTRY)

    @property
    def cxi_version(self) -> int | None:
        return self.record.cxi_version

    def create_entry(self, **fields: Any) -> Reference[Entry]:
        """Shorthand for ``create(EntryRecord(**fields))``."""
        return self.create(EntryRecord(**fields))

    def __repr__(self) -> str:
        status = "open" if self.is_open else "closed"
        return f"CXIFile('{self.filename}', entries={len(self._children[fmt.ENTRY])}, {status})"
