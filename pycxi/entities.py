"""Typed CXI groups.

Every group class declares which repeatable child groups it may hold
(``child_types``), which optional datasets it may hold (``dataset_names``)
and which fields it carries (``record_type``). Opening a group reads its
fields and discovers its children as unopened references:

    entry = file.entries[0].open()
    entry.start_time                 # '2013-01-12T08:00:00+0100' or None
    len(entry.instruments)           # 1
    instrument = entry.instruments[0].open()

Fields are also available as ``group.record``. Absent fields are ``None``.
"""

from __future__ import annotations

from typing import Any, ClassVar, Optional

import numpy as np

from pycxi.dataset import Dataset
from pycxi.errors import PreconditionError
from pycxi.storage import format as fmt
from pycxi.storage.container import Container, Handle
from pycxi.storage.fields import read_fields, write_fields
from pycxi.tree import Node, Reference, TreeContext
from pycxi.utils.dates import check_timestamp
from pycxi.utils.schema import (
    AttenuatorRecord,
    DataRecord,
    DatasetDescription,
    DetectorRecord,
    EntryRecord,
    GeometryRecord,
    ImageRecord,
    InstrumentRecord,
    MonochromatorRecord,
    ProcessRecord,
    Record,
    SampleRecord,
    SourceRecord,
)


class Group(Node):
    """An open CXI group with its fields, child references and dataset references."""

    record_type: ClassVar[type[Record]] = Record
    # Repeatable child groups by base name. Order is discovery and close order.
    child_types: ClassVar[dict[str, type[Group]]] = {}
    dataset_names: ClassVar[tuple[str, ...]] = ()

    def __init__(
        self,
        context: TreeContext,
        handle: Handle,
        reference: Reference | None = None,
        record: Record | None = None,
    ) -> None:
        super().__init__(context, handle, reference)
        self.record = record if record is not None else self.record_type()
        self._children: dict[str, list[Reference]] = {base: [] for base in self.child_types}
        self._datasets: dict[str, Reference[Dataset]] = {}

    @classmethod
    def _acquire(cls, container: Container, parent: Handle, name: str) -> Handle:
        return container.open_group(parent, name)

    @classmethod
    def _release_handle(cls, container: Container, handle: Handle) -> None:
        container.close_group(handle)

    def _load(self) -> None:
        self._discover()
        values = read_fields(self.container, self.handle, self.record_type.field_specs())
        self.record = self.record_type.model_validate(values)

    def _discover(self) -> None:
        enumerator = self._context.enumerator
        for base, node_type in self.child_types.items():
            names = enumerator.names(self.container, self.handle, base)
            self._children[base] = [Reference(self, name, node_type) for name in names]
        for name in self.dataset_names:
            if self.container.link_exists(self.handle, name):
                self._datasets[name] = Reference(self, name, Dataset)

    def __getattr__(self, name: str) -> Any:
        record = self.__dict__.get("record")
        if record is not None and name in type(record).model_fields:
            return getattr(record, name)
        raise AttributeError(f"{type(self).__name__!r} object has no attribute {name!r}")

    # --- Children ---

    def children(self, base: str) -> list[Reference]:
        """References to the ``base_1 .. base_n`` child groups, in suffix order."""
        if base not in self._children:
            raise KeyError(
                f"{type(self).__name__} has no '{base}' children. "
                f"Available: {list(self._children)}"
            )
        return list(self._children[base])

    def count(self, base: str) -> int:
        return len(self.children(base))

    @property
    def datasets(self) -> dict[str, Reference[Dataset]]:
        """References to the optional datasets present in this group."""
        return dict(self._datasets)

    def dataset(self, name: str) -> Optional[Reference[Dataset]]:
        return self._datasets.get(name)

    def _rederive(self, old: Reference) -> Reference:
        self._require_open()
        fresh = Reference(self, old.name, old.node_type)
        for refs in self._children.values():
            for i, ref in enumerate(refs):
                if ref is old:
                    refs[i] = fresh
        for name, ref in self._datasets.items():
            if ref is old:
                self._datasets[name] = fresh
        return fresh

    # --- Creating ---

    def create(self, record: Record) -> Reference:
        """Create a new child group from ``record`` and return an open reference to it.

        The group is named ``<kind>_<n+1>`` where ``n`` is the number of
        existing groups of that kind. Only fields with a value are written.
        Timestamps are validated before anything is written.
        """
        self._require_open()
        base = record.kind
        node_type = self.child_types.get(base)
        if node_type is None:
            raise PreconditionError(f"{type(self).__name__} cannot hold '{base or type(record).__name__}' groups.")
        for name in record.timestamp_fields:
            value = getattr(record, name)
            if value is not None:
                check_timestamp(f"{type(record).__name__}.{name}", value)

        index = self._context.enumerator.count(self.container, self.handle, base) + 1
        name = fmt.suffixed_name(base, index)
        handle = self.container.create_group(self.handle, name)
        reference = Reference(self, name, node_type)
        try:
            write_fields(self.container, handle, record.field_specs(), record.present())
            node = node_type(self._context, handle, reference, record.model_copy())
        except Exception:
            self.container.close_group(handle)
            raise
        reference.entity = node
        self._children[base].append(reference)
        self.logger.debug("created %s %s", base, node.path)
        return reference

    def create_dataset(
        self,
        kind: fmt.DatasetKind | str,
        description: DatasetDescription | None = None,
        data: Any = None,
    ) -> Reference[Dataset]:
        """Create the dataset for ``kind`` in this group and return an open reference.

        Args:
            kind: Role of the dataset; determines its name.
            description: Dimensions and element type. Derived from ``data`` if omitted.
            data: Optional initial contents, written in full.
        """
        self._require_open()
        name = fmt.dataset_kind_name(kind)
        if name not in self.dataset_names:
            raise PreconditionError(
                f"{type(self).__name__} cannot hold a '{name}' dataset. "
                f"Allowed: {list(self.dataset_names)}"
            )
        if description is None:
            if data is None:
                raise PreconditionError(f"Dataset '{name}' needs a description or data.")
            arr = np.asarray(data)
            description = DatasetDescription(dimensions=arr.shape, dtype=arr.dtype)
        if not description.dimensions:
            raise PreconditionError(f"Dataset '{name}' needs at least one dimension.")
        if data is not None and np.size(data) != description.size:
            raise PreconditionError(
                f"Dataset '{name}' holds {description.size} elements, data has {np.size(data)}"
            )

        handle = self.container.create_dataset(
            self.handle, name, description.dtype, description.dimensions
        )
        reference: Reference[Dataset] = Reference(self, name, Dataset)
        try:
            dataset = Dataset(self._context, handle, reference)
            if data is not None:
                dataset.write(data)
        except Exception:
            self.container.close_dataset(handle)
            raise
        reference.entity = dataset
        self._datasets[name] = reference
        self.logger.debug("created dataset %s %s", dataset.path, description.dimensions)
        return reference

    # --- Closing ---

    def _close_children(self) -> None:
        for reference in self._datasets.values():
            reference.close()
        for references in self._children.values():
            for reference in references:
                reference.close()


def _references(base: str) -> property:
    return property(lambda self: self.children(base), doc=f"References to the '{base}_N' groups.")


def _dataset_reference(name: str) -> property:
    return property(lambda self: self.dataset(name), doc=f"Reference to the '{name}' dataset, or None.")


class Geometry(Group):
    record_type = GeometryRecord


class Process(Group):
    record_type = ProcessRecord


class Source(Group):
    record_type = SourceRecord


class Attenuator(Group):
    record_type = AttenuatorRecord


class Monochromator(Group):
    record_type = MonochromatorRecord


class Detector(Group):
    record_type = DetectorRecord
    child_types = {fmt.GEOMETRY: Geometry}
    dataset_names = (
        fmt.DatasetKind.DATA.value,
        fmt.DatasetKind.DATA_DARK.value,
        fmt.DatasetKind.DATA_WHITE.value,
        fmt.DatasetKind.DATA_ERROR.value,
        fmt.DatasetKind.MASK.value,
    )

    geometries = _references(fmt.GEOMETRY)
    data = _dataset_reference(fmt.DatasetKind.DATA.value)
    data_dark = _dataset_reference(fmt.DatasetKind.DATA_DARK.value)
    data_white = _dataset_reference(fmt.DatasetKind.DATA_WHITE.value)
    data_error = _dataset_reference(fmt.DatasetKind.DATA_ERROR.value)
    mask = _dataset_reference(fmt.DatasetKind.MASK.value)

    def _load(self) -> None:
        super()._load()
        if self.count(fmt.GEOMETRY) > 1:
            self.logger.warning("detector %s has %d geometries", self.path, self.count(fmt.GEOMETRY))

    def effective_pixel_size(self) -> tuple[float, float]:
        """``(x, y)`` pixel size, 1.0 for any size not stored in the file."""
        x = self.record.x_pixel_size
        y = self.record.y_pixel_size
        return (1.0 if x is None else x, 1.0 if y is None else y)

    def effective_basis_vectors(self) -> tuple[tuple[float, float, float], ...]:
        """Stored basis vectors, or the default derived from the pixel size."""
        if self.record.basis_vectors is not None:
            return self.record.basis_vectors
        x, y = self.effective_pixel_size()
        return ((0.0, -y, 0.0), (-x, 0.0, 0.0))


class Sample(Group):
    record_type = SampleRecord
    child_types = {fmt.GEOMETRY: Geometry}

    geometries = _references(fmt.GEOMETRY)


class Data(Group):
    record_type = DataRecord
    dataset_names = (fmt.DatasetKind.DATA.value, fmt.DatasetKind.ERRORS.value)

    data = _dataset_reference(fmt.DatasetKind.DATA.value)
    errors = _dataset_reference(fmt.DatasetKind.ERRORS.value)


class Image(Group):
    record_type = ImageRecord
    child_types = {fmt.DETECTOR: Detector, fmt.PROCESS: Process, fmt.SOURCE: Source}
    dataset_names = (
        fmt.DatasetKind.DATA.value,
        fmt.DatasetKind.DATA_ERROR.value,
        fmt.DatasetKind.MASK.value,
        fmt.DatasetKind.RECIPROCAL_COORDINATES.value,
    )

    detectors = _references(fmt.DETECTOR)
    processes = _references(fmt.PROCESS)
    sources = _references(fmt.SOURCE)
    data = _dataset_reference(fmt.DatasetKind.DATA.value)
    data_error = _dataset_reference(fmt.DatasetKind.DATA_ERROR.value)
    mask = _dataset_reference(fmt.DatasetKind.MASK.value)
    reciprocal_coordinates = _dataset_reference(fmt.DatasetKind.RECIPROCAL_COORDINATES.value)


class Instrument(Group):
    record_type = InstrumentRecord
    child_types = {
        fmt.DETECTOR: Detector,
        fmt.ATTENUATOR: Attenuator,
        fmt.MONOCHROMATOR: Monochromator,
        fmt.SOURCE: Source,
    }

    detectors = _references(fmt.DETECTOR)
    attenuators = _references(fmt.ATTENUATOR)
    monochromators = _references(fmt.MONOCHROMATOR)
    sources = _references(fmt.SOURCE)


class Entry(Group):
    record_type = EntryRecord
    child_types = {
        fmt.DATA: Data,
        fmt.IMAGE: Image,
        fmt.INSTRUMENT: Instrument,
        fmt.SAMPLE: Sample,
    }

    data = _references(fmt.DATA)
    images = _references(fmt.IMAGE)
    instruments = _references(fmt.INSTRUMENT)
    samples = _references(fmt.SAMPLE)

    def create_data_link(self, dataset: Dataset | Reference[Dataset]) -> Reference[Data]:
        """Create a new ``data_N`` group whose ``data`` is a link to ``dataset``.

        Lets readers find the main data of an entry without knowing which
        detector or image produced it.
        """
        self._require_open()
        if isinstance(dataset, Reference):
            dataset = dataset.open()
        dataset._require_open()

        reference = self.create(DataRecord())
        group = reference.entity
        self.container.create_hard_link(group.handle, fmt.DatasetKind.DATA.value, dataset.handle)
        group._datasets[fmt.DatasetKind.DATA.value] = Reference(group, fmt.DatasetKind.DATA.value, Dataset)
        self.logger.debug("linked %s -> %s", group.path, dataset.path)
        return reference
