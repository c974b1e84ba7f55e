"""Best-effort reading and writing of small typed fields.

A field is a scalar or fixed-size array dataset attached to a group (an
entry's ``start_time``, a detector's ``basis_vectors``, ...). Reading is
forgiving: a field that is missing, stored with the wrong type class or
element count, or holding a string that is not valid UTF-8, reads as ``None``. Floats always travel as float64.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

import h5py
import numpy as np

from pycxi.errors import PreconditionError, ResourceError
from pycxi.storage.container import Container, Handle

STRING = "string"
FLOAT = "float"
INTEGER = "integer"

# In-memory type used when transferring each field class
_TRANSFER_TYPES: dict[str, Any] = {
    STRING: None,
    FLOAT: np.float64,
    INTEGER: np.int64,
}

# On-disk element type of newly written fields
_STORAGE_TYPES: dict[str, Any] = {
    STRING: h5py.string_dtype(encoding="utf-8"),
    FLOAT: np.float64,
    INTEGER: np.int32,
}


@dataclass(frozen=True)
class FieldSpec:
    """Name, type class and shape of a field. ``shape == ()`` is a scalar."""

    name: str
    kind: str
    shape: tuple[int, ...] = ()

    @property
    def size(self) -> int:
        return math.prod(self.shape)


def _class_matches(kind: str, dtype: np.dtype) -> bool:
    if kind == STRING:
        return h5py.check_string_dtype(dtype) is not None
    if kind == FLOAT:
        return dtype.kind == "f"
    if kind == INTEGER:
        return dtype.kind in "iu"
    return False


def _decode(spec: FieldSpec, raw: Any) -> Any:
    if spec.kind == STRING:
        if isinstance(raw, np.ndarray):
            raw = raw.flat[0]
        if isinstance(raw, bytes):
            return raw.decode("utf-8")
        return str(raw)
    arr = np.asarray(raw)
    if spec.shape:
        return arr.reshape(spec.shape).tolist()
    scalar = arr.reshape(-1)[0]
    return float(scalar) if spec.kind == FLOAT else int(scalar)


def try_read(container: Container, parent: Handle, spec: FieldSpec) -> Any | None:
    """Read a field, or return ``None`` if it is absent or unusable.

    Scalars accept any single-element dataset; arrays accept any dataset
    holding exactly ``spec.size`` elements.
    """
    if not container.link_exists(parent, spec.name):
        return None
    try:
        handle = container.open_dataset(parent, spec.name)
    except ResourceError:
        # A group (or something else) with the field's name
        return None
    try:
        element_type, dimensions = container.get_dataset_shape(handle)
        if not _class_matches(spec.kind, element_type):
            return None
        if math.prod(dimensions) != spec.size:
            return None
        raw = container.read_dataset(handle, _TRANSFER_TYPES[spec.kind])
    finally:
        container.close_dataset(handle)
    try:
        return _decode(spec, raw)
    except UnicodeDecodeError:
        # Bytes written by another tool in a non-UTF-8 encoding
        return None


def write_field(container: Container, parent: Handle, spec: FieldSpec, value: Any) -> None:
    """Create the dataset for a field and write ``value`` into it."""
    if value is None:
        raise PreconditionError(f"Field '{spec.name}' has no value to write.")
    if spec.kind == STRING:
        data: Any = str(value)
    else:
        data = np.asarray(value, dtype=_TRANSFER_TYPES[spec.kind])
        if data.shape != spec.shape:
            raise PreconditionError(
                f"Field '{spec.name}' expects shape {spec.shape}, got {data.shape}"
            )
    handle = container.create_dataset(parent, spec.name, _STORAGE_TYPES[spec.kind], spec.shape)
    try:
        container.write_dataset(handle, data)
    finally:
        container.close_dataset(handle)


def read_fields(container: Container, parent: Handle, specs: Iterable[FieldSpec]) -> dict[str, Any]:
    """Read every field in ``specs``; absent fields map to ``None``."""
    return {spec.name: try_read(container, parent, spec) for spec in specs}


def write_fields(
    container: Container,
    parent: Handle,
    specs: Iterable[FieldSpec],
    values: Mapping[str, Any],
) -> list[str]:
    """Write the fields of ``specs`` that have a value. Returns the names written."""
    written = []
    for spec in specs:
        value = values.get(spec.name)
        if value is None:
            continue
        write_field(container, parent, spec, value)
        written.append(spec.name)
    return written
