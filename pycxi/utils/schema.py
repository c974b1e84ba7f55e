"""Pydantic models for CXI field records and dataset descriptions.

Each record lists the optional fields of one kind of CXI group. ``None``
means the field is absent from the file (or, when creating, that it should
not be written). Field types determine how fields are stored:

    str                 → variable-length UTF-8 string
    float               → float64 scalar
    int                 → integer scalar
    Tuple[float, ...]   → float64 array, shape taken from the tuple nesting
"""

from __future__ import annotations

import math
import sys
from functools import lru_cache
from typing import Any, ClassVar, Optional, Tuple, Union, get_args, get_origin

import numpy as np
from pydantic import BaseModel, ConfigDict, field_validator

from pycxi.storage import format as fmt
from pycxi.storage.fields import FLOAT, INTEGER, STRING, FieldSpec

Vector3 = Tuple[float, float, float]
Matrix2x3 = Tuple[Vector3, Vector3]

if sys.version_info >= (3, 10):
    from types import UnionType

    _UNION_TYPES: tuple[Any, ...] = (Union, UnionType)
else:
    _UNION_TYPES = (Union,)


class Record(BaseModel):
    """Base class for the field records of CXI groups."""

    model_config = ConfigDict(extra="forbid")

    kind: ClassVar[str] = ""
    timestamp_fields: ClassVar[Tuple[str, ...]] = ()

    @classmethod
    def field_specs(cls) -> tuple[FieldSpec, ...]:
        return _field_specs(cls)

    def present(self) -> dict[str, Any]:
        """Fields that have a value."""
        return self.model_dump(exclude_none=True)


class FileRecord(Record):
    cxi_version: Optional[int] = None


class EntryRecord(Record):
    kind: ClassVar[str] = fmt.ENTRY
    timestamp_fields: ClassVar[Tuple[str, ...]] = ("start_time", "end_time")

    end_time: Optional[str] = None
    experiment_identifier: Optional[str] = None
    experiment_description: Optional[str] = None
    program_name: Optional[str] = None
    start_time: Optional[str] = None
    title: Optional[str] = None


class DataRecord(Record):
    kind: ClassVar[str] = fmt.DATA


class ImageRecord(Record):
    kind: ClassVar[str] = fmt.IMAGE

    data_space: Optional[str] = None
    data_type: Optional[str] = None
    dimensionality: Optional[int] = None
    image_center: Optional[Vector3] = None
    image_size: Optional[Vector3] = None
    is_fft_shifted: Optional[int] = None


class InstrumentRecord(Record):
    kind: ClassVar[str] = fmt.INSTRUMENT

    name: Optional[str] = None


class SourceRecord(Record):
    """Source of the beam. Energies are in J (per photon / per pulse), widths in s."""

    kind: ClassVar[str] = fmt.SOURCE

    energy: Optional[float] = None
    name: Optional[str] = None
    pulse_energy: Optional[float] = None
    pulse_width: Optional[float] = None


class DetectorRecord(Record):
    kind: ClassVar[str] = fmt.DETECTOR

    basis_vectors: Optional[Matrix2x3] = None
    corner_position: Optional[Vector3] = None
    counts_per_joule: Optional[float] = None
    data_sum: Optional[float] = None
    description: Optional[str] = None
    distance: Optional[float] = None
    x_pixel_size: Optional[float] = None
    y_pixel_size: Optional[float] = None


class AttenuatorRecord(Record):
    kind: ClassVar[str] = fmt.ATTENUATOR

    distance: Optional[float] = None
    thickness: Optional[float] = None
    attenuator_transmission: Optional[float] = None
    type: Optional[str] = None


class MonochromatorRecord(Record):
    kind: ClassVar[str] = fmt.MONOCHROMATOR

    energy: Optional[float] = None
    energy_error: Optional[float] = None


class SampleRecord(Record):
    kind: ClassVar[str] = fmt.SAMPLE

    concentration: Optional[float] = None
    description: Optional[str] = None
    mass: Optional[float] = None
    name: Optional[str] = None
    temperature: Optional[float] = None
    thickness: Optional[float] = None
    unit_cell: Optional[Matrix2x3] = None
    unit_cell_group: Optional[str] = None
    unit_cell_volume: Optional[float] = None


class GeometryRecord(Record):
    kind: ClassVar[str] = fmt.GEOMETRY

    orientation: Optional[Matrix2x3] = None
    translation: Optional[Vector3] = None


class ProcessRecord(Record):
    kind: ClassVar[str] = fmt.PROCESS

    command: Optional[str] = None
    program: Optional[str] = None
    version: Optional[str] = None


class DatasetDescription(BaseModel):
    """Shape and on-disk element type of a dataset to be created."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    dimensions: tuple[int, ...]
    dtype: np.dtype  # byte order and compound fields are kept

    @field_validator("dimensions", mode="before")
    @classmethod
    def coerce_dimensions(cls, v: Any) -> tuple[int, ...]:
        if isinstance(v, (list, np.ndarray)):
            return tuple(int(d) for d in v)
        if isinstance(v, int):
            return (v,)
        return v

    @field_validator("dtype", mode="before")
    @classmethod
    def normalize_dtype(cls, v: Any) -> np.dtype:
        return np.dtype(v)

    @property
    def size(self) -> int:
        return math.prod(self.dimensions) if self.dimensions else 0


@lru_cache(maxsize=None)
def _field_specs(record_cls: type[Record]) -> tuple[FieldSpec, ...]:
    return tuple(
        _spec_from_annotation(name, info.annotation)
        for name, info in record_cls.model_fields.items()
    )


def _spec_from_annotation(name: str, annotation: Any) -> FieldSpec:
    if get_origin(annotation) in _UNION_TYPES:
        annotation = next(a for a in get_args(annotation) if a is not type(None))
    if annotation is str:
        return FieldSpec(name, STRING)
    if annotation is float:
        return FieldSpec(name, FLOAT)
    if annotation is int:
        return FieldSpec(name, INTEGER)
    if get_origin(annotation) is tuple:
        return FieldSpec(name, FLOAT, _tuple_shape(annotation))
    raise TypeError(f"Unsupported field type for '{name}': {annotation!r}")


def _tuple_shape(annotation: Any) -> tuple[int, ...]:
    args = get_args(annotation)
    if get_origin(args[0]) is tuple:
        return (len(args),) + _tuple_shape(args[0])
    return (len(args),)
