"""CXI file format constants and the dataset-kind registry.

A CXI file is HDF5 with a specific structure:

    /cxi_version                    — scalar integer
    /entry_N/                       — one group per experiment entry
        /data_N/                    — links to the main data of the entry
        /image_N/                   — reconstructed images
        /instrument_N/
            /source_N/
            /detector_N/
                /data               — dataset, shape [frames, *frame_shape]
                /geometry_N/
            /attenuator_N/
            /monochromator_N/
        /sample_N/
            /geometry_N/

Repeatable groups carry a 1-based numeric suffix.
"""

from __future__ import annotations

from enum import Enum

# Version written into new files and compared against on read
CXI_VERSION = 130

# Separator between a group base name and its numeric suffix
SUFFIX_SEPARATOR = "_"

# Group base names
ENTRY = "entry"
DATA = "data"
IMAGE = "image"
INSTRUMENT = "instrument"
SAMPLE = "sample"
SOURCE = "source"
DETECTOR = "detector"
ATTENUATOR = "attenuator"
MONOCHROMATOR = "monochromator"
GEOMETRY = "geometry"
PROCESS = "process"


class DatasetKind(str, Enum):
    """Semantic role of a dataset, valued by its on-disk name."""

    DATA = "data"
    DATA_DARK = "data_dark"
    DATA_WHITE = "data_white"
    DATA_ERROR = "data_error"
    ERRORS = "errors"
    MASK = "mask"
    RECIPROCAL_COORDINATES = "reciprocal_coordinates"


def dataset_kind_name(kind: DatasetKind | str) -> str:
    """Return the canonical on-disk name for a dataset kind."""
    return DatasetKind(kind).value


def suffixed_name(base: str, index: int) -> str:
    """Name of the ``index``-th (1-based) sibling group of ``base``."""
    return f"{base}{SUFFIX_SEPARATOR}{index}"
