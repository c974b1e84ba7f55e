"""pycxi — Typed, lazy access to CXI files.

CXI (Coherent X-ray Imaging) files are HDF5 files with a fixed hierarchy of
entries, instruments, detectors, samples and images. pycxi mirrors that
hierarchy as a tree of references that are opened on demand, so only the
parts of a file you walk into hold HDF5 handles.

Quick start:
    import numpy as np
    from pycxi import CXIFile, DatasetKind, DetectorRecord, EntryRecord, InstrumentRecord

    # Write
    with CXIFile.open("run.cxi", "w") as f:
        entry = f.create(EntryRecord(start_time="2013-01-12T08:00:00+0100")).entity
        instrument = entry.create(InstrumentRecord(name="AMO")).entity
        detector = instrument.create(DetectorRecord(distance=0.15)).entity
        detector.create_dataset(DatasetKind.DATA, data=np.zeros((10, 64, 64), dtype=np.int16))

    # Read
    with CXIFile.open("run.cxi") as f:
        entry = f.entries[0].open()
        print(entry.start_time)
        detector = entry.instruments[0].open().detectors[0].open()
        frame = detector.data.open().read_slice(2)
"""

import logging

__version__ = "0.1.0"

from pycxi.dataset import Dataset, dataset_length
from pycxi.entities import (
    Attenuator,
    Data,
    Detector,
    Entry,
    Geometry,
    Group,
    Image,
    Instrument,
    Monochromator,
    Process,
    Sample,
    Source,
)
from pycxi.errors import CXIError, DateFormatError, PreconditionError, ResourceError
from pycxi.file import CXIFile
from pycxi.storage.discovery import ListingEnumerator, ProbingEnumerator, SuffixEnumerator
from pycxi.storage.format import CXI_VERSION, DatasetKind
from pycxi.tree import NodeState, Reference
from pycxi.utils.dates import follows_iso8601
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
    SampleRecord,
    SourceRecord,
)

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "CXIFile",
    "Reference",
    "NodeState",
    "Group",
    "Entry",
    "Data",
    "Image",
    "Instrument",
    "Source",
    "Detector",
    "Attenuator",
    "Monochromator",
    "Sample",
    "Geometry",
    "Process",
    "Dataset",
    "dataset_length",
    "DatasetKind",
    "DatasetDescription",
    "EntryRecord",
    "DataRecord",
    "ImageRecord",
    "InstrumentRecord",
    "SourceRecord",
    "DetectorRecord",
    "AttenuatorRecord",
    "MonochromatorRecord",
    "SampleRecord",
    "GeometryRecord",
    "ProcessRecord",
    "SuffixEnumerator",
    "ProbingEnumerator",
    "ListingEnumerator",
    "follows_iso8601",
    "CXIError",
    "ResourceError",
    "PreconditionError",
    "DateFormatError",
    "CXI_VERSION",
    "__version__",
]
