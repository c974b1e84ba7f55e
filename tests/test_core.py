"""Tests for pycxi: containers → fields → datasets → tree → file → CLI."""

import logging

import h5py
import numpy as np
import pytest

from pycxi import (
    CXI_VERSION,
    CXIFile,
    DatasetDescription,
    DatasetKind,
    DataRecord,
    DateFormatError,
    DetectorRecord,
    EntryRecord,
    GeometryRecord,
    ImageRecord,
    InstrumentRecord,
    ListingEnumerator,
    NodeState,
    PreconditionError,
    ProbingEnumerator,
    Reference,
    ResourceError,
    SampleRecord,
    SourceRecord,
    dataset_length,
    follows_iso8601,
)
from pycxi.entities import Detector, Entry
from pycxi.storage.container import Container
from pycxi.storage.fields import FLOAT, INTEGER, STRING, FieldSpec, try_read, write_field
from pycxi.storage.format import dataset_kind_name, suffixed_name

START = "2013-01-12T08:00:00+0100"


def _write_scenario(path):
    with CXIFile.open(path, "w") as f:
        entry = f.create(EntryRecord(start_time=START, title="Dummy entry")).entity
        instrument = entry.create(InstrumentRecord(name="AMO")).entity
        detector = instrument.create(DetectorRecord(distance=0.15)).entity
        description = DatasetDescription(dimensions=[10], dtype="int16")
        dataset = detector.create_dataset(DatasetKind.DATA, description).entity
        dataset.write(np.arange(1, 11), dtype=np.int32)
    return path


@pytest.fixture
def scenario_file(tmp_path):
    return _write_scenario(tmp_path / "scenario.cxi")


@pytest.fixture
def container(tmp_path):
    c = Container.open(tmp_path / "container.cxi", "w")
    yield c
    if c.is_open:
        c.close()


# ── Date Validation ────────────────────────────────────────


class TestDateValidation:
    def test_valid_timestamp(self):
        assert follows_iso8601("2013-01-12T08:00:00+0100")
        assert follows_iso8601("2013-01-12T08:00:00-0530")

    def test_space_instead_of_t(self):
        assert not follows_iso8601("2013-01-12 08:00:00+0100")

    def test_two_digit_year(self):
        assert not follows_iso8601("13-01-12T08:00:00+0100")

    def test_calendar_not_checked(self):
        assert follows_iso8601("2013-13-45T99:99:99+9999")

    def test_missing_timezone(self):
        assert not follows_iso8601("2013-01-12T08:00:00")
        assert not follows_iso8601("2013-01-12T08:00:00Z")

    def test_wrong_length_and_type(self):
        assert not follows_iso8601("2013-01-12T08:00:00+01000")
        assert not follows_iso8601("")
        assert not follows_iso8601(None)


# ── Container ──────────────────────────────────────────────


class TestContainer:
    def test_root_handle_counted(self, container):
        assert container.open_handle_count == 1
        container.close()
        assert container.open_handle_count == 0

    def test_group_open_close(self, container):
        g = container.create_group(container.root, "entry_1")
        container.close_group(g)
        g = container.open_group(container.root, "entry_1")
        assert container.open_handle_count == 2
        container.close_group(g)
        assert container.open_handle_count == 1

    def test_double_release_raises(self, container):
        g = container.create_group(container.root, "entry_1")
        container.close_group(g)
        with pytest.raises(PreconditionError):
            container.close_group(g)

    def test_released_handle_unusable(self, container):
        g = container.create_group(container.root, "entry_1")
        container.close_group(g)
        with pytest.raises(PreconditionError):
            container.link_exists(g, "x")

    def test_missing_group(self, container):
        with pytest.raises(ResourceError):
            container.open_group(container.root, "entry_1")
        assert container.open_handle_count == 1

    def test_dataset_is_not_group(self, container):
        ds = container.create_dataset(container.root, "data", "int16", (4,))
        container.close_dataset(ds)
        with pytest.raises(ResourceError):
            container.open_group(container.root, "data")

    def test_region_outside_shape(self, container):
        ds = container.create_dataset(container.root, "data", "int16", (4, 2))
        with pytest.raises(PreconditionError):
            container.read_dataset_region(ds, (3, 0), (2, 2))
        container.close_dataset(ds)

    def test_open_missing_file(self, tmp_path):
        with pytest.raises(ResourceError):
            Container.open(tmp_path / "missing.cxi", "r")

    def test_invalid_mode(self, tmp_path):
        with pytest.raises(PreconditionError, match="Invalid mode"):
            Container.open(tmp_path / "x.cxi", "x")


# ── Suffix Enumeration ─────────────────────────────────────


class TestSuffixEnumeration:
    @pytest.mark.parametrize("enumerator", [ProbingEnumerator(), ListingEnumerator()])
    @pytest.mark.parametrize("k", [0, 1, 2, 5])
    def test_counts_contiguous_suffixes(self, container, enumerator, k):
        names = [suffixed_name("entry", i) for i in range(1, k + 1)]
        # A gap after k, plus names that only look similar
        names += [suffixed_name("entry", k + 2), "entry_x", "entry", "entries_1"]
        for name in names:
            container.close_group(container.create_group(container.root, name))

        assert enumerator.count(container, container.root, "entry") == k
        assert enumerator.names(container, container.root, "entry") == names[:k]
        assert container.open_handle_count == 1

    def test_other_bases_ignored(self, container):
        container.close_group(container.create_group(container.root, "detector_1"))
        assert ProbingEnumerator().count(container, container.root, "entry") == 0
        assert ListingEnumerator().count(container, container.root, "detector") == 1


# ── Field Codec ────────────────────────────────────────────


class TestFieldCodec:
    @pytest.mark.parametrize(
        "spec, value",
        [
            (FieldSpec("title", STRING), "Dummy entry"),
            (FieldSpec("name", STRING), "Mimivirus – ü"),
            (FieldSpec("energy", FLOAT), 2.8893e-16),
            (FieldSpec("dimensionality", INTEGER), 2),
            (FieldSpec("corner_position", FLOAT, (3,)), [0.1, 0.2, 0.3]),
            (FieldSpec("basis_vectors", FLOAT, (2, 3)), [[0.0, -7.5e-5, 0.0], [-7.5e-5, 0.0, 0.0]]),
        ],
    )
    def test_write_then_read(self, container, spec, value):
        write_field(container, container.root, spec, value)
        assert try_read(container, container.root, spec) == value
        assert container.open_handle_count == 1

    def test_absent_field(self, container):
        assert try_read(container, container.root, FieldSpec("distance", FLOAT)) is None

    def test_wrong_class_is_absent(self, container):
        write_field(container, container.root, FieldSpec("title", FLOAT), 1.5)
        assert try_read(container, container.root, FieldSpec("title", STRING)) is None
        assert try_read(container, container.root, FieldSpec("title", INTEGER)) is None
        assert try_read(container, container.root, FieldSpec("title", FLOAT)) == 1.5

    def test_wrong_size_is_absent(self, container):
        write_field(container, container.root, FieldSpec("corner_position", FLOAT, (3,)), [1.0, 2.0, 3.0])
        assert try_read(container, container.root, FieldSpec("corner_position", FLOAT, (2, 3))) is None
        assert try_read(container, container.root, FieldSpec("corner_position", FLOAT)) is None

    def test_group_with_field_name_is_absent(self, container):
        container.close_group(container.create_group(container.root, "title"))
        assert try_read(container, container.root, FieldSpec("title", STRING)) is None
        assert container.open_handle_count == 1

    def test_single_element_array_reads_as_scalar(self, container):
        ds = container.create_dataset(container.root, "cxi_version", np.int32, (1,))
        container.write_dataset(ds, [130])
        container.close_dataset(ds)
        assert try_read(container, container.root, FieldSpec("cxi_version", INTEGER)) == 130

    def test_float_stored_as_double(self, container):
        write_field(container, container.root, FieldSpec("distance", FLOAT), 0.1)
        ds = container.open_dataset(container.root, "distance")
        dtype, dims = container.get_dataset_shape(ds)
        container.close_dataset(ds)
        assert dtype == np.float64
        assert dims == ()

    def test_write_none_raises(self, container):
        with pytest.raises(PreconditionError):
            write_field(container, container.root, FieldSpec("title", STRING), None)

    def test_write_wrong_shape_raises(self, container):
        with pytest.raises(PreconditionError, match="expects shape"):
            write_field(container, container.root, FieldSpec("translation", FLOAT, (3,)), [1.0, 2.0])
        assert not container.link_exists(container.root, "translation")


# ── Dataset-Kind Registry ──────────────────────────────────


class TestDatasetKinds:
    def test_canonical_names(self):
        assert dataset_kind_name(DatasetKind.DATA) == "data"
        assert dataset_kind_name(DatasetKind.DATA_DARK) == "data_dark"
        assert dataset_kind_name(DatasetKind.DATA_WHITE) == "data_white"
        assert dataset_kind_name(DatasetKind.DATA_ERROR) == "data_error"
        assert dataset_kind_name(DatasetKind.ERRORS) == "errors"
        assert dataset_kind_name(DatasetKind.MASK) == "mask"
        assert dataset_kind_name(DatasetKind.RECIPROCAL_COORDINATES) == "reciprocal_coordinates"

    def test_lookup_by_name(self):
        assert dataset_kind_name("mask") == "mask"
        with pytest.raises(ValueError):
            dataset_kind_name("not_a_kind")


# ── Datasets ───────────────────────────────────────────────


class TestDataset:
    @pytest.fixture
    def detector(self, tmp_path):
        f = CXIFile.open(tmp_path / "datasets.cxi", "w")
        entry = f.create(EntryRecord()).entity
        detector = entry.create(InstrumentRecord()).entity.create(DetectorRecord()).entity
        yield detector
        f.close()

    @pytest.fixture
    def stack(self):
        return np.arange(4 * 3 * 5, dtype=np.float32).reshape(4, 3, 5)

    def test_dimensions(self, detector, stack):
        ds = detector.create_dataset(DatasetKind.DATA, data=stack).entity
        assert ds.dimensions == (4, 3, 5)
        assert ds.dimension_count == 3
        assert ds.size == 60
        assert ds.slice_size == 15
        assert ds.dtype == np.float32
        assert ds.length() == 60

    def test_full_read_matches_slices(self, detector, stack):
        ds = detector.create_dataset(DatasetKind.DATA, data=stack).entity
        full = ds.read()
        slices = np.stack([ds.read_slice(i) for i in range(4)])
        np.testing.assert_array_equal(full, stack)
        np.testing.assert_array_equal(slices, full)

    def test_slice_out_of_range(self, detector, stack):
        ds = detector.create_dataset(DatasetKind.DATA, data=stack).entity
        for bad in (4, 100, -1):
            with pytest.raises(PreconditionError):
                ds.read_slice(bad)
            with pytest.raises(PreconditionError):
                ds.write_slice(bad, np.zeros((3, 5)))

    def test_write_slice(self, detector, stack):
        ds = detector.create_dataset(DatasetKind.DATA, data=stack).entity
        ds.write_slice(1, np.full((3, 5), 7.0))
        np.testing.assert_array_equal(ds.read_slice(1), np.full((3, 5), 7.0))
        np.testing.assert_array_equal(ds.read_slice(0), stack[0])
        np.testing.assert_array_equal(ds.read_slice(2), stack[2])

    def test_write_slice_wrong_size(self, detector, stack):
        ds = detector.create_dataset(DatasetKind.DATA, data=stack).entity
        with pytest.raises(PreconditionError, match="Buffer holds"):
            ds.write_slice(0, np.zeros(14))

    def test_read_into_buffer_converts(self, detector, stack):
        ds = detector.create_dataset(DatasetKind.DATA, data=stack).entity
        buffer = np.empty(60, dtype=np.float64)
        result = ds.read(out=buffer)
        assert result is buffer
        np.testing.assert_array_equal(buffer, stack.ravel().astype(np.float64))

        frame = np.empty(15, dtype=np.int32)
        ds.read_slice(3, out=frame)
        np.testing.assert_array_equal(frame, stack[3].ravel().astype(np.int32))

    def test_buffer_wrong_size(self, detector, stack):
        ds = detector.create_dataset(DatasetKind.DATA, data=stack).entity
        with pytest.raises(PreconditionError):
            ds.read(out=np.empty(59))

    def test_write_with_memory_type(self, detector):
        description = DatasetDescription(dimensions=[10], dtype="int16")
        ds = detector.create_dataset(DatasetKind.MASK, description).entity
        ds.write(np.arange(10), dtype=np.int32)
        assert ds.dtype == np.int16
        values = ds.read(dtype=np.float32)
        assert values.dtype == np.float32
        np.testing.assert_array_equal(values, np.arange(10, dtype=np.float32))

    def test_write_wrong_size(self, detector):
        ds = detector.create_dataset(DatasetKind.DATA, DatasetDescription(dimensions=[2, 2], dtype="f4")).entity
        with pytest.raises(PreconditionError):
            ds.write(np.zeros(5))

    def test_description_keeps_byte_order(self, detector):
        description = DatasetDescription(dimensions=[4], dtype=">i4")
        assert description.dtype == np.dtype(">i4")
        ds = detector.create_dataset(DatasetKind.DATA, description).entity
        assert ds.dtype == np.dtype(">i4")
        ds.write([1, 2, 3, 4])
        np.testing.assert_array_equal(ds.read(), [1, 2, 3, 4])

    def test_description_keeps_compound_fields(self, detector):
        pixel = np.dtype([("x", "<f4"), ("y", "<i2")])
        description = DatasetDescription(dimensions=[3], dtype=pixel)
        assert description.dtype == pixel
        ds = detector.create_dataset(DatasetKind.MASK, description).entity
        assert ds.dtype.names == ("x", "y")

    def test_description_and_data_disagree(self, detector):
        description = DatasetDescription(dimensions=[2, 2], dtype="f4")
        assert description.size == 4
        with pytest.raises(PreconditionError, match="data has 5"):
            detector.create_dataset(DatasetKind.DATA, description, data=np.zeros(5))
        assert detector.data is None
        assert not detector.container.link_exists(detector.handle, "data")

    def test_zero_dimensions_rejected(self, detector):
        with pytest.raises(PreconditionError, match="at least one dimension"):
            detector.create_dataset(DatasetKind.DATA, DatasetDescription(dimensions=[], dtype="int16"))
        assert detector.data is None

    def test_kind_not_allowed_here(self, detector):
        with pytest.raises(PreconditionError, match="cannot hold"):
            detector.create_dataset(DatasetKind.RECIPROCAL_COORDINATES, data=np.zeros(3))

    def test_needs_description_or_data(self, detector):
        with pytest.raises(PreconditionError):
            detector.create_dataset(DatasetKind.DATA)

    def test_duplicate_dataset_fails(self, detector):
        detector.create_dataset(DatasetKind.DATA, data=np.zeros(3))
        with pytest.raises(ResourceError):
            detector.create_dataset(DatasetKind.DATA, data=np.zeros(3))

    def test_length_is_total(self, detector):
        assert dataset_length(None) == 0
        ds = detector.create_dataset(DatasetKind.DATA, data=np.zeros((2, 3))).entity
        assert dataset_length(ds) == 6
        ds.close()
        assert dataset_length(ds) == 0
        assert len(ds) == 0

    def test_closed_dataset_unusable(self, detector):
        ds = detector.create_dataset(DatasetKind.DATA, data=np.zeros(3)).entity
        ds.close()
        with pytest.raises(PreconditionError):
            ds.read()
        with pytest.raises(PreconditionError):
            ds.read_slice(0)

    def test_created_reference_registered(self, detector):
        ref = detector.create_dataset(DatasetKind.DATA_DARK, data=np.zeros(3))
        assert ref.state is NodeState.OPEN
        assert detector.data_dark is ref
        assert detector.datasets == {"data_dark": ref}


# ── Tree & Lifecycle ───────────────────────────────────────


class TestTree:
    def test_scenario(self, scenario_file):
        with CXIFile.open(scenario_file) as f:
            assert f.cxi_version == CXI_VERSION
            assert f.entry_count == 1
            entry = f.entries[0].open()
            assert entry.start_time == START
            assert len(entry.instruments) == 1
            instrument = entry.instruments[0].open()
            assert instrument.name == "AMO"
            assert len(instrument.detectors) == 1
            detector = instrument.detectors[0].open()
            assert detector.distance == 0.15
            dataset = detector.data.open()
            assert dataset.length() == 10
            assert dataset.read_slice(2) == 3
            assert dataset.dtype == np.int16

    def test_open_is_lazy(self, scenario_file):
        with CXIFile.open(scenario_file) as f:
            before = f.container.open_handle_count
            entry = f.entries[0].open()
            assert f.container.open_handle_count == before + 1
            assert all(ref.state is NodeState.UNOPENED for ref in entry.instruments)

    def test_absent_fields_are_none(self, scenario_file):
        with CXIFile.open(scenario_file) as f:
            entry = f.entries[0].open()
            assert entry.end_time is None
            assert entry.program_name is None
            assert entry.record.present() == {"start_time": START, "title": "Dummy entry"}

    def test_unknown_attribute(self, scenario_file):
        with CXIFile.open(scenario_file) as f:
            entry = f.entries[0].open()
            with pytest.raises(AttributeError):
                entry.not_a_field

    def test_lifecycle_balance(self, scenario_file):
        f = CXIFile.open(scenario_file)
        before = f.container.open_handle_count
        entry = f.entries[0].open()
        detector = entry.instruments[0].open().detectors[0].open()
        dataset = detector.data.open()
        assert f.container.open_handle_count == before + 4

        entry.close()
        assert f.container.open_handle_count == before
        assert not dataset.is_open
        assert not detector.is_open

        f.close()
        assert f.container.open_handle_count == 0

    def test_file_close_closes_subtree(self, scenario_file):
        f = CXIFile.open(scenario_file)
        entry = f.entries[0].open()
        instrument = entry.instruments[0].open()
        dataset = instrument.detectors[0].open().data.open()
        f.close()
        assert not entry.is_open
        assert not instrument.is_open
        assert not dataset.is_open
        assert not f.container.is_open

    def test_double_close_raises(self, scenario_file):
        with CXIFile.open(scenario_file) as f:
            entry = f.entries[0].open()
            entry.close()
            with pytest.raises(PreconditionError, match="already closed"):
                entry.close()

    def test_file_double_close_raises(self, scenario_file):
        f = CXIFile.open(scenario_file)
        f.close()
        with pytest.raises(PreconditionError):
            f.close()

    def test_closed_reference_cannot_reopen(self, scenario_file):
        with CXIFile.open(scenario_file) as f:
            ref = f.entries[0]
            ref.open().close()
            assert ref.state is NodeState.CLOSED
            with pytest.raises(PreconditionError, match="rederive"):
                ref.open()

    def test_rederive(self, scenario_file):
        with CXIFile.open(scenario_file) as f:
            ref = f.entries[0]
            ref.open().close()
            fresh = ref.rederive()
            assert fresh is not ref
            assert fresh.state is NodeState.UNOPENED
            assert f.entries[0] is fresh
            assert fresh.open().start_time == START

    def test_rederive_open_reference_raises(self, scenario_file):
        with CXIFile.open(scenario_file) as f:
            ref = f.entries[0]
            ref.open()
            with pytest.raises(PreconditionError):
                ref.rederive()

    def test_open_twice_returns_same_node(self, scenario_file):
        with CXIFile.open(scenario_file) as f:
            ref = f.entries[0]
            assert ref.open() is ref.open()

    def test_failed_open_leaves_reference_unopened(self, scenario_file):
        with CXIFile.open(scenario_file) as f:
            before = f.container.open_handle_count
            ref = Reference(f, "entry_7", Entry)
            with pytest.raises(ResourceError):
                ref.open()
            assert ref.state is NodeState.UNOPENED
            assert f.container.open_handle_count == before

    def test_reference_unusable_after_parent_closed(self, scenario_file):
        f = CXIFile.open(scenario_file)
        entry = f.entries[0].open()
        ref = entry.instruments[0]
        entry.close()
        with pytest.raises(PreconditionError):
            ref.open()
        f.close()

    def test_partial_subtree_closed_explicitly(self, scenario_file):
        with CXIFile.open(scenario_file) as f:
            entry = f.entries[0].open()
            instrument = entry.instruments[0].open()
            instrument.detectors[0].open()
            with pytest.raises(ResourceError):
                Reference(instrument, "detector_9", Detector).open()
            # Siblings already opened are unaffected
            assert instrument.detectors[0].state is NodeState.OPEN
            entry.close()
            assert f.container.open_handle_count == 1


# ── Writing ────────────────────────────────────────────────


class TestWriting:
    def test_invalid_timestamp_writes_nothing(self, tmp_path):
        with CXIFile.open(tmp_path / "bad_date.cxi", "w") as f:
            with pytest.raises(DateFormatError):
                f.create(EntryRecord(start_time="2013-01-12 08:00:00+0100"))
            with pytest.raises(DateFormatError):
                f.create(EntryRecord(start_time=START, end_time="13-01-12T08:02:24+0100"))
            assert f.entry_count == 0
            assert not f.container.link_exists(f.handle, "entry_1")

    def test_child_kind_not_allowed(self, tmp_path):
        with CXIFile.open(tmp_path / "kinds.cxi", "w") as f:
            with pytest.raises(PreconditionError, match="cannot hold"):
                f.create(InstrumentRecord(name="AMO"))

    def test_groups_numbered_in_order(self, tmp_path):
        path = tmp_path / "numbered.cxi"
        with CXIFile.open(path, "w") as f:
            entry = f.create(EntryRecord()).entity
            instrument = entry.create(InstrumentRecord()).entity
            refs = [instrument.create(DetectorRecord(distance=d)) for d in (0.15, 0.65)]
            assert [r.name for r in refs] == ["detector_1", "detector_2"]
            assert instrument.detectors == refs

        with CXIFile.open(path) as f:
            instrument = f.entries[0].open().instruments[0].open()
            distances = [ref.open().distance for ref in instrument.detectors]
            assert distances == [0.15, 0.65]

    def test_absent_fields_not_written(self, tmp_path):
        path = tmp_path / "sparse.cxi"
        with CXIFile.open(path, "w") as f:
            f.create(EntryRecord(title="only title"))
        with h5py.File(path, "r") as h5:
            assert set(h5["entry_1"].keys()) == {"title"}

    def test_full_schema_round_trip(self, tmp_path):
        path = tmp_path / "schema.cxi"
        source = SourceRecord(energy=2.8893e-16, name="LCLS", pulse_width=7e-14)
        sample = SampleRecord(name="Mimivirus", unit_cell=((1, 2, 3), (90, 90, 90)))
        geometry = GeometryRecord(translation=(0.0, 0.0, 0.15))
        image = ImageRecord(dimensionality=2, image_center=(1.0, 2.0, 3.0), is_fft_shifted=1)

        with CXIFile.open(path, "w") as f:
            entry = f.create(EntryRecord(experiment_identifier="L730")).entity
            instrument = entry.create(InstrumentRecord(name="AMO")).entity
            instrument.create(source)
            entry.create(sample).entity.create(geometry)
            entry.create(image)

        with CXIFile.open(path) as f:
            entry = f.entries[0].open()
            assert entry.experiment_identifier == "L730"
            assert entry.instruments[0].open().sources[0].open().record == source
            opened_sample = entry.samples[0].open()
            assert opened_sample.record == sample
            assert opened_sample.unit_cell == ((1.0, 2.0, 3.0), (90.0, 90.0, 90.0))
            assert opened_sample.geometries[0].open().record == geometry
            assert entry.images[0].open().record == image

    def test_detector_defaults(self, tmp_path):
        path = tmp_path / "defaults.cxi"
        with CXIFile.open(path, "w") as f:
            instrument = f.create(EntryRecord()).entity.create(InstrumentRecord()).entity
            instrument.create(DetectorRecord(x_pixel_size=75e-6))

        with CXIFile.open(path) as f:
            detector = f.entries[0].open().instruments[0].open().detectors[0].open()
            assert detector.basis_vectors is None
            assert detector.y_pixel_size is None
            assert detector.effective_pixel_size() == (75e-6, 1.0)
            assert detector.effective_basis_vectors() == ((0.0, -1.0, 0.0), (-75e-6, 0.0, 0.0))

    def test_stored_basis_vectors_win(self, tmp_path):
        path = tmp_path / "basis.cxi"
        basis = ((0.0, -2.0, 0.0), (-2.0, 0.0, 0.0))
        with CXIFile.open(path, "w") as f:
            instrument = f.create(EntryRecord()).entity.create(InstrumentRecord()).entity
            instrument.create(DetectorRecord(basis_vectors=basis))

        with CXIFile.open(path) as f:
            detector = f.entries[0].open().instruments[0].open().detectors[0].open()
            assert detector.effective_basis_vectors() == basis

    def test_data_link(self, tmp_path):
        path = tmp_path / "link.cxi"
        with CXIFile.open(path, "w") as f:
            entry = f.create(EntryRecord()).entity
            detector = entry.create(InstrumentRecord()).entity.create(DetectorRecord()).entity
            dataset_ref = detector.create_dataset(DatasetKind.DATA, data=np.arange(6).reshape(2, 3))
            link = entry.create_data_link(dataset_ref)
            assert link.name == "data_1"

        with CXIFile.open(path) as f:
            entry = f.entries[0].open()
            assert len(entry.data) == 1
            data = entry.data[0].open()
            np.testing.assert_array_equal(data.data.open().read(), np.arange(6).reshape(2, 3))

    def test_append_mode(self, scenario_file):
        with CXIFile.open(scenario_file, "a") as f:
            ref = f.create_entry(title="second")
            assert ref.name == "entry_2"

        with CXIFile.open(scenario_file) as f:
            assert f.entry_count == 2
            assert f.entries[1].open().title == "second"

    def test_read_only_file_rejects_create(self, scenario_file):
        with CXIFile.open(scenario_file) as f:
            with pytest.raises(ResourceError):
                f.create(EntryRecord())
            assert f.entry_count == 1

    def test_data_group_record_is_empty(self, tmp_path):
        with CXIFile.open(tmp_path / "empty.cxi", "w") as f:
            entry = f.create(EntryRecord()).entity
            assert entry.create(DataRecord()).entity.record.present() == {}


# ── Reading Foreign Files ──────────────────────────────────


class TestForeignFiles:
    def test_non_utf8_string_reads_as_absent(self, tmp_path):
        path = tmp_path / "latin1.cxi"
        with h5py.File(path, "w") as h5:
            h5["cxi_version"] = 130
            entry = h5.create_group("entry_1")
            entry["title"] = np.bytes_(b"Caf\xe9")
            entry["program_name"] = np.bytes_(b"cheetah")
            entry["start_time"] = START

        with CXIFile.open(path) as f:
            entry = f.entries[0].open()
            assert entry.title is None
            assert entry.program_name == "cheetah"
            assert entry.start_time == START

    def test_mismatched_fields_read_as_absent(self, tmp_path):
        path = tmp_path / "foreign.cxi"
        with h5py.File(path, "w") as h5:
            h5["cxi_version"] = 130
            entry = h5.create_group("entry_1")
            entry["start_time"] = 3.5
            entry["title"] = "T"
            entry.create_group("program_name")
            h5.create_group("entry_2")
            h5.create_group("entry_4")

        with CXIFile.open(path) as f:
            assert f.entry_count == 2
            entry = f.entries[0].open()
            assert entry.start_time is None
            assert entry.program_name is None
            assert entry.title == "T"

    def test_listing_enumerator_injected(self, tmp_path):
        path = tmp_path / "listing.cxi"
        with h5py.File(path, "w") as h5:
            for name in ("entry_1", "entry_2", "entry_3", "entry_5"):
                h5.create_group(name)

        with CXIFile.open(path, enumerator=ListingEnumerator()) as f:
            assert [ref.name for ref in f.entries] == ["entry_1", "entry_2", "entry_3"]

    def test_missing_version_warns(self, tmp_path, caplog):
        path = tmp_path / "noversion.cxi"
        with h5py.File(path, "w") as h5:
            h5.create_group("entry_1")

        with caplog.at_level(logging.WARNING, logger="pycxi"):
            with CXIFile.open(path) as f:
                assert f.cxi_version is None
                assert f.entry_count == 1
        assert "could not read the CXI version" in caplog.text

    def test_newer_version_warns_on_injected_logger(self, tmp_path, caplog):
        path = tmp_path / "newer.cxi"
        with h5py.File(path, "w") as h5:
            h5["cxi_version"] = CXI_VERSION + 10

        logger = logging.getLogger("tests.cxi")
        with caplog.at_level(logging.WARNING, logger="tests.cxi"):
            with CXIFile.open(path, logger=logger) as f:
                assert f.cxi_version == CXI_VERSION + 10
        records = [r for r in caplog.records if "newer" in r.getMessage()]
        assert len(records) == 1
        assert records[0].name == "tests.cxi"

    def test_multiple_geometries_warn(self, tmp_path, caplog):
        path = tmp_path / "geometries.cxi"
        with CXIFile.open(path, "w") as f:
            instrument = f.create(EntryRecord()).entity.create(InstrumentRecord()).entity
            detector = instrument.create(DetectorRecord()).entity
            detector.create(GeometryRecord())
            detector.create(GeometryRecord())

        with caplog.at_level(logging.WARNING, logger="pycxi"):
            with CXIFile.open(path) as f:
                detector = f.entries[0].open().instruments[0].open().detectors[0].open()
                assert len(detector.geometries) == 2
        assert "2 geometries" in caplog.text


# ── CLI ────────────────────────────────────────────────────


class TestCLI:
    def test_cli_info(self, scenario_file):
        from click.testing import CliRunner

        from pycxi.cli.main import cli

        runner = CliRunner()
        result = runner.invoke(cli, ["info", str(scenario_file)])
        assert result.exit_code == 0
        assert "entry_1" in result.output
        assert START in result.output
        assert str(CXI_VERSION) in result.output

    def test_cli_tree(self, scenario_file):
        from click.testing import CliRunner

        from pycxi.cli.main import cli

        runner = CliRunner()
        result = runner.invoke(cli, ["tree", str(scenario_file)])
        assert result.exit_code == 0
        assert "instrument_1" in result.output
        assert "detector_1" in result.output
        assert "AMO" in result.output

    def test_cli_version(self):
        from click.testing import CliRunner

        from pycxi.cli.main import cli

        runner = CliRunner()
        result = runner.invoke(cli, ["--version"])
        assert "0.1.0" in result.output

    def test_cli_bad_file(self, tmp_path):
        from click.testing import CliRunner

        from pycxi.cli.main import cli

        path = tmp_path / "not_hdf5.cxi"
        path.write_text("hello")
        runner = CliRunner()
        result = runner.invoke(cli, ["info", str(path)])
        assert result.exit_code == 1
        assert "Error opening" in result.output

    def test_cli_plot(self, scenario_file, tmp_path):
        matplotlib = pytest.importorskip("matplotlib")
        matplotlib.use("Agg")
        from click.testing import CliRunner

        from pycxi.cli.main import cli

        out = tmp_path / "slice.png"
        runner = CliRunner()
        result = runner.invoke(cli, ["plot", str(scenario_file), "--slice", "2", "-o", str(out)])
        assert result.exit_code == 0
        assert out.exists()
        assert "Saved" in result.output

    def test_cli_plot_missing_detector(self, scenario_file):
        matplotlib = pytest.importorskip("matplotlib")
        matplotlib.use("Agg")
        from click.testing import CliRunner

        from pycxi.cli.main import cli

        runner = CliRunner()
        result = runner.invoke(cli, ["plot", str(scenario_file), "--detector", "3"])
        assert result.exit_code == 1
        assert "No detector" in result.output

        result = runner.invoke(cli, ["plot", str(scenario_file), "--slice", "10"])
        assert result.exit_code == 1
        assert "out of range" in result.output
