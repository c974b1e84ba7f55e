"""pycxi Example: Simulated Diffraction Run

This example writes a small CXI file without any beamline data. It
simulates a stack of noisy diffraction frames from a spherical particle,
stores them under a detector together with source and sample metadata,
then reopens the file and walks the tree back.

Run:
    python examples/simulated_diffraction.py

Output:
    - Creates diffraction_demo.cxi
    - Prints the stored metadata and per-frame photon counts
"""

import numpy as np

from pycxi import (
    CXIFile,
    DatasetDescription,
    DatasetKind,
    DetectorRecord,
    EntryRecord,
    InstrumentRecord,
    SampleRecord,
    SourceRecord,
)

PHOTON_ENERGY_J = 2.8893e-16  # ~1.8 keV
PIXEL_SIZE_M = 75e-6


def sphere_pattern(shape: tuple[int, int], radius_px: float) -> np.ndarray:
    """Intensity of a uniform sphere's form factor on a flat detector."""
    ny, nx = shape
    y, x = np.indices(shape)
    q = np.hypot(x - nx / 2, y - ny / 2) * np.pi / radius_px + 1e-9
    form = 3 * (np.sin(q) - q * np.cos(q)) / q**3
    return form**2


def simulate_run(path: str = "diffraction_demo.cxi", frames: int = 20, seed: int = 0) -> str:
    """Write ``frames`` noisy sphere patterns into a new CXI file."""
    rng = np.random.default_rng(seed)
    shape = (128, 128)

    with CXIFile.open(path, "w") as f:
        entry = f.create(
            EntryRecord(
                start_time="2013-01-12T08:00:00+0100",
                end_time="2013-01-12T08:02:24+0100",
                experiment_identifier="demo_run_0001",
                program_name="simulated_diffraction.py",
            )
        ).entity

        instrument = entry.create(InstrumentRecord(name="AMO")).entity
        instrument.create(SourceRecord(name="simulated FEL", energy=PHOTON_ENERGY_J, pulse_width=7e-14))
        detector = instrument.create(
            DetectorRecord(
                description="simulated pnCCD",
                distance=0.738,
                x_pixel_size=PIXEL_SIZE_M,
                y_pixel_size=PIXEL_SIZE_M,
            )
        ).entity

        data = detector.create_dataset(
            DatasetKind.DATA,
            DatasetDescription(dimensions=(frames, *shape), dtype="int32"),
        )
        for i in range(frames):
            # Particle size jitters from shot to shot
            pattern = sphere_pattern(shape, radius_px=rng.uniform(6.0, 9.0))
            photons = rng.poisson(pattern * 5e3)
            data.entity.write_slice(i, photons)

        # Readers find the entry's main data through data_1/data
        entry.create_data_link(data)
        entry.create(SampleRecord(name="polystyrene sphere", description="simulated"))

    return path


def summarize(path: str) -> None:
    with CXIFile.open(path) as f:
        print(f"{f.filename}: CXI version {f.cxi_version}, {f.entry_count} entry")
        entry = f.entries[0].open()
        print(f"  {entry.experiment_identifier}: {entry.start_time} → {entry.end_time}")

        instrument = entry.instruments[0].open()
        source = instrument.sources[0].open()
        print(f"  {instrument.name} / {source.name}: {source.energy:.4e} J per photon")

        detector = instrument.detectors[0].open()
        x, y = detector.effective_pixel_size()
        print(f"  detector at {detector.distance} m, pixels {x * 1e6:.0f} x {y * 1e6:.0f} µm")

        frames = entry.data[0].open().data.open()
        print(f"  data {frames.dimensions} ({frames.dtype})")
        for i in range(frames.dimensions[0]):
            print(f"    frame {i:2d}: {int(frames.read_slice(i).sum()):8d} photons")


if __name__ == "__main__":
    summarize(simulate_run())
