"""pycxi CLI — command-line inspection of CXI files.

Commands:
    pycxi info <file>     Show file version and per-entry summary
    pycxi tree <file>     Show the full group/dataset hierarchy
    pycxi plot <file>     Plot one slice of a detector's data
"""

from __future__ import annotations

from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from pycxi import __version__
from pycxi.errors import CXIError
from pycxi.file import CXIFile
from pycxi.storage import format as fmt
from pycxi.utils.logging import default_level, setup_logging

console = Console()


def _open_or_exit(file: Path) -> CXIFile:
    try:
        return CXIFile.open(file)
    except CXIError as e:
        console.print(f"[red]Error opening {file}: {e}[/red]")
        raise SystemExit(1)


@click.group()
@click.version_option(version=__version__, prog_name="pycxi")
@click.option("--log-level", default=None, help="Logging level (default: $PYCXI_LOG_LEVEL or WARNING)")
def cli(log_level: str | None) -> None:
    """pycxi — inspect CXI (Coherent X-ray Imaging) files."""
    setup_logging(log_level or default_level())


@cli.command()
@click.argument("file", type=click.Path(exists=True, path_type=Path))
def info(file: Path) -> None:
    """Show file version and a summary of each entry."""
    cxi = _open_or_exit(file)

    console.print()
    console.print(Panel.fit(f"[bold]{file.name}[/bold]", subtitle=f"{file}"))

    meta_table = Table(show_header=False, box=None, padding=(0, 2))
    meta_table.add_column("Key", style="dim")
    meta_table.add_column("Value")
    version = cxi.cxi_version
    meta_table.add_row("CXI version", "unknown" if version is None else str(version))
    meta_table.add_row("Entries", str(cxi.entry_count))
    console.print(meta_table)

    for ref in cxi.entries:
        entry = ref.open()
        console.print()
        entry_table = Table(title=ref.name)
        entry_table.add_column("Field")
        entry_table.add_column("Value")
        for name, value in entry.record.present().items():
            entry_table.add_row(name, str(value))
        for base in entry.child_types:
            entry_table.add_row(f"{base} groups", str(entry.count(base)))
        console.print(entry_table)
        entry.close()

    cxi.close()
    console.print()


def _add_group(branch: Tree, group) -> None:
    for name, value in group.record.present().items():
        branch.add(f"[dim]{name} = {value}[/dim]")
    for name, ref in group.datasets.items():
        dataset = ref.open()
        branch.add(f"[cyan]{name}[/cyan] {dataset.dtype} {list(dataset.dimensions)}")
        dataset.close()
    for base in group.child_types:
        for ref in group.children(base):
            child = ref.open()
            _add_group(branch.add(f"[bold]{ref.name}[/bold]"), child)
            child.close()


@cli.command()
@click.argument("file", type=click.Path(exists=True, path_type=Path))
def tree(file: Path) -> None:
    """Show the hierarchy of groups, fields and datasets."""
    cxi = _open_or_exit(file)
    root = Tree(f"[bold]{file.name}[/bold] (CXI {cxi.cxi_version})")
    _add_group(root, cxi)
    cxi.close()
    console.print(root)


@cli.command()
@click.argument("file", type=click.Path(exists=True, path_type=Path))
@click.option("--entry", "entry_n", default=1, help="Entry number (1-based)")
@click.option("--instrument", "instrument_n", default=1, help="Instrument number (1-based)")
@click.option("--detector", "detector_n", default=1, help="Detector number (1-based)")
@click.option("--slice", "slice_index", default=0, help="Index along the leading dimension")
@click.option("--output", "-o", type=click.Path(path_type=Path), help="Save plot to file")
def plot(
    file: Path,
    entry_n: int,
    instrument_n: int,
    detector_n: int,
    slice_index: int,
    output: Path | None,
) -> None:
    """Plot one slice of a detector's data."""
    try:
        import matplotlib.pyplot as plt
    except ImportError:
        console.print("[red]matplotlib required. Install with: pip install pycxi[viz][/red]")
        raise SystemExit(1)

    with _open_or_exit(file) as cxi:
        try:
            entry = cxi.entries[entry_n - 1].open()
            instrument = entry.instruments[instrument_n - 1].open()
            detector = instrument.detectors[detector_n - 1].open()
        except IndexError:
            console.print(
                f"[red]No {fmt.DETECTOR} at entry {entry_n} / instrument {instrument_n} / "
                f"detector {detector_n}[/red]"
            )
            raise SystemExit(1)
        if detector.data is None:
            console.print(f"[red]{detector.path} has no data[/red]")
            raise SystemExit(1)
        try:
            frame = detector.data.open().read_slice(slice_index)
        except CXIError as e:
            console.print(f"[red]{e}[/red]")
            raise SystemExit(1)

    fig, ax = plt.subplots(figsize=(6, 5))
    if frame.ndim >= 2:
        im = ax.imshow(frame.reshape(-1, frame.shape[-1]), origin="lower")
        fig.colorbar(im, ax=ax)
    else:
        ax.plot(frame.reshape(-1), linewidth=0.8)
    ax.set_title(f"{file.name} — {detector.path} [{slice_index}]")
    fig.tight_layout()

    if output:
        fig.savefig(output, dpi=150, bbox_inches="tight")
        console.print(f"Saved: {output}")
    else:
        plt.show()


if __name__ == "__main__":
    cli()
