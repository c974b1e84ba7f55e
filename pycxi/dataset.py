"""Dataset — n-dimensional arrays inside CXI groups.

Datasets are read or written either in full or one slice at a time, where a
slice fixes the leading dimension (the per-frame axis) to a single index:

    ds = detector.data.open()
    ds.dimensions            # (frames, ny, nx)
    frame = ds.read_slice(2) # shape (ny, nx)
    stack = ds.read()        # shape (frames, ny, nx)
"""

from __future__ import annotations

import math
import operator
from typing import Any, Optional

import numpy as np

from pycxi.errors import PreconditionError
from pycxi.storage.container import Container, Handle
from pycxi.tree import Node, Reference, TreeContext


class Dataset(Node):
    """An open dataset with its element type and dimensions."""

    def __init__(self, context: TreeContext, handle: Handle, reference: Reference | None = None) -> None:
        super().__init__(context, handle, reference)
        self.dtype, self.dimensions = context.container.get_dataset_shape(handle)

    @classmethod
    def _acquire(cls, container: Container, parent: Handle, name: str) -> Handle:
        return container.open_dataset(parent, name)

    @classmethod
    def _release_handle(cls, container: Container, handle: Handle) -> None:
        container.close_dataset(handle)

    # --- Shape ---

    @property
    def dimension_count(self) -> int:
        return len(self.dimensions)

    @property
    def size(self) -> int:
        """Total number of elements (0 for a dimensionless dataset)."""
        return math.prod(self.dimensions) if self.dimensions else 0

    @property
    def slice_size(self) -> int:
        """Number of elements in one slice along the leading dimension."""
        if not self.dimensions or self.dimensions[0] == 0:
            return 0
        return self.size // self.dimensions[0]

    @property
    def slice_shape(self) -> tuple[int, ...]:
        return self.dimensions[1:]

    def length(self) -> int:
        """Total number of elements, or 0 if the dataset is closed or dimensionless."""
        return self.size if self.is_open else 0

    def __len__(self) -> int:
        return self.length()

    # --- Reading ---

    def read(self, out: np.ndarray | None = None, dtype: Any = None) -> np.ndarray:
        """Read the whole dataset.

        Args:
            out: Optional buffer holding exactly ``size`` elements. Data is
                converted to its dtype and copied into it.
            dtype: Element type to convert to. Defaults to ``out.dtype`` or
                the dataset's own type.

        Returns:
            Array of shape ``dimensions`` (or ``out`` if given).
        """
        self._require_open()
        if out is not None:
            self._check_buffer(out, self.size)
            dtype = out.dtype if dtype is None else dtype
        values = np.asarray(self.container.read_dataset(self.handle, dtype))
        if out is None:
            return values
        np.copyto(out, values.reshape(out.shape), casting="unsafe")
        return out

    def read_slice(self, index: int, out: np.ndarray | None = None, dtype: Any = None) -> np.ndarray:
        """Read slice ``index`` of the leading dimension.

        Returns:
            Array of shape ``dimensions[1:]`` (or ``out`` if given).
        """
        start, count = self._slice_region(index)
        if out is not None:
            self._check_buffer(out, self.slice_size)
            dtype = out.dtype if dtype is None else dtype
        values = self.container.read_dataset_region(self.handle, start, count, dtype)
        values = np.asarray(values).reshape(self.slice_shape)
        if out is None:
            return values
        np.copyto(out, values.reshape(out.shape), casting="unsafe")
        return out

    # --- Writing ---

    def write(self, values: Any, dtype: Any = None) -> None:
        """Write the whole dataset from ``size`` values (held in memory as ``dtype``)."""
        self._require_open()
        arr = np.asarray(values, dtype=dtype)
        self._check_buffer(arr, self.size)
        self.container.write_dataset(self.handle, arr.reshape(self.dimensions))

    def write_slice(self, index: int, values: Any, dtype: Any = None) -> None:
        """Write slice ``index`` of the leading dimension from ``slice_size`` values."""
        start, count = self._slice_region(index)
        arr = np.asarray(values, dtype=dtype)
        self._check_buffer(arr, self.slice_size)
        self.container.write_dataset_region(self.handle, start, count, arr)

    # --- Helpers ---

    def _slice_region(self, index: int) -> tuple[tuple[int, ...], tuple[int, ...]]:
        self._require_open()
        if not self.dimensions:
            raise PreconditionError(f"Dataset {self.path} has no dimensions to slice.")
        try:
            index = operator.index(index)
        except TypeError:
            raise PreconditionError(f"Slice index must be an integer, got {index!r}") from None
        if not 0 <= index < self.dimensions[0]:
            raise PreconditionError(
                f"Slice {index} out of range for {self.path} with {self.dimensions[0]} slices"
            )
        start = (index,) + (0,) * (self.dimension_count - 1)
        count = (1,) + self.slice_shape
        return start, count

    def _check_buffer(self, buffer: np.ndarray, expected: int) -> None:
        if buffer.size != expected:
            raise PreconditionError(
                f"Buffer holds {buffer.size} elements, {self.path} needs {expected}"
            )

    def __repr__(self) -> str:
        status = "open" if self.is_open else "closed"
        return f"Dataset('{self.path}', dtype={self.dtype}, dimensions={self.dimensions}, {status})"


def dataset_length(dataset: Optional[Dataset]) -> int:
    """Number of elements in ``dataset``; 0 for ``None``, closed or dimensionless datasets."""
    if dataset is None:
        return 0
    return dataset.length()
