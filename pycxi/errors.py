"""Exceptions raised by pycxi.

Schema mismatches (a field stored with an unexpected type or shape) are not
errors: such fields simply read back as ``None``.
"""

from __future__ import annotations


class CXIError(Exception):
    """Base class for all pycxi errors."""


class ResourceError(CXIError):
    """A container group or dataset could not be opened or created."""


class PreconditionError(CXIError, ValueError):
    """A required input is missing, out of range, or the node is in the wrong state."""


class DateFormatError(PreconditionError):
    """A timestamp does not follow the fixed-width ISO 8601 pattern."""
