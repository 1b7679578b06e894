"""Exception types raised by the IPL analysis pipeline."""

from __future__ import annotations


class IplPipeError(Exception):
    """Base class for pipeline errors."""


class RoiValidationError(IplPipeError, ValueError):
    """The persisted ROI population is structurally invalid."""


class ParameterError(IplPipeError, ValueError):
    """An analysis parameter (stimulus index, bin edges, cap, ...) is invalid."""
