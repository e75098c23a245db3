"""Exceptions raised by the density initialization engine.

Every error derives from `DensityInitError` and from the builtin exception
that best matches its meaning, so callers can catch either the specific kind,
the package base class, or the builtin (e.g. ``ValueError`` for configuration
problems).
"""

from __future__ import annotations


class DensityInitError(Exception):
    """Base class of all density-init errors."""


class UnsupportedMeshKind(DensityInitError, TypeError):
    """The mesh does not match any of the four supported mesh kinds."""


class InvalidSearchStrategy(DensityInitError, ValueError):
    """The search strategy is not one of 'naive', 'tree' or 'walking'."""


class UnsupportedSearchForMeshKind(DensityInitError, ValueError):
    """The search strategy is not available for the mesh kind."""


class InvalidInitMode(DensityInitError, ValueError):
    """The initialization mode is not one of 'Heat' or 'CV'."""


class InvalidInitParameter(DensityInitError, ValueError):
    """A numeric parameter or the data array is not usable."""


class PointOutsideMesh(DensityInitError, LookupError):
    """No mesh element contains the query point."""

    def __init__(self, point: object) -> None:
        super().__init__(f"point {point!r} is not contained in any mesh element")
        self.point = point


class NoPointsLocated(DensityInitError, RuntimeError):
    """None of the data points lies inside the mesh."""


class CVFailed(DensityInitError, RuntimeError):
    """Cross-validation could not score any candidate smoothing parameter."""


class NumericalDivergence(DensityInitError, FloatingPointError):
    """The explicit heat iteration produced non-finite or exploding values."""


class InitializationCancelled(DensityInitError, RuntimeError):
    """The caller requested cancellation through the cancel event."""
