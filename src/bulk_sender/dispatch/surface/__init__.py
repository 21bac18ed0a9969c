"""Surface implementations for delivery contexts."""

from bulk_sender.dispatch.surface.base import (
    ContextLease,
    ContextProvider,
    ContextUnavailableError,
    ManagedProvider,
    SurfaceContext,
    SurfaceError,
    SurfaceObservation,
    SurfaceProbe,
    SurfaceStatus,
)
from bulk_sender.dispatch.surface.scripted import ScriptedProvider, ScriptedSurface, SurfaceScript

__all__ = [
    "ContextLease",
    "ContextProvider",
    "ContextUnavailableError",
    "ManagedProvider",
    "ScriptedProvider",
    "ScriptedSurface",
    "SurfaceContext",
    "SurfaceError",
    "SurfaceObservation",
    "SurfaceProbe",
    "SurfaceScript",
    "SurfaceStatus",
]
