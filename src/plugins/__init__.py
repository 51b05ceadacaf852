"""
Plugin system for the RKE1 operator.

This package provides the reconciler plugin architecture and the registry
that maps managed resource kinds to reconcilers.
"""

from plugins.reconcilers.base import (
    ExternalClient,
    ReconcilerContext,
    ReconcilerPlugin,
    ReconcileResult,
)
from plugins.registry import ReconcilerRegistry, build_registry

__all__ = [
    "ExternalClient",
    "ReconcilerPlugin",
    "ReconcilerContext",
    "ReconcileResult",
    "ReconcilerRegistry",
    "build_registry",
]
