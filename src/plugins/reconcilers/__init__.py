"""
Reconciler plugins package.

Reconciler plugins own the reconciliation logic for one or more managed
resource kinds. Besides the built-ins they are discovered via Python entry
points (group: 'rke1_operator.reconcilers').
"""

from plugins.reconcilers.base import (
    ExternalClient,
    ReconcilerContext,
    ReconcilerPlugin,
    ReconcileResult,
)

__all__ = ["ExternalClient", "ReconcilerPlugin", "ReconcilerContext", "ReconcileResult"]
