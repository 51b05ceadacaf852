"""
Reconciler Registry - Discovery and registration of reconciler plugins.

The registry is built once at startup and handed to the controller and the
API; there is no process-wide instance.
"""

import logging
from importlib.metadata import entry_points
from typing import Any, Dict, List, Optional, Type

from plugins.reconcilers.base import ReconcilerPlugin

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "rke1_operator.reconcilers"


class ReconcilerRegistry:
    """Maps managed resource kinds to the reconciler that owns them."""

    def __init__(self):
        self._reconcilers: Dict[str, ReconcilerPlugin] = {}
        self._kind_to_reconciler: Dict[str, str] = {}

    def register(self, plugin_class: Type[ReconcilerPlugin]) -> ReconcilerPlugin:
        """
        Register a reconciler plugin class.

        Args:
            plugin_class: The ReconcilerPlugin subclass to register

        Returns:
            The registered reconciler instance

        Raises:
            ValueError: If the name or a kind is already claimed
        """
        reconciler = plugin_class()
        name = reconciler.name
        kinds = reconciler.kinds

        if name in self._reconcilers:
            raise ValueError(f"Reconciler '{name}' is already registered")

        for kind in kinds:
            existing = self._kind_to_reconciler.get(kind)
            if existing:
                raise ValueError(
                    f"Kind '{kind}' is already claimed by "
                    f"reconciler '{existing}'. Cannot register '{name}'."
                )

        self._reconcilers[name] = reconciler
        for kind in kinds:
            self._kind_to_reconciler[kind] = name

        logger.info(f"Registered reconciler: {name} (kinds: {', '.join(kinds)})")
        return reconciler

    def get(self, name: str) -> ReconcilerPlugin:
        """
        Get a reconciler by name.

        Raises:
            ValueError: If the reconciler name is not registered
        """
        if name not in self._reconcilers:
            available = ", ".join(self._reconcilers.keys()) or "none"
            raise ValueError(
                f"Unknown reconciler: {name}. Available reconcilers: {available}"
            )
        return self._reconcilers[name]

    def for_kind(self, kind: str) -> Optional[ReconcilerPlugin]:
        """Get the reconciler for a kind, or None if no reconciler handles it."""
        name = self._kind_to_reconciler.get(kind)
        if name is None:
            return None
        return self._reconcilers[name]

    def has_kind(self, kind: str) -> bool:
        return kind in self._kind_to_reconciler

    def list_reconcilers(self) -> List[str]:
        return list(self._reconcilers.keys())

    def list_kinds(self) -> List[str]:
        return list(self._kind_to_reconciler.keys())

    def get_info(self, name: str) -> Optional[Dict[str, Any]]:
        """Dictionary with 'name' and 'kinds', or None if not found."""
        reconciler = self._reconcilers.get(name)
        if reconciler is None:
            return None
        return {"name": reconciler.name, "kinds": list(reconciler.kinds)}


def register_builtin_reconcilers(registry: ReconcilerRegistry) -> None:
    """Register the reconcilers that ship with the operator."""
    from plugins.reconcilers.cluster import RKE1ClusterReconciler
    from plugins.reconcilers.nodetemplate import RKE1NodeTemplateReconciler

    registry.register(RKE1ClusterReconciler)
    registry.register(RKE1NodeTemplateReconciler)


def discover_reconcilers(registry: ReconcilerRegistry) -> None:
    """Register reconciler plugins installed under the entry point group."""
    for ep in entry_points(group=ENTRY_POINT_GROUP):
        try:
            reconciler_class = ep.load()
            registry.register(reconciler_class)
        except Exception as e:
            logger.warning(f"Could not load reconciler plugin {ep.name}: {e}")


def build_registry(discover: bool = True) -> ReconcilerRegistry:
    """Create a registry with the built-in and, optionally, discovered reconcilers."""
    registry = ReconcilerRegistry()
    register_builtin_reconcilers(registry)
    if discover:
        discover_reconcilers(registry)
    return registry
