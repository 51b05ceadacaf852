"""
Object store capability.

The reconciliation engine reads desired objects and persists status and
connection secrets only through this interface.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict


class ObjectStore(ABC):
    """Keyed storage of Kubernetes-style object documents."""

    @abstractmethod
    async def get_object(
        self, kind: str, name: str, namespace: str = ""
    ) -> Dict[str, Any]:
        """
        Get an object document.

        Raises:
            ObjectNotFoundError: If no object exists under the key
        """
        pass

    @abstractmethod
    async def create_object(self, obj: Dict[str, Any]) -> None:
        """
        Store a new object document.

        Raises:
            ObjectExistsError: If an object already exists under the key
        """
        pass

    @abstractmethod
    async def update_object(self, obj: Dict[str, Any]) -> None:
        """
        Replace an existing object document.

        Raises:
            ObjectNotFoundError: If no object exists under the key
        """
        pass
