"""
Kubeconfig publishing - stores a cluster's connection secret once.
"""

import logging
from typing import Awaitable, Callable

from errors import ObjectExistsError, ObjectNotFoundError
from models import Secret
from store import ObjectStore

logger = logging.getLogger(__name__)

KUBECONFIG_KEY = "kubeconfig"
DEFAULT_KUBECONFIG_NAMESPACE = "default"


def kubeconfig_secret_name(resource_name: str) -> str:
    return f"{resource_name}-kubeconfig"


class KubeconfigPublisher:
    """
    Publishes a kubeconfig as the Secret ``<resource>-kubeconfig``.

    An existing Secret is left untouched: its content is never compared
    or refreshed. The Secret is not removed when the cluster is deleted.
    """

    def __init__(
        self,
        store: ObjectStore,
        default_namespace: str = DEFAULT_KUBECONFIG_NAMESPACE,
    ):
        self.store = store
        self.default_namespace = default_namespace

    async def ensure_artifact(
        self,
        resource_name: str,
        namespace: str,
        fetch: Callable[[], Awaitable[bytes]],
    ) -> bool:
        """
        Make sure the kubeconfig Secret for resource_name exists.

        Args:
            resource_name: Name of the owning cluster resource
            namespace: Secret namespace (empty for the default namespace)
            fetch: Coroutine function generating the kubeconfig remotely

        Returns:
            True if a kubeconfig was generated and stored, False if one
            already existed
        """
        namespace = namespace or self.default_namespace
        secret_name = kubeconfig_secret_name(resource_name)

        try:
            await self.store.get_object("Secret", secret_name, namespace)
            return False
        except ObjectNotFoundError:
            pass

        kubeconfig = await fetch()
        document = Secret.from_values(
            secret_name, namespace, {KUBECONFIG_KEY: kubeconfig}
        ).to_wire()

        try:
            await self.store.create_object(document)
        except ObjectExistsError:
            # Created concurrently since the lookup above
            await self.store.update_object(document)

        logger.info(f"Published kubeconfig secret {namespace}/{secret_name}")
        return True
