"""
RKE1Cluster reconciler - a Rancher cluster plus its node pools.
"""

import logging
from typing import List, Type

from errors import ExternalIdentifierMissingError, RemoteError
from kubeconfig import KubeconfigPublisher
from models import (
    LifecycleStatus,
    RKE1Cluster,
    available,
    creating,
    deleting,
    lifecycle_from_state,
    unavailable,
)
from plugins.reconcilers.base import (
    ExternalClient,
    ExternalCreation,
    ExternalObservation,
    ExternalUpdate,
    ReconcilerContext,
    ReconcilerPlugin,
    find_by_name,
    forget_external_id,
    record_external_id,
)
from rancher.client import RancherClient
from rancher.resolver import ReferenceResolver

logger = logging.getLogger(__name__)


class ClusterExternal(ExternalClient):
    """Observe/create/update/delete for one RKE1Cluster."""

    def __init__(
        self,
        client: RancherClient,
        resolver: ReferenceResolver,
        publisher: KubeconfigPublisher,
    ):
        self.client = client
        self.resolver = resolver
        self.publisher = publisher

    async def observe(self, cr: RKE1Cluster) -> ExternalObservation:
        clusters = await self.client.list_clusters()
        record = find_by_name(clusters, cr.remote_name)
        if record is None:
            forget_external_id(cr)
            return ExternalObservation(resource_exists=False)

        record_external_id(cr, record.id)

        published = False
        if lifecycle_from_state(record.state) == LifecycleStatus.AVAILABLE:
            cr.status.set_conditions(available())

            async def fetch() -> bytes:
                return await self.client.generate_kubeconfig(record.id)

            published = await self.publisher.ensure_artifact(
                cr.name, cr.spec.for_provider.kubeconfig_secret_namespace or "", fetch
            )
        else:
            cr.status.set_conditions(unavailable())

        # Spec drift is not corrected
        return ExternalObservation(
            resource_exists=True,
            resource_up_to_date=True,
            artifact_published=published,
        )

    async def create(self, cr: RKE1Cluster) -> ExternalCreation:
        """
        Create the cluster, then each node pool in order.

        Every node template reference is resolved before anything is
        created, so an unresolvable reference leaves Rancher untouched. A
        failing pool create aborts the remaining pools; the cluster and
        any pools already created are left in place.
        """
        cr.status.set_conditions(creating())

        pool_requests = []
        for pool in cr.spec.for_provider.node_pools:
            template_id = pool.node_template_id
            if pool.node_template_id_ref:
                template_id = await self.resolver.resolve_node_template_by_name(
                    pool.node_template_id_ref
                )
            pool_requests.append(pool.to_request(template_id))

        cluster_id = await self.client.create_cluster(cr.cluster_request())
        record_external_id(cr, cluster_id)

        for index, request in enumerate(pool_requests):
            await self.client.create_node_pool(cluster_id, request)
            logger.debug(f"Created node pool {index} of cluster {cr.name}")

        return ExternalCreation(external_id=cluster_id)

    async def update(self, cr: RKE1Cluster) -> ExternalUpdate:
        logger.info(f"Cluster {cr.name}: updates are not applied remotely")
        return ExternalUpdate(message="updates are not applied")

    async def delete(self, cr: RKE1Cluster) -> None:
        cr.status.set_conditions(deleting())
        if not cr.external_id:
            raise ExternalIdentifierMissingError(cr.kind, cr.name)

        try:
            await self.client.delete_cluster(cr.external_id)
        except RemoteError as e:
            if not e.is_not_found:
                raise
            logger.info(f"Cluster {cr.name} ({cr.external_id}) is already gone")


class RKE1ClusterReconciler(ReconcilerPlugin):
    """Reconciles RKE1Cluster resources."""

    @property
    def name(self) -> str:
        return "rke1cluster"

    @property
    def kinds(self) -> List[str]:
        return ["RKE1Cluster"]

    @property
    def resource_class(self) -> Type[RKE1Cluster]:
        return RKE1Cluster

    async def connect(
        self, cr: RKE1Cluster, ctx: ReconcilerContext
    ) -> ClusterExternal:
        connection = await ctx.connector.connect(cr.provider_config_name)
        return ClusterExternal(
            client=connection.client,
            resolver=ctx.resolver_for(connection),
            publisher=KubeconfigPublisher(ctx.store, ctx.kubeconfig_namespace),
        )
