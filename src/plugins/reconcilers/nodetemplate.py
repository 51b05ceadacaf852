"""
RKE1NodeTemplate reconciler - a Rancher node template.
"""

import logging
from typing import List, Type

from errors import ExternalIdentifierMissingError, RemoteError
from models import (
    LifecycleStatus,
    RKE1NodeTemplate,
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


class NodeTemplateExternal(ExternalClient):
    def __init__(self, client: RancherClient, resolver: ReferenceResolver):
        self.client = client
        self.resolver = resolver

    async def observe(self, cr: RKE1NodeTemplate) -> ExternalObservation:
        templates = await self.client.list_node_templates()
        record = find_by_name(templates, cr.remote_name)
        if record is None:
            forget_external_id(cr)
            return ExternalObservation(resource_exists=False)

        record_external_id(cr, record.id)
        if lifecycle_from_state(record.state) == LifecycleStatus.AVAILABLE:
            cr.status.set_conditions(available())
        else:
            cr.status.set_conditions(unavailable())

        return ExternalObservation(resource_exists=True, resource_up_to_date=True)

    async def create(self, cr: RKE1NodeTemplate) -> ExternalCreation:
        """Resolve VPC and subnet references, then create the template."""
        cr.status.set_conditions(creating())

        body = cr.node_template_request()
        ec2_config = cr.spec.for_provider.amazonec2_config

        resolved = {}
        if ec2_config.vpc_id_ref:
            resolved["vpcId"] = await self.resolver.resolve_vpc_by_tags(
                ec2_config.vpc_id_ref, ec2_config.region
            )
        if ec2_config.subnet_id_ref:
            resolved["subnetId"] = await self.resolver.resolve_subnet_by_tags(
                ec2_config.subnet_id_ref, ec2_config.region
            )
        if resolved:
            body.setdefault("amazonec2Config", {}).update(resolved)
        # Templates for other drivers carry no amazonec2Config at all
        if not body.get("amazonec2Config"):
            body.pop("amazonec2Config", None)

        template_id = await self.client.create_node_template(body)
        record_external_id(cr, template_id)
        return ExternalCreation(external_id=template_id)

    async def update(self, cr: RKE1NodeTemplate) -> ExternalUpdate:
        logger.info(f"Node template {cr.name}: updates are not applied remotely")
        return ExternalUpdate(message="updates are not applied")

    async def delete(self, cr: RKE1NodeTemplate) -> None:
        cr.status.set_conditions(deleting())
        if not cr.external_id:
            raise ExternalIdentifierMissingError(cr.kind, cr.name)

        try:
            await self.client.delete_node_template(cr.external_id)
        except RemoteError as e:
            if not e.is_not_found:
                raise
            logger.info(f"Node template {cr.name} ({cr.external_id}) is already gone")


class RKE1NodeTemplateReconciler(ReconcilerPlugin):
    """Reconciles RKE1NodeTemplate resources."""

    @property
    def name(self) -> str:
        return "rke1nodetemplate"

    @property
    def kinds(self) -> List[str]:
        return ["RKE1NodeTemplate"]

    @property
    def resource_class(self) -> Type[RKE1NodeTemplate]:
        return RKE1NodeTemplate

    async def connect(
        self, cr: RKE1NodeTemplate, ctx: ReconcilerContext
    ) -> NodeTemplateExternal:
        connection = await ctx.connector.connect(cr.provider_config_name)
        return NodeTemplateExternal(
            client=connection.client, resolver=ctx.resolver_for(connection)
        )
