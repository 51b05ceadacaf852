"""
Reconciler Plugin Base - Abstract interface for reconciler plugins.

A reconciler plugin owns one or more managed resource kinds. For every
reconciliation the controller asks the plugin to connect, which yields an
ExternalClient bound to authenticated clients, then drives that client
through observe and, depending on the observation, create, update or
delete. Reconcilers are registered explicitly or discovered via Python
entry points.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Type

from connector import Connection, Connector
from models import ManagedResource, RemoteRecord
from rancher.resolver import DEFAULT_MANAGED_BY, EC2ClientFactory, ReferenceResolver
from store import ObjectStore

logger = logging.getLogger(__name__)


@dataclass
class ExternalObservation:
    """What observe() found on the remote side."""

    resource_exists: bool = False
    resource_up_to_date: bool = False
    artifact_published: bool = False


@dataclass
class ExternalCreation:
    """Result of create(); external_id is the identifier assigned remotely."""

    external_id: Optional[str] = None


@dataclass
class ExternalUpdate:
    message: str = ""


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation as recorded by the controller."""

    success: bool = False
    operation: str = "observe"
    message: str = ""
    requeue_after: Optional[int] = None
    deleted: bool = False


class ReconcilerContext:
    """
    Context provided to reconciler plugins by the operator.

    Gives reconcilers access to the object store, the connector and the
    engine settings shared by all kinds.
    """

    def __init__(
        self,
        store: ObjectStore,
        connector: Connector,
        managed_by: str = DEFAULT_MANAGED_BY,
        kubeconfig_namespace: str = "default",
        ec2_client_factory: Optional[EC2ClientFactory] = None,
    ):
        self.store = store
        self.connector = connector
        self.managed_by = managed_by
        self.kubeconfig_namespace = kubeconfig_namespace
        self.ec2_client_factory = ec2_client_factory

    def resolver_for(self, connection: Connection) -> ReferenceResolver:
        """Build a reference resolver using a connection's clients."""
        return ReferenceResolver(
            connection.client,
            aws_credentials=connection.aws_credentials,
            managed_by=self.managed_by,
            ec2_client_factory=self.ec2_client_factory,
        )


class ExternalClient(ABC):
    """
    Operations on the remote counterpart of one managed resource.

    observe() may record the remote identifier and conditions on the
    resource's status; it never changes anything remotely apart from
    generating a missing connection artifact.
    """

    @abstractmethod
    async def observe(self, cr: ManagedResource) -> ExternalObservation:
        pass

    @abstractmethod
    async def create(self, cr: ManagedResource) -> ExternalCreation:
        pass

    @abstractmethod
    async def update(self, cr: ManagedResource) -> ExternalUpdate:
        pass

    @abstractmethod
    async def delete(self, cr: ManagedResource) -> None:
        pass


class ReconcilerPlugin(ABC):
    """
    Abstract base class for reconciler plugins.

    Reconcilers are discovered via Python entry points in the
    'rke1_operator.reconcilers' group.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this reconciler."""
        pass

    @property
    @abstractmethod
    def kinds(self) -> List[str]:
        """Resource kinds this reconciler handles."""
        pass

    @property
    @abstractmethod
    def resource_class(self) -> Type[ManagedResource]:
        """Model used to parse stored documents of the handled kinds."""
        pass

    @abstractmethod
    async def connect(
        self, cr: ManagedResource, ctx: ReconcilerContext
    ) -> ExternalClient:
        """
        Build an ExternalClient for cr.

        Args:
            cr: The parsed managed resource
            ctx: ReconcilerContext with the connector and engine settings
        """
        pass

    def parse(self, document: Dict[str, Any]) -> ManagedResource:
        """Parse a stored object document into the resource model."""
        return self.resource_class.model_validate(document)


def find_by_name(records: Iterable[RemoteRecord], name: str) -> Optional[RemoteRecord]:
    """
    Return the first record named name.

    Later records with the same name are ignored with a warning.
    """
    matches = [record for record in records if record.name == name]
    if not matches:
        return None
    if len(matches) > 1:
        logger.warning(
            f"{len(matches)} remote records named {name}, using {matches[0].id}"
        )
    return matches[0]


def forget_external_id(cr: ManagedResource) -> None:
    """Drop a recorded remote identifier whose remote object no longer exists."""
    stale = cr.status.at_provider.id
    if stale is not None:
        logger.info(f"{cr.kind} {cr.name}: remote id {stale} no longer exists")
        cr.status.at_provider.id = None


def record_external_id(cr: ManagedResource, external_id: str) -> None:
    """Store the remote identifier on cr unless one is already set."""
    current = cr.status.at_provider.id
    if current is None:
        cr.status.at_provider.id = external_id
        logger.info(f"{cr.kind} {cr.name} has remote id {external_id}")
    elif current != external_id:
        logger.warning(
            f"{cr.kind} {cr.name} matched remote id {external_id} "
            f"but keeps recorded id {current}"
        )
