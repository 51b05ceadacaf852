"""
Reference Resolver - turns symbolic references into remote identifiers.

Node template names are looked up on the Rancher server; VPC and subnet
references are looked up in EC2 by tag. Lookups run once, right before the
create call that needs the identifier, and are never cached.
"""

import logging
from contextlib import AbstractAsyncContextManager
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from credentials import AWSCredentials
from errors import NotFoundError, RemoteError, TransportError
from rancher.client import RancherClient

logger = logging.getLogger(__name__)

DEFAULT_MANAGED_BY = "crossplane"

# Builds an EC2 client context manager for a region
EC2ClientFactory = Callable[[Optional[str]], AbstractAsyncContextManager[Any]]


class NetworkResource(Enum):
    """EC2 network resources that can be referenced by tag."""

    VPC = ("vpc", "describe_vpcs", "Vpcs", "VpcId")
    SUBNET = ("subnet", "describe_subnets", "Subnets", "SubnetId")

    def __init__(self, label: str, operation: str, result_key: str, id_key: str):
        self.label = label
        self.operation = operation
        self.result_key = result_key
        self.id_key = id_key


def tag_filters(tags: Dict[str, str]) -> List[Dict[str, Any]]:
    """Build EC2 filters requiring every tag to match exactly."""
    return [
        {"Name": f"tag:{key}", "Values": [value]} for key, value in sorted(tags.items())
    ]


class ReferenceResolver:
    """Resolves node template names and tagged network resources."""

    def __init__(
        self,
        client: RancherClient,
        aws_credentials: Optional[AWSCredentials] = None,
        managed_by: str = DEFAULT_MANAGED_BY,
        ec2_client_factory: Optional[EC2ClientFactory] = None,
    ):
        self.client = client
        self.aws_credentials = aws_credentials
        self.managed_by = managed_by
        self._ec2_client_factory = ec2_client_factory

    def _ec2_client(self, region: Optional[str]) -> AbstractAsyncContextManager[Any]:
        if self._ec2_client_factory is not None:
            return self._ec2_client_factory(region)

        # Without explicit credentials boto falls back to its default chain
        if self.aws_credentials is not None:
            session = aioboto3.Session(
                aws_access_key_id=self.aws_credentials.access_key_id,
                aws_secret_access_key=self.aws_credentials.secret_access_key,
                aws_session_token=self.aws_credentials.session_token,
            )
        else:
            session = aioboto3.Session()
        return session.client("ec2", region_name=region)

    async def resolve_node_template_by_name(self, name: str) -> str:
        """
        Resolve a node template name to its id.

        Raises:
            NotFoundError: If no template has that name
        """
        records = await self.client.find_node_templates_by_name(name)
        if not records:
            raise NotFoundError("node template", name)

        if len(records) > 1:
            logger.warning(
                f"{len(records)} node templates named {name}, using {records[0].id}"
            )
        return records[0].id

    def reference_tags(self, name: str) -> Dict[str, str]:
        """Tag set identifying network resources managed under a name."""
        return {"Name": name, "ManagedBy": self.managed_by}

    async def resolve_network_resource_by_tags(
        self,
        resource: NetworkResource,
        tags: Dict[str, str],
        region: Optional[str],
    ) -> str:
        """
        Find the id of the EC2 resource carrying all of the given tags.

        Raises:
            NotFoundError: If nothing carries the tags
            RemoteError: If EC2 rejected the request
            TransportError: If EC2 could not be reached
        """
        operation = f"describe {resource.label}s"
        logger.debug(f"{operation} in {region} with tags {tags}")

        try:
            async with self._ec2_client(region) as ec2:
                describe = getattr(ec2, resource.operation)
                response = await describe(Filters=tag_filters(tags))
        except ClientError as e:
            status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
            raise RemoteError(status, str(e), operation=operation) from e
        except BotoCoreError as e:
            raise TransportError(f"{operation}: {e}", operation=operation) from e

        matches = response.get(resource.result_key, [])
        if not matches:
            raise NotFoundError(resource.label, _describe_tags(tags))

        resource_id = matches[0][resource.id_key]
        if len(matches) > 1:
            logger.warning(
                f"{len(matches)} {resource.label}s match {_describe_tags(tags)}, "
                f"using {resource_id}"
            )
        return resource_id

    async def resolve_vpc_by_tags(self, name: str, region: Optional[str]) -> str:
        return await self.resolve_network_resource_by_tags(
            NetworkResource.VPC, self.reference_tags(name), region
        )

    async def resolve_subnet_by_tags(self, name: str, region: Optional[str]) -> str:
        return await self.resolve_network_resource_by_tags(
            NetworkResource.SUBNET, self.reference_tags(name), region
        )


def _describe_tags(tags: Dict[str, str]) -> str:
    return ", ".join(f"{k}={v}" for k, v in sorted(tags.items()))
