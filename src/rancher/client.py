"""
Rancher Client - typed operations against the Rancher /v3 REST API.

The client holds no state besides its host, authorization header and the
shared aiohttp session, so one session can serve any number of clients
concurrently. Every call is awaited directly by the reconciliation task;
cancelling the task aborts the in-flight request.
"""

import asyncio
import base64
import logging
from typing import Any, Dict, List, Optional, Type, TypeVar

import aiohttp
from pydantic import BaseModel, ValidationError

from errors import DecodeError, RemoteError, TransportError
from models import CreatedRecord, KubeconfigResponse, RecordList, RemoteRecord

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

STATUS_OK = 200
STATUS_CREATED = 201


def basic_auth_header(token: str) -> str:
    """Encode an API token as an Authorization header value."""
    encoded = base64.b64encode(token.encode()).decode("ascii")
    return f"Basic {encoded}"


class RancherClient:
    """Authenticated client for one Rancher server."""

    def __init__(self, host: str, authorization: str, session: aiohttp.ClientSession):
        self.host = host.rstrip("/")
        self._authorization = authorization
        self._session = session

    def __repr__(self) -> str:
        return f"RancherClient(host={self.host!r})"

    async def _request(
        self,
        method: str,
        path: str,
        expected_status: int,
        operation: str,
        params: Optional[Dict[str, str]] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Issue a request and return the raw response body.

        Raises:
            TransportError: If no HTTP response was received
            RemoteError: If the status differs from expected_status
            DecodeError: If a successful response body is not UTF-8
        """
        url = f"{self.host}{path}"
        headers = {
            "Authorization": self._authorization,
            "Accept": "application/json",
        }
        logger.debug(f"{method} {url}")

        try:
            async with self._session.request(
                method, url, headers=headers, params=params, json=body
            ) as response:
                raw = await response.read()
                status = response.status
        except aiohttp.ClientError as e:
            raise TransportError(f"{operation}: {e}", operation=operation) from e
        except asyncio.TimeoutError as e:
            raise TransportError(
                f"{operation}: request timed out", operation=operation
            ) from e

        if status != expected_status:
            # Error pages from proxies are not always UTF-8
            raise RemoteError(
                status, raw.decode("utf-8", errors="replace"), operation=operation
            )
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(
                f"{operation}: response is not UTF-8: {e}",
                body=raw.decode("utf-8", errors="replace"),
                operation=operation,
            ) from e

    def _decode(self, model: Type[T], text: str, operation: str) -> T:
        try:
            return model.model_validate_json(text)
        except ValidationError as e:
            raise DecodeError(
                f"{operation}: cannot decode response: {e}",
                body=text,
                operation=operation,
            ) from e

    # ==================== Clusters ====================

    async def list_clusters(self) -> List[RemoteRecord]:
        """List every cluster visible to the token."""
        text = await self._request(
            "GET", "/v3/clusters", STATUS_OK, operation="list clusters"
        )
        return self._decode(RecordList, text, "list clusters").data

    async def create_cluster(self, spec: Dict[str, Any]) -> str:
        """Create a cluster and return its id."""
        text = await self._request(
            "POST", "/v3/clusters", STATUS_CREATED, "create cluster", body=spec
        )
        cluster_id = self._decode(CreatedRecord, text, "create cluster").id
        logger.info(f"Created cluster {spec.get('name')} with id {cluster_id}")
        return cluster_id

    async def delete_cluster(self, cluster_id: str) -> None:
        await self._request(
            "DELETE", f"/v3/clusters/{cluster_id}", STATUS_OK, "delete cluster"
        )
        logger.info(f"Deleted cluster {cluster_id}")

    async def create_node_pool(self, cluster_id: str, spec: Dict[str, Any]) -> str:
        """Create a node pool under cluster_id and return the pool id."""
        body = dict(spec)
        body["clusterId"] = cluster_id
        text = await self._request(
            "POST", "/v3/nodepool", STATUS_CREATED, "create node pool", body=body
        )
        pool_id = self._decode(CreatedRecord, text, "create node pool").id
        logger.info(f"Created node pool {pool_id} in cluster {cluster_id}")
        return pool_id

    async def generate_kubeconfig(self, cluster_id: str) -> bytes:
        """
        Ask the server to generate a kubeconfig for cluster_id.

        This is a mutating call on the server side; callers should only
        make it when they have no stored kubeconfig yet.
        """
        text = await self._request(
            "POST",
            f"/v3/clusters/{cluster_id}",
            STATUS_OK,
            "generate kubeconfig",
            params={"action": "generateKubeconfig"},
        )
        result = self._decode(KubeconfigResponse, text, "generate kubeconfig")
        return result.config.encode()

    # ==================== Node templates ====================

    async def list_node_templates(self) -> List[RemoteRecord]:
        text = await self._request(
            "GET", "/v3/nodetemplates", STATUS_OK, "list node templates"
        )
        return self._decode(RecordList, text, "list node templates").data

    async def find_node_templates_by_name(self, name: str) -> List[RemoteRecord]:
        """List node templates filtered server-side by name."""
        text = await self._request(
            "GET",
            "/v3/nodetemplates",
            STATUS_OK,
            "find node template",
            params={"name": name},
        )
        return self._decode(RecordList, text, "find node template").data

    async def create_node_template(self, spec: Dict[str, Any]) -> str:
        text = await self._request(
            "POST",
            "/v3/nodetemplate",
            STATUS_CREATED,
            "create node template",
            body=spec,
        )
        template_id = self._decode(CreatedRecord, text, "create node template").id
        logger.info(f"Created node template {spec.get('name')} with id {template_id}")
        return template_id

    async def delete_node_template(self, template_id: str) -> None:
        await self._request(
            "DELETE",
            f"/v3/nodetemplates/{template_id}",
            STATUS_OK,
            "delete node template",
        )
        logger.info(f"Deleted node template {template_id}")

