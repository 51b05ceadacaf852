"""Pytest configuration and fixtures."""

import asyncio
import copy
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set, Tuple, Union

import aiohttp
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer
from unittest.mock import AsyncMock, MagicMock

from db import object_key
from errors import ObjectExistsError, ObjectNotFoundError
from models import Secret
from rancher.client import RancherClient, basic_auth_header
from store import ObjectStore

RANCHER_TOKEN = "token-abc:s3cr3t"


class InMemoryObjectStore(ObjectStore):
    """ObjectStore keeping documents in a dict, recording writes."""

    def __init__(self, *objects: Dict[str, Any]):
        self.objects: Dict[Tuple[str, str, str], Dict[str, Any]] = {}
        self.created: List[Dict[str, Any]] = []
        self.updated: List[Dict[str, Any]] = []
        for obj in objects:
            self.objects[object_key(obj)] = copy.deepcopy(obj)

    async def get_object(self, kind, name, namespace=""):
        key = (kind, namespace, name)
        if key not in self.objects:
            raise ObjectNotFoundError(kind, name, namespace)
        return copy.deepcopy(self.objects[key])

    async def create_object(self, obj):
        key = object_key(obj)
        if key in self.objects:
            raise ObjectExistsError(key[0], key[2], key[1])
        self.objects[key] = copy.deepcopy(obj)
        self.created.append(obj)

    async def update_object(self, obj):
        key = object_key(obj)
        if key not in self.objects:
            raise ObjectNotFoundError(key[0], key[2], key[1])
        self.objects[key] = copy.deepcopy(obj)
        self.updated.append(obj)


@dataclass
class RecordedCall:
    method: str
    path: str
    query: Dict[str, str]
    body: Optional[Dict[str, Any]]
    authorization: Optional[str]
    accept: Optional[str]


class FakeRancher:
    """In-process Rancher /v3 API backed by plain lists."""

    def __init__(self):
        self.clusters: List[Dict[str, Any]] = []
        self.node_templates: List[Dict[str, Any]] = []
        self.node_pools: List[Dict[str, Any]] = []
        self.calls: List[RecordedCall] = []
        self.failures: Dict[Tuple[str, str], Tuple[int, Union[str, bytes]]] = {}
        self.stalls: Set[Tuple[str, str]] = set()
        self.stalled = asyncio.Event()
        self.release = asyncio.Event()
        self.kubeconfig = "apiVersion: v1\nkind: Config\nclusters: []\n"
        self.url = ""
        self.session: Optional[aiohttp.ClientSession] = None
        self.client: Optional[RancherClient] = None
        self._next_id = 0

    def _new_id(self, prefix: str) -> str:
        self._next_id += 1
        return f"{prefix}-{self._next_id}"

    def add_cluster(self, name: str, state: str = "active", id: str = None) -> str:
        cluster_id = id or self._new_id("c")
        self.clusters.append({"id": cluster_id, "name": name, "state": state})
        return cluster_id

    def add_node_template(
        self, name: str, state: str = "active", id: str = None
    ) -> str:
        template_id = id or self._new_id("nt")
        self.node_templates.append({"id": template_id, "name": name, "state": state})
        return template_id

    def fail(
        self, method: str, path: str, status: int, body: Union[str, bytes] = ""
    ) -> None:
        """Answer every matching request with status and body, sent as is."""
        self.failures[(method, path)] = (status, body)

    def stall(self, method: str, path: str) -> None:
        """Hold matching requests open until release is set."""
        self.stalls.add((method, path))

    def calls_to(self, method: str, path: str) -> List[RecordedCall]:
        return [c for c in self.calls if c.method == method and c.path == path]

    def mutating_calls(self) -> List[RecordedCall]:
        return [c for c in self.calls if c.method in ("POST", "PUT", "DELETE")]

    @web.middleware
    async def _record(self, request: web.Request, handler):
        body = await request.json() if request.can_read_body else None
        self.calls.append(
            RecordedCall(
                method=request.method,
                path=request.path,
                query=dict(request.query),
                body=body,
                authorization=request.headers.get("Authorization"),
                accept=request.headers.get("Accept"),
            )
        )
        key = (request.method, request.path)
        if key in self.stalls:
            self.stalled.set()
            await self.release.wait()
        failure = self.failures.get(key)
        if failure is not None:
            status, body = failure
            if isinstance(body, bytes):
                return web.Response(status=status, body=body)
            return web.Response(status=status, text=body)
        return await handler(request)

    async def list_clusters(self, request):
        return web.json_response({"type": "collection", "data": self.clusters})

    async def create_cluster(self, request):
        body = await request.json()
        cluster_id = self.add_cluster(body["name"], state="provisioning")
        return web.json_response({"id": cluster_id, "name": body["name"]}, status=201)

    async def cluster_action(self, request):
        cluster_id = request.match_info["id"]
        if not any(c["id"] == cluster_id for c in self.clusters):
            return web.json_response({"code": "NotFound"}, status=404)
        if request.query.get("action") != "generateKubeconfig":
            return web.json_response({"code": "InvalidAction"}, status=422)
        return web.json_response(
            {"type": "generateKubeConfigOutput", "config": self.kubeconfig}
        )

    async def delete_cluster(self, request):
        cluster_id = request.match_info["id"]
        remaining = [c for c in self.clusters if c["id"] != cluster_id]
        if len(remaining) == len(self.clusters):
            return web.json_response({"code": "NotFound"}, status=404)
        self.clusters = remaining
        return web.json_response({"id": cluster_id})

    async def create_node_pool(self, request):
        body = await request.json()
        pool = dict(body, id=self._new_id("np"))
        self.node_pools.append(pool)
        return web.json_response({"id": pool["id"]}, status=201)

    async def list_node_templates(self, request):
        name = request.query.get("name")
        data = [t for t in self.node_templates if name is None or t["name"] == name]
        return web.json_response({"type": "collection", "data": data})

    async def create_node_template(self, request):
        body = await request.json()
        template_id = self.add_node_template(body["name"], state="active")
        return web.json_response({"id": template_id}, status=201)

    async def delete_node_template(self, request):
        template_id = request.match_info["id"]
        remaining = [t for t in self.node_templates if t["id"] != template_id]
        if len(remaining) == len(self.node_templates):
            return web.json_response({"code": "NotFound"}, status=404)
        self.node_templates = remaining
        return web.json_response({"id": template_id})

    def app(self) -> web.Application:
        app = web.Application(middlewares=[self._record])
        app.router.add_get("/v3/clusters", self.list_clusters)
        app.router.add_post("/v3/clusters", self.create_cluster)
        app.router.add_post("/v3/clusters/{id}", self.cluster_action)
        app.router.add_delete("/v3/clusters/{id}", self.delete_cluster)
        app.router.add_post("/v3/nodepool", self.create_node_pool)
        app.router.add_get("/v3/nodetemplates", self.list_node_templates)
        app.router.add_post("/v3/nodetemplate", self.create_node_template)
        app.router.add_delete("/v3/nodetemplates/{id}", self.delete_node_template)
        return app


class FakeEC2:
    """Stands in for an aioboto3 EC2 client."""

    def __init__(self, vpcs=None, subnets=None, error: Exception = None):
        self.vpcs = vpcs or []
        self.subnets = subnets or []
        self.error = error
        self.calls: List[Tuple[str, List[Dict[str, Any]]]] = []
        self.regions: List[Optional[str]] = []

    async def describe_vpcs(self, Filters):
        self.calls.append(("describe_vpcs", Filters))
        if self.error:
            raise self.error
        return {"Vpcs": self.vpcs}

    async def describe_subnets(self, Filters):
        self.calls.append(("describe_subnets", Filters))
        if self.error:
            raise self.error
        return {"Subnets": self.subnets}

    def factory(self, region):
        @asynccontextmanager
        async def client():
            self.regions.append(region)
            yield self

        return client()


@pytest_asyncio.fixture
async def rancher():
    """A running FakeRancher with a RancherClient pointed at it."""
    fake = FakeRancher()
    server = TestServer(fake.app())
    await server.start_server()
    fake.url = str(server.make_url("")).rstrip("/")
    async with aiohttp.ClientSession() as session:
        fake.session = session
        fake.client = RancherClient(fake.url, basic_auth_header(RANCHER_TOKEN), session)
        yield fake
    fake.release.set()
    await server.close()


def token_secret(name="rancher-creds", namespace="crossplane-system", key="token"):
    return Secret.from_values(
        name, namespace, {key: RANCHER_TOKEN.encode()}
    ).to_wire()


def provider_config(rancher_host: str, name: str = "default", aws_creds=None):
    spec = {
        "rancherHost": rancher_host,
        "credentials": {
            "source": "Secret",
            "secretRef": {
                "name": "rancher-creds",
                "namespace": "crossplane-system",
                "key": "token",
            },
        },
    }
    if aws_creds is not None:
        spec["awsCreds"] = aws_creds
    return {"kind": "ProviderConfig", "metadata": {"name": name}, "spec": spec}


def cluster_document(name="prod", node_pools=None, **for_provider):
    return {
        "kind": "RKE1Cluster",
        "metadata": {"name": name},
        "spec": {
            "providerConfigRef": {"name": "default"},
            "forProvider": dict(
                {
                    "rke": {
                        "rancherKubernetesEngineConfig": {
                            "kubernetesVersion": "v1.20.15-rancher1-2"
                        }
                    },
                    "nodePools": node_pools or [],
                },
                **for_provider,
            ),
        },
    }


def node_template_document(name="workers", amazonec2_config=None):
    return {
        "kind": "RKE1NodeTemplate",
        "metadata": {"name": name},
        "spec": {
            "providerConfigRef": {"name": "default"},
            "forProvider": {
                "driver": "amazonec2",
                "amazonec2Config": amazonec2_config
                or {"region": "eu-west-1", "instanceType": "t3.large"},
            },
        },
    }


@pytest.fixture
def store():
    return InMemoryObjectStore()


@pytest.fixture
def fake_ec2():
    return FakeEC2()


@pytest.fixture
def mock_pool():
    """Create a mock asyncpg pool."""
    pool = AsyncMock()
    pool.acquire = MagicMock()
    return pool


@pytest.fixture
def mock_connection():
    """Create a mock asyncpg connection."""
    conn = AsyncMock()
    return conn
