"""
HTTP API - REST API for applying and inspecting objects.

Managed kinds (those with a registered reconciler) are reconciled by the
controller; Secret and ProviderConfig objects are stored as-is for the
reconcilers to read.
"""

import json
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Type

import uvicorn
from fastapi import Body, FastAPI, HTTPException
from pydantic import BaseModel, ValidationError

from db import DatabaseManager
from errors import ObjectExistsError, ObjectNotFoundError
from models import CamelModel, ProviderConfig, Secret
from plugins.registry import ReconcilerRegistry

logger = logging.getLogger(__name__)

# Kubernetes-style name pattern: lowercase alphanumeric, hyphens, max 63 chars
NAME_PATTERN = re.compile(r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?$")
MAX_NAME_LENGTH = 63
REDACTED = "<redacted>"

UNMANAGED_KINDS: Dict[str, Type[CamelModel]] = {
    "Secret": Secret,
    "ProviderConfig": ProviderConfig,
}


def validate_name_format(value: str, field_name: str) -> str:
    """Validate that a name follows Kubernetes naming conventions."""
    if not value:
        raise ValueError(f"{field_name} cannot be empty")
    if len(value) > MAX_NAME_LENGTH:
        raise ValueError(f"{field_name} cannot exceed {MAX_NAME_LENGTH} characters")
    if not NAME_PATTERN.match(value):
        raise ValueError(
            f"{field_name} must consist of lowercase alphanumeric characters or '-', "
            f"must start and end with an alphanumeric character"
        )
    return value


class ObjectResponse(BaseModel):
    """Response model for a stored object."""

    kind: str
    namespace: str
    name: str
    phase: str
    status_message: Optional[str] = None
    generation: int
    observed_generation: int
    body: Dict[str, Any]
    created_at: datetime
    updated_at: datetime
    last_reconcile_time: Optional[datetime] = None
    next_reconcile_time: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "ObjectResponse":
        fields = {k: v for k, v in record.items() if k in cls.model_fields}
        fields["body"] = redact(record.get("body") or {})
        return cls(**fields)


class ApplyResponse(BaseModel):
    created: bool
    object: ObjectResponse


class ReconciliationHistoryResponse(BaseModel):
    """Response model for reconciliation history."""

    id: int
    object_id: int
    generation: int
    operation: str
    success: bool
    error_message: Optional[str] = None
    duration_seconds: Optional[float] = None
    trigger_reason: Optional[str] = None
    reconcile_time: datetime


def redact(body: Dict[str, Any]) -> Dict[str, Any]:
    """Hide Secret values in API responses."""
    if body.get("kind") != "Secret":
        return body
    redacted = dict(body)
    redacted["data"] = {key: REDACTED for key in (body.get("data") or {})}
    return redacted


def create_app(db: DatabaseManager, registry: ReconcilerRegistry) -> FastAPI:
    """
    Build the FastAPI application.

    Routes:
    - Health check: GET /
    - Apply: POST /api/v1/objects
    - List / get: GET /api/v1/objects/{kind}[/{name}]
    - Delete: DELETE /api/v1/objects/{kind}/{name}
    - Reconciliation: POST /api/v1/objects/{kind}/{name}/reconcile
    - History: GET /api/v1/objects/{kind}/{name}/history
    """
    app = FastAPI(
        title="RKE1 Operator API",
        description="Declarative management of RKE1 clusters and node templates",
        version="1.0.0",
    )

    def model_for_kind(kind: str) -> Type[CamelModel]:
        reconciler = registry.for_kind(kind)
        if reconciler is not None:
            return reconciler.resource_class
        if kind in UNMANAGED_KINDS:
            return UNMANAGED_KINDS[kind]
        known = ", ".join(registry.list_kinds() + list(UNMANAGED_KINDS))
        raise HTTPException(
            status_code=400, detail=f"Unknown kind: {kind}. Known kinds: {known}"
        )

    async def get_record_or_404(kind: str, name: str, namespace: str) -> Dict[str, Any]:
        record = await db.get_object_record(kind, name, namespace)
        if not record:
            raise HTTPException(status_code=404, detail=f"{kind} {name} not found")
        return record

    @app.get("/")
    async def health_check():
        """Health check endpoint."""
        return {"status": "ok", "service": "rke1-operator"}

    @app.post("/api/v1/objects", response_model=ApplyResponse)
    async def apply_object(document: Dict[str, Any] = Body(...)):
        """Create an object, or update it if it already exists."""
        kind = document.get("kind")
        if not isinstance(kind, str):
            raise HTTPException(status_code=400, detail="kind is required")
        model = model_for_kind(kind)

        try:
            parsed = model.model_validate(document)
            validate_name_format(parsed.metadata.name, "metadata.name")
        except ValidationError as e:
            raise HTTPException(status_code=422, detail=json.loads(e.json()))
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))

        obj = parsed.to_wire()
        name = parsed.metadata.name
        namespace = parsed.metadata.namespace
        managed = registry.has_kind(kind)

        existing = await db.get_object_record(kind, name, namespace)
        if existing and existing.get("deleted_at") is not None:
            raise HTTPException(
                status_code=409, detail=f"{kind} {name} is being deleted"
            )

        try:
            if existing:
                if managed:
                    # Status is owned by the controller
                    obj["status"] = existing["body"].get("status", {})
                await db.update_object(obj)
                created = False
            else:
                await db.create_object(obj)
                created = True
        except ObjectExistsError as e:
            raise HTTPException(status_code=409, detail=str(e))
        except ObjectNotFoundError as e:
            raise HTTPException(status_code=409, detail=str(e))

        record = await db.get_object_record(kind, name, namespace)
        return ApplyResponse(created=created, object=ObjectResponse.from_record(record))

    @app.get("/api/v1/objects/{kind}", response_model=List[ObjectResponse])
    async def list_objects(
        kind: str, namespace: Optional[str] = None, limit: int = 100
    ):
        """List objects of a kind."""
        model_for_kind(kind)
        records = await db.list_objects(kind=kind, namespace=namespace, limit=limit)
        return [ObjectResponse.from_record(r) for r in records]

    @app.get("/api/v1/objects/{kind}/{name}", response_model=ObjectResponse)
    async def get_object(kind: str, name: str, namespace: str = ""):
        """Get a single object."""
        model_for_kind(kind)
        record = await get_record_or_404(kind, name, namespace)
        return ObjectResponse.from_record(record)

    @app.delete("/api/v1/objects/{kind}/{name}")
    async def delete_object(kind: str, name: str, namespace: str = ""):
        """
        Delete an object.

        Managed objects are marked for deletion and removed once their
        remote counterpart is gone; other objects are removed immediately.
        """
        model_for_kind(kind)
        if registry.has_kind(kind):
            if not await db.mark_object_for_deletion(kind, name, namespace):
                raise HTTPException(status_code=404, detail=f"{kind} {name} not found")
            return {"message": f"{kind} {name} marked for deletion"}

        if not await db.delete_object(kind, name, namespace):
            raise HTTPException(status_code=404, detail=f"{kind} {name} not found")
        return {"message": f"{kind} {name} deleted"}

    @app.post("/api/v1/objects/{kind}/{name}/reconcile")
    async def reconcile_object(kind: str, name: str, namespace: str = ""):
        """Trigger reconciliation of a managed object."""
        if not registry.has_kind(kind):
            raise HTTPException(
                status_code=400, detail=f"{kind} is not reconciled by this operator"
            )
        if not await db.mark_object_for_reconciliation(kind, name, namespace):
            raise HTTPException(status_code=404, detail=f"{kind} {name} not found")
        return {"message": f"Reconciliation of {kind} {name} triggered"}

    @app.get(
        "/api/v1/objects/{kind}/{name}/history",
        response_model=List[ReconciliationHistoryResponse],
    )
    async def get_history(kind: str, name: str, namespace: str = "", limit: int = 10):
        """Get reconciliation history of an object."""
        record = await get_record_or_404(kind, name, namespace)
        history = await db.get_reconciliation_history(record["id"], limit=limit)
        return [ReconciliationHistoryResponse(**h) for h in history]

    return app


class APIServer:
    """Runs the API application under uvicorn."""

    def __init__(
        self,
        app: FastAPI,
        host: str = "0.0.0.0",
        port: int = 8000,
        log_level: str = "info",
    ):
        self.app = app
        self.host = host
        self.port = port
        self.log_level = log_level
        self.server: Optional[uvicorn.Server] = None

    async def start(self) -> None:
        """Start the HTTP server."""
        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level=self.log_level,
        )
        self.server = uvicorn.Server(config)

        logger.info(f"Starting API server on {self.host}:{self.port}")
        await self.server.serve()

    async def stop(self) -> None:
        """Stop the HTTP server gracefully."""
        logger.info("Stopping API server")
        if self.server:
            self.server.should_exit = True
