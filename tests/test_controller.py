"""Unit tests for controller.py - Main reconciliation controller."""

import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, MagicMock

from conftest import cluster_document
from config import ControllerConfig
from controller import Controller
from db import ResourceStatus
from errors import ConfigNotFoundError, RemoteError
from models import RKE1Cluster
from plugins.reconcilers.base import (
    ExternalClient,
    ExternalCreation,
    ExternalObservation,
    ExternalUpdate,
    ReconcilerPlugin,
)


class StubExternal(ExternalClient):
    """Scripted external client recording the operations called."""

    def __init__(self, exists=False, up_to_date=True, error=None, created_id="c-1"):
        self.exists = exists
        self.up_to_date = up_to_date
        self.error = error
        self.created_id = created_id
        self.calls = []

    async def observe(self, cr):
        self.calls.append("observe")
        if self.error:
            raise self.error
        return ExternalObservation(
            resource_exists=self.exists, resource_up_to_date=self.up_to_date
        )

    async def create(self, cr):
        self.calls.append("create")
        return ExternalCreation(external_id=self.created_id)

    async def update(self, cr):
        self.calls.append("update")
        return ExternalUpdate(message="updates are not applied")

    async def delete(self, cr):
        self.calls.append("delete")


class StubReconciler(ReconcilerPlugin):
    def __init__(self, external=None, connect_error=None):
        self.external = external or StubExternal()
        self.connect_error = connect_error

    @property
    def name(self):
        return "stub"

    @property
    def kinds(self):
        return ["RKE1Cluster"]

    @property
    def resource_class(self):
        return RKE1Cluster

    async def connect(self, cr, ctx):
        if self.connect_error:
            raise self.connect_error
        return self.external


def make_row(**overrides):
    row = {
        "id": 1,
        "kind": "RKE1Cluster",
        "namespace": "",
        "name": "prod",
        "body": cluster_document(name="prod"),
        "phase": "pending",
        "generation": 2,
        "observed_generation": 1,
        "last_reconcile_time": None,
        "deleted_at": None,
    }
    row.update(overrides)
    return row


@pytest.fixture
def mock_db():
    db = AsyncMock()
    db.get_objects_needing_reconciliation = AsyncMock(return_value=[])
    return db


@pytest.fixture
def registry():
    registry = MagicMock()
    registry.list_kinds.return_value = ["RKE1Cluster"]
    registry.for_kind.return_value = StubReconciler()
    return registry


@pytest_asyncio.fixture
async def controller(mock_db, registry):
    config = ControllerConfig(
        reconcile_interval=1,
        max_concurrent_reconciles=2,
        wait_interval=30,
        resync_interval=300,
    )
    return Controller(mock_db, registry, context=MagicMock(), config=config)


def last_status(mock_db):
    return mock_db.update_object_status.call_args[0][1]


def condition(status, condition_type):
    return next(c for c in status["conditions"] if c["type"] == condition_type)


class TestTriggerReason:
    @pytest.mark.asyncio
    async def test_reasons(self, controller):
        assert controller._determine_trigger_reason(
            make_row(deleted_at="2024-01-01")
        ) == "deletion"
        assert controller._determine_trigger_reason(make_row()) == "initial"
        assert (
            controller._determine_trigger_reason(
                make_row(last_reconcile_time="t", generation=3, observed_generation=2)
            )
            == "spec_change"
        )
        assert (
            controller._determine_trigger_reason(
                make_row(last_reconcile_time="t", observed_generation=2, phase="failed")
            )
            == "retry"
        )
        assert (
            controller._determine_trigger_reason(
                make_row(last_reconcile_time="t", observed_generation=2, phase="ready")
            )
            == "scheduled"
        )


class TestReconcileObject:
    @pytest.mark.asyncio
    async def test_absent_resource_is_created(self, controller, mock_db, registry):
        external = registry.for_kind.return_value.external

        result = await controller._reconcile_object(make_row())

        assert result.success is True
        assert result.operation == "create"
        assert external.calls == ["observe", "create"]

        status = last_status(mock_db)
        assert status["atProvider"]["id"] == "c-1"
        assert condition(status, "Synced")["reason"] == "ReconcileSuccess"

        mock_db.update_object_phase.assert_called_with(
            1,
            ResourceStatus.READY,
            message="Creation requested",
            observed_generation=2,
            requeue_after=30,
        )
        mock_db.record_failure.assert_not_called()
        kwargs = mock_db.record_reconciliation.call_args.kwargs
        assert kwargs["operation"] == "create"
        assert kwargs["success"] is True
        assert kwargs["trigger_reason"] == "initial"

    @pytest.mark.asyncio
    async def test_converged_resource_is_resynced_later(
        self, controller, mock_db, registry
    ):
        registry.for_kind.return_value = StubReconciler(StubExternal(exists=True))

        result = await controller._reconcile_object(make_row())

        assert result.operation == "observe"
        assert result.requeue_after == 300
        assert registry.for_kind.return_value.external.calls == ["observe"]

    @pytest.mark.asyncio
    async def test_outdated_resource_is_updated(self, controller, mock_db, registry):
        external = StubExternal(exists=True, up_to_date=False)
        registry.for_kind.return_value = StubReconciler(external)

        result = await controller._reconcile_object(make_row())

        assert result.success is True
        assert result.operation == "update"
        assert external.calls == ["observe", "update"]

    @pytest.mark.asyncio
    async def test_observe_failure_schedules_retry(self, controller, mock_db, registry):
        error = RemoteError(500, '{"message":"boom"}', operation="list clusters")
        registry.for_kind.return_value = StubReconciler(StubExternal(error=error))

        result = await controller._reconcile_object(make_row())

        assert result.success is False
        assert result.operation == "observe"
        synced = condition(last_status(mock_db), "Synced")
        assert synced["status"] == "False"
        assert synced["reason"] == "ReconcileError"
        assert "boom" in synced["message"]

        mock_db.record_failure.assert_called_once()
        assert mock_db.record_failure.call_args.kwargs["base_delay"] == 30
        # Only the RECONCILING phase update happened
        assert mock_db.update_object_phase.call_count == 1
        kwargs = mock_db.record_reconciliation.call_args.kwargs
        assert kwargs["success"] is False
        assert "boom" in kwargs["error_message"]

    @pytest.mark.asyncio
    async def test_connect_failure(self, controller, mock_db, registry):
        registry.for_kind.return_value = StubReconciler(
            connect_error=ConfigNotFoundError("default")
        )

        result = await controller._reconcile_object(make_row())

        assert result.operation == "connect"
        assert "cannot get ProviderConfig" in result.message
        mock_db.record_failure.assert_called_once()

    @pytest.mark.asyncio
    async def test_unparseable_document(self, controller, mock_db):
        result = await controller._reconcile_object(
            make_row(body={"kind": "RKE1Cluster", "metadata": {"name": "prod"}})
        )

        assert result.success is False
        assert result.operation == "parse"
        mock_db.update_object_status.assert_not_called()
        mock_db.record_failure.assert_called_once()

    @pytest.mark.asyncio
    async def test_deleting_present_resource(self, controller, mock_db, registry):
        external = StubExternal(exists=True)
        registry.for_kind.return_value = StubReconciler(external)
        body = cluster_document(name="prod")
        body["status"] = {"atProvider": {"id": "c-1"}}

        result = await controller._reconcile_object(
            make_row(body=body, deleted_at="2024-01-01")
        )

        assert external.calls == ["observe", "delete"]
        assert result.operation == "delete"
        assert result.deleted is False
        mock_db.update_object_phase.assert_called_with(
            1,
            ResourceStatus.DELETING,
            message="Deletion requested",
            observed_generation=2,
            requeue_after=30,
        )
        mock_db.hard_delete_object.assert_not_called()

    @pytest.mark.asyncio
    async def test_deleting_absent_resource_removes_object(
        self, controller, mock_db, registry
    ):
        external = StubExternal(exists=False)
        registry.for_kind.return_value = StubReconciler(external)

        result = await controller._reconcile_object(make_row(deleted_at="2024-01-01"))

        assert result.deleted is True
        assert external.calls == ["observe"]
        mock_db.hard_delete_object.assert_called_once_with(1)
        mock_db.record_reconciliation.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_reconciler_for_kind(self, controller, mock_db, registry):
        registry.for_kind.return_value = None

        result = await controller._reconcile_object(make_row(kind="Unknown"))

        assert result.success is False
        mock_db.update_object_phase.assert_not_called()
        mock_db.record_reconciliation.assert_not_called()


class TestControllerLoop:
    @pytest.mark.asyncio
    async def test_loop_reconciles_due_objects(self, controller, mock_db):
        async def fetch(kinds, limit):
            controller.running = False
            controller._shutdown_event.set()
            return [make_row()]

        mock_db.get_objects_needing_reconciliation = AsyncMock(side_effect=fetch)

        await controller.start()

        mock_db.get_objects_needing_reconciliation.assert_called_once_with(
            ["RKE1Cluster"], limit=4
        )
        mock_db.record_reconciliation.assert_called_once()

    @pytest.mark.asyncio
    async def test_stop(self, controller):
        controller.running = True
        await controller.stop()
        assert controller.running is False
        assert controller._shutdown_event.is_set()

    @pytest.mark.asyncio
    async def test_trigger_reconciliation(self, controller, mock_db):
        mock_db.mark_object_for_reconciliation = AsyncMock(return_value=True)

        assert await controller.trigger_reconciliation("RKE1Cluster", "prod") is True
        mock_db.mark_object_for_reconciliation.assert_called_once_with(
            "RKE1Cluster", "prod", ""
        )
