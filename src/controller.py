"""
Operator Controller - Main reconciliation loop.

Similar to Kubernetes controllers, continuously reconciles desired state
with actual state. Each managed object is handed to the reconciler
registered for its kind, which connects to the Rancher server and is
driven through observe and then create, update or delete.
"""

import asyncio
import logging
import time
from typing import Any, Dict, Optional

from config import ControllerConfig
from db import DatabaseManager, ResourceStatus
from errors import OperatorError
from models import ManagedResource, reconcile_error, reconcile_success
from plugins.reconcilers.base import (
    ReconcilerContext,
    ReconcilerPlugin,
    ReconcileResult,
)
from plugins.registry import ReconcilerRegistry

logger = logging.getLogger(__name__)


class Controller:
    """
    Main controller that implements the reconciliation loop.

    Watches for objects that need reconciliation and dispatches each to
    the reconciler that owns its kind. At most one reconciliation per
    object runs at a time; different objects run concurrently up to
    max_concurrent_reconciles.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        registry: ReconcilerRegistry,
        context: ReconcilerContext,
        config: Optional[ControllerConfig] = None,
    ):
        self.db = db_manager
        self.registry = registry
        self.context = context
        self.config = config or ControllerConfig()
        self.reconcile_interval = self.config.reconcile_interval
        self.max_concurrent_reconciles = self.config.max_concurrent_reconciles
        self.semaphore = asyncio.Semaphore(self.max_concurrent_reconciles)
        self.running = False
        self._shutdown_event = asyncio.Event()

    async def start(self):
        """Start the controller reconciliation loop."""
        logger.info(
            f"Starting controller for kinds: {', '.join(self.registry.list_kinds())}"
        )
        self.running = True
        self._shutdown_event.clear()
        await self._reconciliation_loop()

    async def stop(self):
        """Stop the controller gracefully."""
        logger.info("Stopping controller")
        self.running = False
        self._shutdown_event.set()

    async def _reconciliation_loop(self):
        """Main reconciliation loop - watches for objects needing reconciliation."""
        while self.running:
            try:
                objects = await self.db.get_objects_needing_reconciliation(
                    self.registry.list_kinds(),
                    limit=self.max_concurrent_reconciles * 2,
                )

                if objects:
                    logger.info(f"Found {len(objects)} objects needing reconciliation")
                    await asyncio.gather(
                        *(self._reconcile_object(obj) for obj in objects),
                        return_exceptions=True,
                    )

                await self._sleep(self.reconcile_interval)

            except Exception as e:
                logger.error(f"Error in reconciliation loop: {e}", exc_info=True)
                await self._sleep(10)  # Brief pause on error

    async def _sleep(self, seconds: float) -> None:
        """Sleep, returning early when the controller is stopped."""
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def _determine_trigger_reason(self, row: Dict[str, Any]) -> str:
        """Determine why this reconciliation was triggered."""
        if row.get("deleted_at") is not None:
            return "deletion"
        elif row.get("last_reconcile_time") is None:
            return "initial"
        elif row.get("generation", 0) > row.get("observed_generation", 0):
            return "spec_change"
        elif row.get("phase") == ResourceStatus.FAILED.value:
            return "retry"
        else:
            return "scheduled"

    async def _reconcile_object(self, row: Dict[str, Any]) -> ReconcileResult:
        """
        Reconcile a single object and persist the outcome.

        Status conditions and the remote identifier are written back after
        every attempt, successful or not.
        """
        async with self.semaphore:
            object_id = row["id"]
            kind = row["kind"]
            display = f"{kind} {row['name']}"
            start_time = time.monotonic()
            trigger_reason = self._determine_trigger_reason(row)
            deleting = row.get("deleted_at") is not None

            reconciler = self.registry.for_kind(kind)
            if reconciler is None:
                logger.warning(f"No reconciler registered for {display}, skipping")
                return ReconcileResult(success=False, message="no reconciler")

            await self.db.update_object_phase(
                object_id,
                ResourceStatus.RECONCILING,
                message="Starting reconciliation",
            )

            cr: Optional[ManagedResource] = None
            result = ReconcileResult(operation="parse")
            try:
                cr = reconciler.parse(row["body"])
                await self._execute_reconciliation(reconciler, cr, deleting, result)
                cr.status.set_conditions(reconcile_success())
            except Exception as e:
                logger.error(
                    f"Failed to {result.operation} {display}: {e}",
                    exc_info=not isinstance(e, OperatorError),
                )
                result.success = False
                result.message = str(e)
                if cr is not None:
                    cr.status.set_conditions(reconcile_error(e))

            if cr is not None:
                await self.db.update_object_status(
                    object_id, cr.status.to_wire()
                )

            if result.success:
                await self._record_success(row, display, deleting, result)
            else:
                await self.db.record_failure(
                    object_id,
                    result.message or "Reconciliation failed",
                    base_delay=self.config.backoff_base_delay,
                    max_delay=self.config.backoff_max_delay,
                    jitter_factor=self.config.backoff_jitter_factor,
                )

            if not result.deleted:
                await self.db.record_reconciliation(
                    object_id=object_id,
                    operation=result.operation,
                    success=result.success,
                    error_message=None if result.success else result.message,
                    duration_seconds=time.monotonic() - start_time,
                    trigger_reason=trigger_reason,
                )
            return result

    async def _execute_reconciliation(
        self,
        reconciler: ReconcilerPlugin,
        cr: ManagedResource,
        deleting: bool,
        result: ReconcileResult,
    ) -> None:
        """
        Run connect, observe and the operation observe calls for.

        Exceptions propagate to the caller; result.operation tells which
        step was running when one was raised.
        """
        result.operation = "connect"
        external = await reconciler.connect(cr, self.context)

        result.operation = "observe"
        observation = await external.observe(cr)

        if deleting:
            result.operation = "delete"
            if not observation.resource_exists:
                result.deleted = True
                result.message = "Remote resource is gone"
            else:
                logger.info(f"Deleting {cr.kind} {cr.name}")
                await external.delete(cr)
                result.message = "Deletion requested"
                result.requeue_after = self.config.wait_interval
        elif not observation.resource_exists:
            result.operation = "create"
            logger.info(f"Creating {cr.kind} {cr.name}")
            creation = await external.create(cr)
            if creation.external_id and cr.status.at_provider.id is None:
                cr.status.at_provider.id = creation.external_id
            result.message = "Creation requested"
            result.requeue_after = self.config.wait_interval
        elif not observation.resource_up_to_date:
            result.operation = "update"
            update = await external.update(cr)
            result.message = update.message or "Updated"
            result.requeue_after = self.config.resync_interval
        else:
            result.message = "Up to date"
            result.requeue_after = self.config.resync_interval

        result.success = True

    async def _record_success(
        self,
        row: Dict[str, Any],
        display: str,
        deleting: bool,
        result: ReconcileResult,
    ) -> None:
        object_id = row["id"]
        if result.deleted:
            await self.db.hard_delete_object(object_id)
            logger.info(f"{display} deleted")
            return

        phase = ResourceStatus.DELETING if deleting else ResourceStatus.READY
        await self.db.update_object_phase(
            object_id,
            phase,
            message=result.message,
            observed_generation=row.get("generation"),
            requeue_after=result.requeue_after,
        )
        logger.info(f"Reconciled {display}: {result.message}")

    async def trigger_reconciliation(self, kind: str, name: str, namespace: str = ""):
        """Manually trigger reconciliation for a specific object."""
        logger.info(f"Manually triggering reconciliation for {kind} {name}")
        return await self.db.mark_object_for_reconciliation(kind, name, namespace)

