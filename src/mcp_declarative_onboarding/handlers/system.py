"""System domain: global settings, DNS, NTP, provisioning, management routes, users."""
import logging

from ..config_engine.schema import HandlerOutcome, Operation, PlanSlice
from ..config_engine.schema_map import get_item
from ..devices.base import DeviceClient
from .base import DomainHandler

logger = logging.getLogger(__name__)


class SystemHandler(DomainHandler):
    """Apply system-level settings.

    Singleton classes spread over several device paths are written one
    path at a time. Provisioning is applied module by module since the
    device validates each level change against the others already set.
    """

    domain = "system"

    async def modify(
        self,
        op: Operation,
        plan_slice: PlanSlice,
        client: DeviceClient,
        outcome: HandlerOutcome,
    ) -> None:
        if op.schema_class == "Provision":
            await self._provision(op, plan_slice, client, outcome)
            return
        await super().modify(op, plan_slice, client, outcome)

    async def _provision(
        self,
        op: Operation,
        plan_slice: PlanSlice,
        client: DeviceClient,
        outcome: HandlerOutcome,
    ) -> None:
        item = get_item("Provision")
        current = plan_slice.current.get("Provision") or {}
        # Modules set to "none" go first
        modules = sorted(op.properties.items(), key=lambda kv: kv[1] != "none")
        for module, level in modules:
            path = f"{item.path}/{module}"
            logger.info(f"{client.device_id}: provisioning {module} {current.get(module, 'none')} -> {level}")
            await self.call(op, path, client.modify, {"level": level})
            outcome.reboot_required = True
