"""Global server load balancing: globals, monitors, data centers, servers, prober pools."""
import logging
from typing import Optional

from ..config_engine.schema import ChangeType, ConfigItem, HandlerOutcome, Operation, PlanSlice
from ..config_engine.schema_map import COMMON, full_path, get_item
from ..devices.base import DeviceClient
from .base import DomainHandler

logger = logging.getLogger(__name__)

PROBER_POOL_USERS = ("GSLBDataCenter", "GSLBServer")


class GslbHandler(DomainHandler):
    """Apply GSLB configuration.

    Prober pools list servers as members while data centers and servers
    name a prober pool, so proberPool assignments are held back until the
    pools of this slice exist. Clearing an assignment ("none") is sent
    immediately.
    """

    domain = "gslb"

    async def process(self, plan_slice: PlanSlice, client: DeviceClient) -> HandlerOutcome:
        outcome = HandlerOutcome(domain=self.domain)
        deferred: list[tuple[Operation, str]] = []

        for op in self.order(plan_slice.operations):
            if op.change_type == ChangeType.DELETE and deferred:
                await self._assign_prober_pools(deferred, plan_slice, client)
                deferred = []

            if op.schema_class in PROBER_POOL_USERS and op.change_type != ChangeType.DELETE:
                op, pool = self._split_prober_pool(op)
                if pool is not None:
                    deferred.append((op, pool))

            if op.schema_class == "GSLBProberPool" and op.change_type == ChangeType.DELETE:
                await self._detach_prober_pool(op, plan_slice, client)

            await self.apply(op, plan_slice, client, outcome)
            outcome.operations += 1

        if deferred:
            await self._assign_prober_pools(deferred, plan_slice, client)
        return outcome

    # --- monitor paths ---

    def _monitor_type(self, op: Operation, plan_slice: PlanSlice) -> str:
        monitor_type = op.properties.get("monitorType")
        if monitor_type is None:
            props = plan_slice.current.get(op.schema_class, op.name) or plan_slice.desired.get(op.schema_class, op.name)
            monitor_type = (props or {}).get("monitorType", "http")
        return monitor_type

    def collection_path(self, item: ConfigItem, op: Operation) -> str:
        if item.schema_class == "GSLBMonitor":
            return f"{item.path}/{op.properties['monitorType']}"
        return item.path

    def object_path(self, item: ConfigItem, op: Operation, plan_slice: PlanSlice) -> str:
        if item.schema_class == "GSLBMonitor":
            return f"{item.path}/{self._monitor_type(op, plan_slice)}/~{COMMON}~{op.name}"
        return super().object_path(item, op, plan_slice)

    async def modify(
        self,
        op: Operation,
        plan_slice: PlanSlice,
        client: DeviceClient,
        outcome: HandlerOutcome,
    ) -> None:
        if op.schema_class == "GSLBMonitor" and "monitorType" in op.properties:
            # A monitor's type is part of its path
            await self.replace(op, plan_slice, client)
            return
        await super().modify(op, plan_slice, client, outcome)

    # --- prober pool ordering ---

    def _split_prober_pool(self, op: Operation) -> tuple[Operation, Optional[str]]:
        pool = op.properties.get("proberPool")
        if pool in (None, "none"):
            return op, None
        props = {k: v for k, v in op.properties.items() if k != "proberPool"}
        return Operation(op.schema_class, op.name, op.change_type, props), pool

    async def _assign_prober_pools(
        self,
        deferred: list[tuple[Operation, str]],
        plan_slice: PlanSlice,
        client: DeviceClient,
    ) -> None:
        for op, pool in deferred:
            item = get_item(op.schema_class)
            path = self.object_path(item, op, plan_slice)
            logger.debug(f"{client.device_id}: assigning prober pool {pool} to {op.schema_class} {op.name}")
            await self.call(op, path, client.modify, {"proberPool": pool})

    async def _detach_prober_pool(self, op: Operation, plan_slice: PlanSlice, client: DeviceClient) -> None:
        """Point data centers and servers being removed away from a pool before it is deleted."""
        pool = full_path(op.name)
        for schema_class in PROBER_POOL_USERS:
            item = get_item(schema_class)
            for name, props in (plan_slice.current.get_class(schema_class) or {}).items():
                if props.get("proberPool") != pool or name in plan_slice.desired.names(schema_class):
                    continue
                user = Operation(schema_class, name, ChangeType.MODIFY, {"proberPool": "none"})
                await self.call(user, self.object_path(item, user, plan_slice), client.modify, {"proberPool": "none"})
