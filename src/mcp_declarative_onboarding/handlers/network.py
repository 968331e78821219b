"""Network domain: trunks, VLANs, route domains, self IPs, routes and routing."""
import logging

from ..config_engine.schema import ChangeType, ConfigItem, HandlerOutcome, Operation, PlanSlice
from ..config_engine.schema_map import COMMON, LOCAL_ONLY, get_item
from ..devices.base import DeviceClient
from .base import DomainHandler

logger = logging.getLogger(__name__)


class NetworkHandler(DomainHandler):
    """Apply layer 2 and layer 3 networking."""

    domain = "network"

    def order(self, operations: list[Operation]) -> list[Operation]:
        """Interface routes are created before gateway routes that may use them."""
        route_slots = [
            i for i, op in enumerate(operations)
            if op.schema_class == "Route" and op.change_type == ChangeType.CREATE
        ]
        routes = [operations[i] for i in route_slots]
        routes.sort(key=lambda op: not op.properties.get("target"))
        ordered = list(operations)
        for slot, op in zip(route_slots, routes):
            ordered[slot] = op
        return ordered

    def partition(self, item: ConfigItem, op: Operation, plan_slice: PlanSlice) -> str:
        if item.schema_class != "Route":
            return COMMON
        props = op.properties
        if "localOnly" not in props:
            props = plan_slice.current.get("Route", op.name) or plan_slice.desired.get("Route", op.name) or {}
        return LOCAL_ONLY if props.get("localOnly") else COMMON

    async def modify(
        self,
        op: Operation,
        plan_slice: PlanSlice,
        client: DeviceClient,
        outcome: HandlerOutcome,
    ) -> None:
        item = get_item(op.schema_class)
        replaced = [p.name for p in item.properties if p.replace_on_change and p.name in op.properties]
        if op.schema_class == "Route" and "localOnly" in op.properties:
            replaced.append("localOnly")
        if replaced:
            logger.info(f"{op.schema_class} {op.name}: {', '.join(replaced)} changed, re-creating")
            await self.replace(op, plan_slice, client)
            return
        await super().modify(op, plan_slice, client, outcome)
