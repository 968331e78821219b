"""Device service clustering: traffic groups, config sync, failover, device groups."""
import logging

from ..config_engine.schema import HandlerOutcome, Operation, PlanSlice
from ..devices.base import DeviceClient
from .base import DomainHandler

logger = logging.getLogger(__name__)


class DscHandler(DomainHandler):
    """Apply clustering settings.

    ConfigSync, FailoverUnicast and FailoverMulticast are properties of
    the device's own cm device object, which is looked up at apply time
    since its name follows the hostname.
    """

    domain = "dsc"

    async def modify(
        self,
        op: Operation,
        plan_slice: PlanSlice,
        client: DeviceClient,
        outcome: HandlerOutcome,
    ) -> None:
        if op.schema_class == "DeviceGroup" and "type" in op.properties:
            # The device rejects type changes on an existing group
            await self.replace(op, plan_slice, client)
            return
        await super().modify(op, plan_slice, client, outcome)
