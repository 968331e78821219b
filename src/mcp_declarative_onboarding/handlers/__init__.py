"""Per-domain apply handlers."""
from typing import Optional

from ..config_engine.translator import ConfigTranslator
from .auth import AuthHandler
from .base import DomainHandler
from .dsc import DscHandler
from .firewall import FirewallHandler
from .gslb import GslbHandler
from .network import NetworkHandler
from .system import SystemHandler

__all__ = [
    "DomainHandler",
    "AuthHandler",
    "DscHandler",
    "FirewallHandler",
    "GslbHandler",
    "NetworkHandler",
    "SystemHandler",
    "HANDLERS",
    "create_handlers",
]

# Domain registry
HANDLERS = {
    "system": SystemHandler,
    "firewall": FirewallHandler,
    "network": NetworkHandler,
    "dsc": DscHandler,
    "authentication": AuthHandler,
    "gslb": GslbHandler,
}


def create_handlers(
    translator: Optional[ConfigTranslator] = None,
    max_parallel: int = 4,
) -> dict[str, DomainHandler]:
    """Instantiate one handler per domain."""
    translator = translator or ConfigTranslator()
    return {domain: cls(translator, max_parallel) for domain, cls in HANDLERS.items()}
