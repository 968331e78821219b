"""Network firewall: address lists, port lists and policies."""
from .base import DomainHandler


class FirewallHandler(DomainHandler):
    """Generic create/modify/delete; the plan already orders lists before policies."""

    domain = "firewall"
