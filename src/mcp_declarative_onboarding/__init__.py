"""Declarative onboarding engine for network appliances.

Reconciles a desired-state declaration against an appliance's live
configuration and exposes the workflow as MCP tools.
"""

__version__ = "1.23.0"
