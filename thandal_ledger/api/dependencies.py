"""Dependency injection for FastAPI endpoints"""

from fastapi import Request
from thandal_ledger.config import settings
from thandal_ledger.infrastructure.clients.events import EventClient
from thandal_ledger.utils.clock import Clock, SystemClock

_system_clock = SystemClock(settings.timezone)


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_clock() -> Clock:
    """Provide the business clock (overridden with a frozen clock in tests)"""
    return _system_clock


def get_event_client() -> EventClient:
    """Provide outbound event webhook client instance"""
    return EventClient()
