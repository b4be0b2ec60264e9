"""Event rooms: presence, session resumption and chat fan-out."""
from .coordinator import EventCoordinator, get_coordinator, set_coordinator
from .errors import InvalidSession

__all__ = ["EventCoordinator", "InvalidSession", "get_coordinator", "set_coordinator"]
