"""Local messenger core: accounts, sessions, conversations and routing."""

from .config import MessengerConfig, load_config_from_env
from .errors import Failure, Result
from .events import EventHub, MessengerEvent
from .messenger import Messenger
from .state import AppState, DirectTarget, GroupTarget
from .store import InMemoryStateStore, JsonFileStateStore, SQLiteStateStore, new_id, open_store

__all__ = [
    "AppState",
    "DirectTarget",
    "EventHub",
    "Failure",
    "GroupTarget",
    "InMemoryStateStore",
    "JsonFileStateStore",
    "Messenger",
    "MessengerConfig",
    "MessengerEvent",
    "Result",
    "SQLiteStateStore",
    "load_config_from_env",
    "new_id",
    "open_store",
]
