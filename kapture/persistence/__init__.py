"""Run persistence gateways (in-memory, JSON files, REST)."""

from .gateway import DocumentRunStore, RunPersistenceGateway
from .http_store import HttpRunStore
from .json_store import JsonRunStore
from .memory import InMemoryRunStore

__all__ = [
    "DocumentRunStore",
    "HttpRunStore",
    "InMemoryRunStore",
    "JsonRunStore",
    "RunPersistenceGateway",
]
