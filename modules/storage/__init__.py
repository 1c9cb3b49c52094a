from .gateway import StorageGateway
from .logging_store import LoggingStore
from .settings import StorageSettings

__all__ = [
    "LoggingStore",
    "StorageGateway",
    "StorageSettings",
]
