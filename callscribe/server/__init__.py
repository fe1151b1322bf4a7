"""Server module for handling external service connections."""

from .server import ServerManager
from .services import (
    BaseServerHandler,
    LanguageModelHandler,
    ObjectStorageHandler,
    SpeechToTextHandler,
    SQLDatabase,
)

__all__ = [
    "BaseServerHandler",
    "LanguageModelHandler",
    "ObjectStorageHandler",
    "ServerManager",
    "SpeechToTextHandler",
    "SQLDatabase",
]
