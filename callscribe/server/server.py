"""
Server service handlers for external services.

This module provides the manager that owns every connection the pipeline
makes to the outside world: the relational store, object storage, the two
speech-to-text providers and the language model.
"""

import logging
from typing import TYPE_CHECKING

from callscribe.server.services import (
    LanguageModelHandler,
    ObjectStorageHandler,
    SpeechToTextHandler,
    SQLDatabase,
)

if TYPE_CHECKING:
    from callscribe.context import Context

logger = logging.getLogger(__name__)

# -------------------------------------------------------------- #
# Server Manager
# -------------------------------------------------------------- #


class ServerManager:
    """Manager for handling multiple server instances."""

    def __init__(
        self,
        context: "Context",
        sql_client: SQLDatabase,
        storage_client: ObjectStorageHandler,
        primary_provider: SpeechToTextHandler,
        secondary_provider: SpeechToTextHandler | None,
        language_model_client: LanguageModelHandler,
    ):
        self.context = context
        self._initialized = False
        self._sql_client = sql_client
        self._storage_client = storage_client
        self._primary_provider = primary_provider
        self._secondary_provider = secondary_provider
        self._language_model_client = language_model_client

        self._servers = {
            "sql": sql_client,
            "storage": storage_client,
            "primary_provider": primary_provider,
            "language_model": language_model_client,
        }
        if secondary_provider is not None:
            self._servers["secondary_provider"] = secondary_provider

    # ------------------------------------------------------ #
    # Server Management
    # ------------------------------------------------------ #

    async def connect_all(self) -> None:
        """Connect to all servers."""
        logger.info("=" * 60)
        logger.info("[ServerManager] Connecting all servers...")

        for server in self._servers.values():
            logger.info(f"[ServerManager] Connecting to '{server.name}' server...")
            await server.connect()
            logger.info(f"[ServerManager] Executing startup actions for '{server.name}' server...")
            await server.on_startup()
            logger.info(f"[ServerManager] '{server.name}' server is ready.")

        self._initialized = True
        logger.info("[ServerManager] All servers connected successfully.")
        logger.info("=" * 60)

    async def disconnect_all(self) -> None:
        """Disconnect from all servers."""
        logger.info("=" * 60)
        logger.info("[ServerManager] Disconnecting all servers...")

        for server in self._servers.values():
            logger.info(f"[ServerManager] Executing close actions for '{server.name}' server...")
            await server.on_close()
            logger.info(f"[ServerManager] Disconnecting from '{server.name}' server...")
            await server.disconnect()
            logger.info(f"[ServerManager] '{server.name}' server disconnected.")

        self._initialized = False
        logger.info("[ServerManager] All servers disconnected successfully.")
        logger.info("=" * 60)

    async def health_check_all(self) -> dict[str, bool]:
        """
        Check health of all registered servers.

        Returns:
            Dictionary mapping server names to health status
        """
        results = {}
        for name, server in self._servers.items():
            results[name] = await server.health_check()
        return results

    def list_servers(self) -> list[str]:
        """Get list of all registered server names."""
        return list(self._servers.keys())

    # ------------------------------------------------------ #
    # Properties
    # ------------------------------------------------------ #

    @property
    def sql_client(self) -> SQLDatabase:
        """Get the SQL client."""
        return self._sql_client

    @property
    def storage_client(self) -> ObjectStorageHandler:
        """Get the object storage client."""
        return self._storage_client

    @property
    def primary_provider(self) -> SpeechToTextHandler:
        """Get the primary speech-to-text provider."""
        return self._primary_provider

    @property
    def secondary_provider(self) -> SpeechToTextHandler | None:
        """Get the fallback speech-to-text provider, if any."""
        return self._secondary_provider

    @property
    def language_model_client(self) -> LanguageModelHandler:
        """Get the language model client."""
        return self._language_model_client

    @property
    def is_initialized(self) -> bool:
        """Check if the server manager is initialized."""
        return self._initialized
