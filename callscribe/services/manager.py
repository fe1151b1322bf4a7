from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from callscribe.context import Context
    from callscribe.services.access_gateway.manager import AccessGatewayManagerService
    from callscribe.services.call_sql_manager.manager import CallSQLManagerService
    from callscribe.services.correction_manager.manager import CorrectionManagerService
    from callscribe.services.embedding_manager.manager import EmbeddingManagerService
    from callscribe.services.transcript_sql_manager.manager import TranscriptSQLManagerService
    from callscribe.services.transcription_job_manager.manager import (
        TranscriptionJobManagerService,
    )
    from callscribe.services.transcription_provider.manager import (
        TranscriptionProviderManagerService,
    )
    from callscribe.services.translation_manager.manager import TranslationManagerService


# -------------------------------------------------------------- #
# Services Manager Class
# -------------------------------------------------------------- #


class ServicesManager:
    """Manager for handling multiple service instances."""

    def __init__(
        self,
        context: Context,
        logging_service: BaseAsyncLoggingService,
        call_sql_manager: CallSQLManagerService,
        transcript_sql_manager: TranscriptSQLManagerService,
        access_gateway: AccessGatewayManagerService,
        correction_manager: CorrectionManagerService,
        transcription_provider_manager: TranscriptionProviderManagerService,
        translation_manager: TranslationManagerService,
        embedding_manager: EmbeddingManagerService,
        transcription_job_manager: TranscriptionJobManagerService,
    ):
        self.context = context
        self.server = context.server_manager

        self.logging_service = logging_service

        # DB interfaces
        self.call_sql_manager = call_sql_manager
        self.transcript_sql_manager = transcript_sql_manager

        # Pipeline steps
        self.access_gateway = access_gateway
        self.correction_manager = correction_manager
        self.transcription_provider_manager = transcription_provider_manager
        self.translation_manager = translation_manager
        self.embedding_manager = embedding_manager

        # Orchestrator
        self.transcription_job_manager = transcription_job_manager

    def _managers_in_start_order(self) -> list[Manager]:
        return [
            self.call_sql_manager,
            self.transcript_sql_manager,
            self.access_gateway,
            self.correction_manager,
            self.transcription_provider_manager,
            self.translation_manager,
            self.embedding_manager,
            self.transcription_job_manager,
        ]

    async def initialize_all(self) -> None:
        """Initialize all service managers."""

        # Logging first so every other manager can log on start
        await self.logging_service.on_start(self)

        for manager in self._managers_in_start_order():
            await manager.on_start(self)

        await self.logging_service.info("All services initialized")

    async def shutdown_all(self, timeout: float = 60.0) -> None:
        """
        Gracefully shutdown all service managers, waiting for ongoing work to complete.

        This method ensures that:
        1. No new transcriptions are admitted
        2. In-flight transcription attempts finish (or are cancelled at the deadline)
        3. Detached embedding tasks finish
        4. Database-backed managers close
        5. Servers disconnect and logs are flushed

        Args:
            timeout: Maximum time in seconds to wait for services to shutdown (default: 60s)
        """
        await self.logging_service.info("=" * 60)
        await self.logging_service.info("Starting graceful shutdown of all services...")

        # Mark context as shutting down to prevent new operations
        if self.context:
            self.context.mark_shutdown_started()
            await self.logging_service.info("Shutdown flag set - no new transcriptions will start")

        try:
            # Phase 1: Wait for transcription jobs to complete
            await self.logging_service.info(
                "Phase 1: Waiting for transcription jobs to complete..."
            )
            await asyncio.wait_for(
                self.transcription_job_manager.on_close(), timeout=timeout * 0.6
            )
            await self.logging_service.info("All transcription jobs completed")

            # Phase 2: Wait for embedding generation
            await self.logging_service.info("Phase 2: Waiting for embedding generation...")
            await asyncio.wait_for(self.embedding_manager.on_close(), timeout=timeout * 0.2)
            await self.logging_service.info("Embedding manager closed")

            # Phase 3: Close step managers and DB interfaces (no timeout needed)
            await self.logging_service.info("Phase 3: Closing pipeline managers...")
            await self.translation_manager.on_close()
            await self.transcription_provider_manager.on_close()
            await self.correction_manager.on_close()
            await self.access_gateway.on_close()
            await self.transcript_sql_manager.on_close()
            await self.call_sql_manager.on_close()
            await self.logging_service.info("Pipeline managers closed")

            # Phase 4: Disconnect from all servers
            await self.logging_service.info("Phase 4: Disconnecting from all servers...")
            if self.context and self.context.server_manager:
                await self.context.server_manager.disconnect_all()
                await self.logging_service.info("All servers disconnected")

            await self.logging_service.info("Graceful shutdown completed successfully")
            await self.logging_service.info("=" * 60)

        except asyncio.TimeoutError:
            await self.logging_service.error(
                f"Shutdown timeout exceeded ({timeout}s) - forcing shutdown"
            )
        except Exception as e:
            await self.logging_service.error(f"Error during shutdown: {e}")

        # Phase 5: Always flush and close logging (even if there were errors)
        try:
            await asyncio.wait_for(self.logging_service.on_close(), timeout=5.0)
        except asyncio.TimeoutError:
            pass  # Don't wait forever for logging to flush


# -------------------------------------------------------------- #
# Base Service Manager Class
# -------------------------------------------------------------- #


class Manager(ABC):
    """Base class for all manager services."""

    def __init__(self, context: Context):
        self.context = context
        self.server = context.server_manager
        self.services: ServicesManager | None = None

        # check if server has been initialized
        if self.server is not None and not self.server.is_initialized:
            raise RuntimeError(
                "ServerManager must be initialized before creating Manager instances."
            )

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services: ServicesManager) -> None:
        """Actions to perform on manager start."""
        self.services = services

    async def on_close(self) -> None:
        """Actions to perform on manager close."""
        pass


# -------------------------------------------------------------- #
# Specialized Manager Classes
# -------------------------------------------------------------- #


class BaseAsyncLoggingService(Manager):
    """Specialized manager for asynchronous logging services."""

    def __init__(self, context):
        super().__init__(context)

    @abstractmethod
    async def log(self, message: str, level: str = "INFO", **tags) -> None:
        """Log a message asynchronously."""
        pass

    @abstractmethod
    async def debug(self, message: str, **tags) -> None:
        """Log a debug message asynchronously."""
        pass

    @abstractmethod
    async def info(self, message: str, **tags) -> None:
        """Log an info message asynchronously."""
        pass

    @abstractmethod
    async def warning(self, message: str, **tags) -> None:
        """Log a warning message asynchronously."""
        pass

    @abstractmethod
    async def error(self, message: str, **tags) -> None:
        """Log an error message asynchronously."""
        pass

    @abstractmethod
    async def critical(self, message: str, **tags) -> None:
        """Log a critical message asynchronously."""
        pass
