import os
from typing import TYPE_CHECKING

from dotenv import load_dotenv

if TYPE_CHECKING:
    from callscribe.context import Context

from callscribe.constructor import ServerManagerType
from callscribe.services.logger import AsyncLoggingService
from callscribe.services.manager import ServicesManager
from callscribe.utils import parse_bool_env

# prefer a project-local .env.local file, then fallback to any .env
load_dotenv(dotenv_path=".env.local")

# -------------------------------------------------------------- #
# Constructor for Dynamic Creation of Services Manager
# -------------------------------------------------------------- #


def construct_services_manager(
    service_type: ServerManagerType,
    context: "Context",
    default_logging_path: str = "logs",
    log_file: str | None = None,
    use_timestamp_logs: bool = True,
    console_output: bool = True,
    workers: int | None = None,
    timeout_seconds: float | None = None,
    retry_backoff_seconds: float | None = None,
) -> ServicesManager:
    """Construct and return a services manager instance based on the service type.

    Values not passed explicitly are read from the environment.

    Args:
        service_type: Type of server manager (TESTING, DEVELOPMENT or PRODUCTION)
        context: Context instance containing server and services
        default_logging_path: Directory to store log files (default: "logs")
        log_file: Specific log file name (optional, overrides use_timestamp_logs)
        use_timestamp_logs: If True and log_file is None, creates timestamped log files (default: True)
        console_output: Echo service logs to stdout
        workers: Number of concurrent transcription jobs (TRANSCRIPTION_WORKERS)
        timeout_seconds: Wall-clock ceiling per attempt (TRANSCRIPTION_TIMEOUT_SECONDS)
        retry_backoff_seconds: Delay per retry before a re-queued attempt starts
    """
    if not isinstance(service_type, ServerManagerType):
        raise ValueError(f"Unsupported service type: {service_type}")

    from callscribe.services.access_gateway.manager import AccessGatewayManagerService
    from callscribe.services.call_sql_manager.manager import CallSQLManagerService
    from callscribe.services.correction_manager.manager import CorrectionManagerService
    from callscribe.services.embedding_manager.cache import EmbeddingLRUCache
    from callscribe.services.embedding_manager.manager import EmbeddingManagerService
    from callscribe.services.transcript_sql_manager.manager import TranscriptSQLManagerService
    from callscribe.services.transcription_job_manager.manager import (
        DEFAULT_RETRY_BACKOFF_SECONDS,
        TranscriptionJobManagerService,
    )
    from callscribe.services.transcription_provider.manager import (
        TranscriptionProviderManagerService,
    )
    from callscribe.services.translation_manager.manager import TranslationManagerService

    # create logger
    logging_service = AsyncLoggingService(
        context=context,
        log_dir=default_logging_path,
        log_file=log_file,
        use_timestamp=use_timestamp_logs,
        console_output=console_output,
        min_level=os.getenv("LOG_LEVEL", "DEBUG"),
    )

    # -------------------------------------------------------------- #
    # DB Interfaces Setup
    # -------------------------------------------------------------- #

    call_sql_manager = CallSQLManagerService(context=context)
    transcript_sql_manager = TranscriptSQLManagerService(context=context)

    # -------------------------------------------------------------- #
    # Pipeline Step Setup
    # -------------------------------------------------------------- #

    access_gateway = AccessGatewayManagerService(
        context=context,
        signed_url_ttl_seconds=int(os.getenv("SIGNED_URL_TTL_SECONDS", "3600")),
    )
    correction_manager = CorrectionManagerService(context=context)
    transcription_provider_manager = TranscriptionProviderManagerService(
        context=context,
        fallback_enabled=parse_bool_env(os.getenv("FALLBACK_TO_OPENAI"), True),
    )
    translation_manager = TranslationManagerService(context=context)

    # Testing skips the generator back-off
    embedding_backoff = 0.0 if service_type == ServerManagerType.TESTING else 1.0
    embedding_manager = EmbeddingManagerService(
        context=context,
        cache=EmbeddingLRUCache(capacity=int(os.getenv("EMBEDDING_CACHE_SIZE", "1000"))),
        retry_backoff_seconds=embedding_backoff,
    )

    # -------------------------------------------------------------- #
    # Transcription Job Manager Setup
    # -------------------------------------------------------------- #

    if workers is None:
        workers = int(os.getenv("TRANSCRIPTION_WORKERS", "4"))
    if timeout_seconds is None:
        timeout_seconds = float(os.getenv("TRANSCRIPTION_TIMEOUT_SECONDS", "240"))
    if retry_backoff_seconds is None:
        retry_backoff_seconds = (
            0.0 if service_type == ServerManagerType.TESTING else DEFAULT_RETRY_BACKOFF_SECONDS
        )

    transcription_job_manager = TranscriptionJobManagerService(
        context=context,
        workers=workers,
        timeout_seconds=timeout_seconds,
        retry_backoff_seconds=retry_backoff_seconds,
    )

    return ServicesManager(
        context=context,
        logging_service=logging_service,
        call_sql_manager=call_sql_manager,
        transcript_sql_manager=transcript_sql_manager,
        access_gateway=access_gateway,
        correction_manager=correction_manager,
        transcription_provider_manager=transcription_provider_manager,
        translation_manager=translation_manager,
        embedding_manager=embedding_manager,
        transcription_job_manager=transcription_job_manager,
    )
