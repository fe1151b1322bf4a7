import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from callscribe.context import Context

from callscribe.errors import EmbeddingFailure
from callscribe.server.sql_models import EmbeddingContentType
from callscribe.services.embedding_manager.cache import EmbeddingCacheEntry, EmbeddingLRUCache
from callscribe.services.manager import Manager
from callscribe.utils import calculate_text_sha256, normalize_text, to_est

MAX_TOKENS_PER_REQUEST = 8191
MAX_EMBEDDING_CHARS = MAX_TOKENS_PER_REQUEST * 4  # ~4 characters per token
COST_PER_1K_TOKENS_USD = 0.00002
DEFAULT_MAX_RETRIES = 3

API_KEY_MISSING_MESSAGE = "API key not configured"


def prepare_text_for_embedding(text: str) -> str:
    """Normalize whitespace and truncate to what the embedding model accepts."""
    normalized = normalize_text(text)
    if len(normalized) > MAX_EMBEDDING_CHARS:
        return normalized[:MAX_EMBEDDING_CHARS] + "..."
    return normalized


def calculate_embedding_cost(token_count: int) -> float:
    return (token_count / 1000) * COST_PER_1K_TOKENS_USD


@dataclass
class EmbeddingResult:
    """Outcome of an embedding request. Failures are reported here, never raised."""

    success: bool
    cached: bool = False
    embedding: list[float] | None = None
    content_hash: str | None = None
    token_count: int = 0
    cost_usd: float = 0.0
    error: str | None = None


# -------------------------------------------------------------- #
# Embedding Manager Service
# -------------------------------------------------------------- #


class EmbeddingManagerService(Manager):
    """
    Content-addressed embedding lookup in front of the embedding generator.

    Lookups go to the in-memory LRU cache first, then to the durable
    embeddings table, and only then to the generator.
    """

    def __init__(
        self,
        context: "Context",
        cache: EmbeddingLRUCache | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_backoff_seconds: float = 1.0,
    ):
        super().__init__(context)
        self.cache = cache or EmbeddingLRUCache()
        self.max_retries = max_retries
        self.retry_backoff_seconds = retry_backoff_seconds
        self._pending_tasks: set[asyncio.Task] = set()

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services):
        await super().on_start(services)
        await self.services.logging_service.info(
            f"EmbeddingManagerService initialized (cache capacity {self.cache.capacity})"
        )
        return True

    async def on_close(self):
        if self._pending_tasks:
            await self.services.logging_service.info(
                f"Waiting for {len(self._pending_tasks)} embedding task(s) to finish..."
            )
            await asyncio.gather(*list(self._pending_tasks), return_exceptions=True)

        stats = self.cache.get_stats()
        await self.services.logging_service.info(
            f"EmbeddingManagerService closed (hits={stats['hits']}, misses={stats['misses']}, "
            f"entries={stats['entries']}, ~{stats['size_bytes']} bytes)"
        )
        return True

    # -------------------------------------------------------------- #
    # Properties
    # -------------------------------------------------------------- #

    @property
    def model(self) -> str:
        return self.server.language_model_client.embedding_model

    @property
    def pending_task_count(self) -> int:
        return len(self._pending_tasks)

    # -------------------------------------------------------------- #
    # Embedding Methods
    # -------------------------------------------------------------- #

    async def generate_with_retry(self, text: str) -> tuple[list[float], int]:
        """
        Ask the generator for an embedding, retrying transient failures.

        Empty text and a missing API key are never retried. Back-off grows
        linearly with the attempt number.

        Raises:
            EmbeddingFailure: After the last failed attempt
        """
        if not text:
            raise EmbeddingFailure("Cannot embed empty text")

        last_error: Exception | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                return await self.server.language_model_client.embed(text)
            except Exception as e:
                last_error = e
                if API_KEY_MISSING_MESSAGE in str(e):
                    raise EmbeddingFailure(API_KEY_MISSING_MESSAGE) from e

                await self.services.logging_service.warning(
                    f"Embedding attempt {attempt}/{self.max_retries} failed: {e}"
                )
                if attempt < self.max_retries:
                    await asyncio.sleep(attempt * self.retry_backoff_seconds)

        raise EmbeddingFailure(
            f"Failed after {self.max_retries} attempts. Last error: {last_error}"
        ) from last_error

    async def _persist(
        self, call_id: str, owner_id: str, kind: str, entry: EmbeddingCacheEntry
    ) -> None:
        existing = await self.services.transcript_sql_manager.get_embedding(call_id, kind)
        if existing is not None and existing.get("content_hash") == entry.content_hash:
            return

        await self.services.transcript_sql_manager.upsert_embedding(
            call_id=call_id,
            user_id=owner_id,
            content_type=kind,
            content_hash=entry.content_hash,
            embedding=entry.embedding,
            embedding_model=entry.model,
            token_count=entry.token_count,
        )

    async def _lookup_durable(self, call_id: str, kind: str, content_hash: str) -> EmbeddingCacheEntry | None:
        sql = self.services.transcript_sql_manager

        row = await sql.get_embedding(call_id, kind)
        if row is None or row.get("content_hash") != content_hash:
            row = await sql.find_embedding_by_hash(content_hash, self.model)
        if row is None:
            return None

        return EmbeddingCacheEntry(
            content_hash=content_hash,
            embedding=list(row["embedding"]),
            model=row["embedding_model"],
            token_count=row.get("token_count") or 0,
            created_at=to_est(row["generated_at"]),
        )

    async def get_or_compute(
        self,
        call_id: str,
        owner_id: str,
        text: str,
        kind: str = EmbeddingContentType.TRANSCRIPT.value,
    ) -> EmbeddingResult:
        """
        Return the embedding for text, generating it only when nothing is cached.

        Args:
            call_id: Call the text belongs to
            owner_id: Owner of the call
            text: Text to embed
            kind: Content type (transcript / summary)

        Returns:
            EmbeddingResult; ``cached`` is True when no generator call was made
        """
        if not text or not text.strip():
            return EmbeddingResult(success=False, error="Text is empty")

        prepared = prepare_text_for_embedding(text)
        content_hash = calculate_text_sha256(prepared)

        try:
            entry = await self.cache.get(content_hash)
            if entry is None:
                entry = await self._lookup_durable(call_id, kind, content_hash)
                if entry is not None:
                    await self.cache.set(entry)

            if entry is not None:
                await self._persist(call_id, owner_id, kind, entry)
                await self.services.logging_service.debug(
                    f"Embedding cache hit for call {call_id} ({content_hash[:12]})"
                )
                return EmbeddingResult(
                    success=True,
                    cached=True,
                    embedding=entry.embedding,
                    content_hash=content_hash,
                    token_count=entry.token_count,
                )

            vector, token_count = await self.generate_with_retry(prepared)
            entry = EmbeddingCacheEntry(
                content_hash=content_hash,
                embedding=vector,
                model=self.model,
                token_count=token_count or 0,
            )
            await self.cache.set(entry)
            await self._persist(call_id, owner_id, kind, entry)

        except Exception as e:
            await self.services.logging_service.warning(
                f"Embedding generation failed for call {call_id}: {e}"
            )
            return EmbeddingResult(success=False, content_hash=content_hash, error=str(e))

        cost = calculate_embedding_cost(entry.token_count)
        await self.services.logging_service.info(
            f"Generated embedding for call {call_id} ({entry.token_count} tokens, ${cost:.6f})"
        )
        return EmbeddingResult(
            success=True,
            cached=False,
            embedding=entry.embedding,
            content_hash=content_hash,
            token_count=entry.token_count,
            cost_usd=cost,
        )

    def schedule_embedding(
        self,
        call_id: str,
        owner_id: str,
        text: str,
        kind: str = EmbeddingContentType.TRANSCRIPT.value,
    ) -> asyncio.Task:
        """
        Run get_or_compute in a detached task tracked for shutdown.

        Returns:
            The scheduled task
        """
        task = asyncio.create_task(self.get_or_compute(call_id, owner_id, text, kind))
        self._pending_tasks.add(task)
        task.add_done_callback(self._pending_tasks.discard)
        return task

    async def wait_for_pending(self) -> None:
        """Wait for every scheduled embedding task."""
        if self._pending_tasks:
            await asyncio.gather(*list(self._pending_tasks), return_exceptions=True)

    def get_cache_statistics(self) -> dict[str, Any]:
        return self.cache.get_stats()
