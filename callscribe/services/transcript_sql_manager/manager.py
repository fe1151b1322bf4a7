from typing import TYPE_CHECKING, Any

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError

if TYPE_CHECKING:
    from callscribe.context import Context

from callscribe.errors import ConflictError
from callscribe.server.db_models import JobMetadata
from callscribe.server.sql_models import (
    CorrectionRuleModel,
    EmbeddingModel,
    TranscriptionJobModel,
    TranscriptionJobStatus,
    TranscriptModel,
    TranscriptStatus,
)
from callscribe.services.manager import Manager
from callscribe.utils import generate_16_char_uuid, get_current_timestamp_est, to_naive

# -------------------------------------------------------------- #
# SQL Transcript Manager Service
# -------------------------------------------------------------- #


class TranscriptSQLManagerService(Manager):
    """Service for transcription jobs, transcripts, correction rules and embedding rows."""

    def __init__(self, context: "Context"):
        super().__init__(context)

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services):
        await super().on_start(services)
        await self.services.logging_service.info("TranscriptSQLManagerService initialized")
        return True

    async def on_close(self):
        await self.services.logging_service.info("TranscriptSQLManagerService closed")
        return True

    # -------------------------------------------------------------- #
    # Transcription Job Methods
    # -------------------------------------------------------------- #

    async def get_job_by_call(self, call_id: str) -> dict[str, Any] | None:
        """
        Get the transcription job for a call.

        Args:
            call_id: ID of the call

        Returns:
            Job row as a dictionary, or None if no job exists
        """
        query = select(TranscriptionJobModel).where(TranscriptionJobModel.call_id == call_id)
        results = await self.server.sql_client.execute(query)
        return results[0] if results else None

    async def get_job(self, job_id: str) -> dict[str, Any] | None:
        """Get a transcription job by ID."""
        query = select(TranscriptionJobModel).where(TranscriptionJobModel.id == job_id)
        results = await self.server.sql_client.execute(query)
        return results[0] if results else None

    async def admit_job(
        self,
        call_id: str,
        user_id: str,
        team_id: str | None,
        metadata: JobMetadata,
        audio_duration_seconds: float | None,
    ) -> dict[str, Any]:
        """
        Create the job row for a call, or reset the existing one for a new admission.

        Every admission bumps the ``attempt`` counter so a superseded attempt
        can tell it no longer owns the row. The bump only applies on top of the
        attempt that was read, so two admissions never share an attempt number.

        Args:
            call_id: ID of the call
            user_id: Caller requesting the transcription
            team_id: Team of the call
            metadata: Initial job metadata (language hint, prompt)
            audio_duration_seconds: Call duration

        Returns:
            The job row after admission

        Raises:
            ConflictError: If another admission for the call got there first
        """
        timestamp = to_naive(get_current_timestamp_est())
        existing = await self.get_job_by_call(call_id)

        if existing is None:
            metadata.attempt = 1
            job_data = {
                "id": generate_16_char_uuid(),
                "call_id": call_id,
                "user_id": user_id,
                "team_id": team_id,
                "status": TranscriptionJobStatus.PENDING.value,
                "attempt": 1,
                "retry_count": 0,
                "max_retries": 3,
                "created_at": timestamp,
                "job_metadata": metadata.model_dump(),
                "audio_duration_seconds": audio_duration_seconds,
            }
            try:
                await self.server.sql_client.execute(
                    insert(TranscriptionJobModel).values(**job_data)
                )
            except IntegrityError as e:
                raise ConflictError(
                    "Transcription already in progress", details={"call_id": call_id}
                ) from e
            await self.services.logging_service.info(
                f"Created transcription job {job_data['id']} for call {call_id}"
            )
        else:
            attempt = (existing.get("attempt") or 0) + 1
            metadata.attempt = attempt
            job_data = {
                "user_id": user_id,
                "team_id": team_id,
                "status": TranscriptionJobStatus.PENDING.value,
                "attempt": attempt,
                "retry_count": 0,
                "started_at": None,
                "completed_at": None,
                "error_message": None,
                "job_metadata": metadata.model_dump(),
                "audio_duration_seconds": audio_duration_seconds,
            }
            updated = await self.server.sql_client.execute(
                update(TranscriptionJobModel)
                .where(
                    TranscriptionJobModel.id == existing["id"],
                    TranscriptionJobModel.attempt == existing.get("attempt"),
                )
                .values(**job_data)
                .returning(TranscriptionJobModel.id)
            )
            if not updated:
                raise ConflictError(
                    "Transcription was re-admitted concurrently",
                    details={"job_id": existing["id"]},
                )
            await self.services.logging_service.info(
                f"Reset transcription job {existing['id']} for call {call_id} (attempt {attempt})"
            )

        return await self.get_job_by_call(call_id)

    async def update_job(self, job_id: str, **values: Any) -> None:
        """
        Update columns of a job row.

        Args:
            job_id: ID of the job
            **values: Column values to set (statuses may be passed as enums)
        """
        if not values:
            return

        if isinstance(values.get("status"), TranscriptionJobStatus):
            values["status"] = values["status"].value
        for key in ("started_at", "completed_at"):
            if key in values:
                values[key] = to_naive(values[key])

        stmt = update(TranscriptionJobModel).where(TranscriptionJobModel.id == job_id).values(**values)
        await self.server.sql_client.execute(stmt)

    async def mark_job_processing(self, job_id: str, attempt: int, started_at) -> bool:
        """
        Move a pending job to processing, only if it still belongs to ``attempt``.

        Args:
            job_id: ID of the job
            attempt: Attempt the caller was created for
            started_at: When the attempt started

        Returns:
            True if the row was updated; False if it was cancelled or re-admitted
        """
        stmt = (
            update(TranscriptionJobModel)
            .where(
                TranscriptionJobModel.id == job_id,
                TranscriptionJobModel.attempt == attempt,
                TranscriptionJobModel.status == TranscriptionJobStatus.PENDING.value,
            )
            .values(
                status=TranscriptionJobStatus.PROCESSING.value,
                started_at=to_naive(started_at),
            )
            .returning(TranscriptionJobModel.id)
        )
        return bool(await self.server.sql_client.execute(stmt))

    async def update_job_progress(
        self, job_id: str, progress: int, stage: str, message: str | None = None
    ) -> None:
        """
        Merge progress bookkeeping into the job metadata.

        Args:
            job_id: ID of the job
            progress: Percentage 0-100
            stage: Stage name
            message: Human-readable progress message
        """
        job = await self.get_job(job_id)
        if job is None:
            return

        metadata = JobMetadata.model_validate(job.get("job_metadata") or {})
        metadata.progress = progress
        metadata.stage = stage
        metadata.message = message
        metadata.last_updated = get_current_timestamp_est().isoformat()

        await self.update_job(job_id, job_metadata=metadata.model_dump())

    # -------------------------------------------------------------- #
    # Transcript Methods
    # -------------------------------------------------------------- #

    async def get_transcript(self, call_id: str) -> dict[str, Any] | None:
        """
        Get the transcript for a call.

        Args:
            call_id: ID of the call

        Returns:
            Transcript row as a dictionary, or None if none exists
        """
        query = select(TranscriptModel).where(TranscriptModel.call_id == call_id)
        results = await self.server.sql_client.execute(query)
        return results[0] if results else None

    async def upsert_transcript(
        self, call_id: str, user_id: str, team_id: str | None, **values: Any
    ) -> None:
        """
        Insert or update the transcript row keyed by call ID.

        Args:
            call_id: ID of the call
            user_id: Owner of the call
            team_id: Team of the call
            **values: Transcript column values (statuses may be passed as enums)
        """
        if isinstance(values.get("transcription_status"), TranscriptStatus):
            values["transcription_status"] = values["transcription_status"].value
        for key in ("processing_started_at", "processing_completed_at"):
            if key in values:
                values[key] = to_naive(values[key])

        values["updated_at"] = to_naive(get_current_timestamp_est())

        existing = await self.get_transcript(call_id)
        if existing is None:
            stmt = insert(TranscriptModel).values(
                id=generate_16_char_uuid(),
                call_id=call_id,
                user_id=user_id,
                team_id=team_id,
                **values,
            )
        else:
            stmt = (
                update(TranscriptModel)
                .where(TranscriptModel.call_id == call_id)
                .values(user_id=user_id, team_id=team_id, **values)
            )

        await self.server.sql_client.execute(stmt)

    # -------------------------------------------------------------- #
    # Correction Rule Methods
    # -------------------------------------------------------------- #

    async def list_correction_rules(self, user_id: str) -> list[dict[str, Any]]:
        """
        Get a user's correction rules in application order.

        Args:
            user_id: Owner of the rules

        Returns:
            Rules ordered by ascending priority (ties by creation time)
        """
        query = (
            select(CorrectionRuleModel)
            .where(CorrectionRuleModel.user_id == user_id)
            .order_by(CorrectionRuleModel.priority.asc(), CorrectionRuleModel.created_at.asc())
        )
        return await self.server.sql_client.execute(query)

    async def insert_correction_rule(
        self,
        user_id: str,
        find_text: str,
        replace_text: str,
        is_regex: bool = False,
        case_sensitive: bool = False,
        priority: int = 100,
    ) -> str:
        """
        Insert a correction rule.

        Rules are owned by the settings surface; this is used by fixtures and seeding.

        Returns:
            The rule ID
        """
        entry_id = generate_16_char_uuid()
        stmt = insert(CorrectionRuleModel).values(
            id=entry_id,
            user_id=user_id,
            find_text=find_text,
            replace_text=replace_text,
            is_regex=is_regex,
            case_sensitive=case_sensitive,
            priority=priority,
            created_at=to_naive(get_current_timestamp_est()),
        )
        await self.server.sql_client.execute(stmt)
        return entry_id

    # -------------------------------------------------------------- #
    # Embedding Methods
    # -------------------------------------------------------------- #

    async def get_embedding(self, call_id: str, content_type: str) -> dict[str, Any] | None:
        """Get the stored embedding for a call and content type."""
        query = select(EmbeddingModel).where(
            EmbeddingModel.call_id == call_id, EmbeddingModel.content_type == content_type
        )
        results = await self.server.sql_client.execute(query)
        return results[0] if results else None

    async def find_embedding_by_hash(
        self, content_hash: str, embedding_model: str
    ) -> dict[str, Any] | None:
        """Find any stored embedding produced from the same normalized text and model."""
        query = (
            select(EmbeddingModel)
            .where(
                EmbeddingModel.content_hash == content_hash,
                EmbeddingModel.embedding_model == embedding_model,
            )
            .limit(1)
        )
        results = await self.server.sql_client.execute(query)
        return results[0] if results else None

    async def upsert_embedding(
        self,
        call_id: str,
        user_id: str,
        content_type: str,
        content_hash: str,
        embedding: list[float],
        embedding_model: str,
        token_count: int | None,
    ) -> None:
        """
        Insert or update the embedding row keyed by (call_id, content_type).
        """
        values = {
            "user_id": user_id,
            "content_hash": content_hash,
            "embedding": embedding,
            "embedding_model": embedding_model,
            "token_count": token_count,
            "generated_at": to_naive(get_current_timestamp_est()),
        }

        existing = await self.get_embedding(call_id, content_type)
        if existing is None:
            stmt = insert(EmbeddingModel).values(
                id=generate_16_char_uuid(), call_id=call_id, content_type=content_type, **values
            )
        else:
            stmt = (
                update(EmbeddingModel)
                .where(EmbeddingModel.id == existing["id"])
                .values(**values)
            )

        await self.server.sql_client.execute(stmt)
