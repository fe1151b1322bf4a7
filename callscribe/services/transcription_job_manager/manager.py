"""
Transcription Job Manager Service.

This service admits transcription requests for calls and drives each admitted
job through an ordered list of steps on an event-based job queue:
- Validate access and fetch the call
- Mint a retrieval URL for the audio
- Transcribe (with provider fallback and one optional quality re-run)
- Translate Spanish output
- Apply the owner's correction rules
- Persist the transcript and mark the job completed
- Schedule embedding generation in the background

Job state lives in the transcription_jobs / transcripts tables; every write
is an upsert keyed by call ID. Each admission bumps the job row's attempt
counter, and a running attempt stops as soon as it notices it was superseded.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from callscribe.context import Context
    from callscribe.services.manager import ServicesManager

from callscribe.errors import (
    AccessDenied,
    ConflictError,
    NotFound,
    PersistenceFailure,
    PipelineError,
    PipelineTimeout,
    ServiceUnavailable,
)
from callscribe.server.db_models import JobMetadata
from callscribe.server.services import TranscriptionOptions, TranscriptionResult
from callscribe.server.sql_models import (
    EmbeddingContentType,
    TranscriptionJobStatus,
    TranscriptStatus,
)
from callscribe.services.common.job import Job, JobQueue
from callscribe.services.manager import Manager
from callscribe.services.transcription_job_manager.events import (
    EventBus,
    TranscriptionEvent,
    TranscriptionEventType,
)
from callscribe.services.transcription_provider import heuristics
from callscribe.services.transcription_provider.manager import format_segments_to_timestamps
from callscribe.services.translation_manager.manager import TranslationOutcome
from callscribe.utils import extract_storage_filename, get_current_timestamp_est, to_naive

MIN_CALL_DURATION_SECONDS = 6
SHORT_CALL_TEXT = "Call too short to transcribe."
NO_RECORDING_TEXT = "No recording available for this call."
PROCESSING_PLACEHOLDER_TEXT = "Processing..."
CANCELLED_MESSAGE = "Cancelled by user"

DEFAULT_WORKERS = 4
DEFAULT_TIMEOUT_SECONDS = 240.0
DEFAULT_RETRY_BACKOFF_SECONDS = 2.0
ESTIMATED_PROCESSING_FACTOR = 3  # seconds of processing per second of audio

IN_FLIGHT_JOB_STATUSES = (
    TranscriptionJobStatus.PENDING.value,
    TranscriptionJobStatus.PROCESSING.value,
)
BLOCKING_TRANSCRIPT_STATUSES = (
    TranscriptStatus.COMPLETED.value,
    TranscriptStatus.PROCESSING.value,
)


class AttemptSuperseded(Exception):
    """The job row now belongs to a newer admission or was cancelled."""


@dataclass
class AdmissionResult:
    """Outcome of an admission request: an HTTP-equivalent status and a response body."""

    status_code: int
    body: dict[str, Any]


@dataclass
class PipelineStep:
    """One step of an attempt. Steps without progress do not report it."""

    name: str
    stage: str
    run: Callable[[], Awaitable[None]]
    progress: int | None = None
    message: str | None = None


# -------------------------------------------------------------- #
# Call Transcription Job
# -------------------------------------------------------------- #


@dataclass
class CallTranscriptionJob(Job):
    """
    A job producing the transcript of one call.

    Attributes:
        call_id: Call to transcribe
        caller_id: User that requested the transcription
        owner_id: Owner of the call (correction rules and rows belong to them)
        team_id: Team of the call
        record_id: ID of the transcription_jobs row
        attempt: Admission counter this job was created for
        language: Language requested by the caller
        prompt: Prompt supplied by the caller
        retry_number: How many times this admission has been re-queued
        services: Reference to ServicesManager for accessing services
        events: Bus that progress events are published to
        timeout_seconds: Wall-clock ceiling of one attempt
        retry_backoff_seconds: Delay per retry before a re-queued attempt starts
    """

    call_id: str = ""
    caller_id: str = ""
    owner_id: str = ""
    team_id: str | None = None
    record_id: str = ""
    attempt: int = 1
    language: str | None = None
    prompt: str | None = None
    retry_number: int = 0
    services: "ServicesManager" = None  # type: ignore
    events: EventBus | None = None
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS

    # Per-attempt state
    stage: str = "fetch"
    call: dict[str, Any] | None = None
    hint: heuristics.LanguageHint | None = None
    audio_url: str | None = None
    result: TranscriptionResult | None = None
    rerun_reason: str | None = None
    first_pass_language: str | None = None
    translation: TranslationOutcome | None = None
    corrected_text: str | None = None
    embedding_task: asyncio.Task | None = field(default=None, repr=False)

    # -------------------------------------------------------------- #
    # Job Execution
    # -------------------------------------------------------------- #

    async def execute(self) -> None:
        """
        Run one attempt of the pipeline under the wall-clock ceiling.

        Raises:
            PipelineTimeout: If the attempt exceeds timeout_seconds
            PipelineError: Any step-level fatal error
            AttemptSuperseded: If a newer admission or a cancellation took over
        """
        if not self.services:
            raise RuntimeError("ServicesManager not provided to CallTranscriptionJob")

        self._reset_attempt_state()

        if self.retry_number and self.retry_backoff_seconds:
            await asyncio.sleep(self.retry_backoff_seconds * self.retry_number)

        await self.services.logging_service.info(
            f"Starting transcription attempt {self.attempt}.{self.retry_number}", **self.log_tags()
        )

        try:
            await asyncio.wait_for(self._run_steps(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise PipelineTimeout(self.timeout_seconds, stage=self.stage) from e

    def steps(self) -> list[PipelineStep]:
        """The ordered step list of one attempt."""
        return [
            PipelineStep("validate-access", "fetch", self._fetch_call, 10, "Fetching call details..."),
            PipelineStep("create-signed-url", "fetch", self._create_signed_url, 25, "Preparing audio..."),
            PipelineStep("transcribe-audio", "transcribe", self._transcribe, 40, "Transcribing audio..."),
            PipelineStep("translate", "translate", self._translate, 75, "Processing transcription..."),
            PipelineStep("apply-corrections", "save", self._apply_corrections),
            PipelineStep("save-results", "save", self._save_results, 90, "Saving results..."),
            PipelineStep("generate-embeddings", "save", self._schedule_embedding),
        ]

    async def _run_steps(self) -> None:
        for step in self.steps():
            self.stage = step.stage
            if step.progress is not None:
                await self.report_progress(step.progress, step.stage, step.message)

            await self.services.logging_service.debug(f"Step '{step.name}'", **self.log_tags())
            await step.run()

    def log_tags(self) -> dict[str, Any]:
        """Correlation tags attached to every log line about this job."""
        return {"call_id": self.call_id, "job_id": self.job_id, "stage": self.stage}

    def _reset_attempt_state(self) -> None:
        self.stage = "fetch"
        self.call = None
        self.hint = None
        self.audio_url = None
        self.result = None
        self.rerun_reason = None
        self.first_pass_language = None
        self.translation = None
        self.corrected_text = None
        self.embedding_task = None

    # -------------------------------------------------------------- #
    # Bookkeeping
    # -------------------------------------------------------------- #

    async def ensure_current(self) -> None:
        """
        Check that this attempt still owns the job row.

        Raises:
            AttemptSuperseded: If the row moved to a newer attempt or was cancelled
        """
        row = await self.services.transcript_sql_manager.get_job(self.record_id)
        if row is None or row.get("attempt") != self.attempt:
            raise AttemptSuperseded(f"Attempt {self.attempt} for call {self.call_id} superseded")
        if row.get("status") == TranscriptionJobStatus.CANCELLED.value:
            raise AttemptSuperseded(f"Job for call {self.call_id} was cancelled")

    async def report_progress(self, progress: int, stage: str, message: str | None) -> None:
        """Persist coarse progress and publish it."""
        await self.ensure_current()
        await self.services.transcript_sql_manager.update_job_progress(
            self.record_id, progress, stage, message
        )
        if self.events:
            await self.events.publish(
                TranscriptionEvent(
                    TranscriptionEventType.PROGRESS,
                    self.call_id,
                    self.record_id,
                    {"progress": progress, "stage": stage, "message": message},
                )
            )

    # -------------------------------------------------------------- #
    # Steps
    # -------------------------------------------------------------- #

    async def _fetch_call(self) -> None:
        self.call = await self.services.access_gateway.authorize(self.caller_id, self.call_id)
        self.hint = heuristics.choose_language_hint(
            self.call.get("direction"), self.language, self.prompt
        )
        self.services.transcription_provider_manager.validate_configuration()

    async def _create_signed_url(self) -> None:
        self.audio_url = await self.services.access_gateway.mint_audio_url(self.call)

    async def _transcribe(self) -> None:
        facade = self.services.transcription_provider_manager
        direction = self.call.get("direction")
        filename = extract_storage_filename(self.call.get("audio_path"), self.call.get("filename"))

        options = TranscriptionOptions(language=self.hint.language, prompt=self.hint.prompt)
        result = await facade.transcribe(self.audio_url, filename, options)
        self.first_pass_language = result.language

        reason = heuristics.should_rerun(direction, self.hint, result.text, result.language)
        if reason:
            await self.services.logging_service.info(
                f"Re-transcribing with stronger prompt ({reason})", **self.log_tags()
            )
            rerun_options = TranscriptionOptions(
                language=None, prompt=heuristics.rerun_prompt(self.prompt)
            )
            result = await facade.transcribe(self.audio_url, filename, rerun_options)
            self.rerun_reason = reason

        result.language = result.language or self.hint.language or "en"
        self.result = result

        await self.services.logging_service.info(
            f"Transcribed by {result.provider} "
            f"(language={result.language}, confidence={result.confidence:.3f})",
            **self.log_tags(),
        )

    async def _translate(self) -> None:
        self.translation = await self.services.translation_manager.maybe_translate(
            self.result.text, self.result.language
        )

    async def _apply_corrections(self) -> None:
        text = self.translation.text
        try:
            self.corrected_text = await self.services.correction_manager.apply(text, self.owner_id)
        except Exception as e:
            await self.services.logging_service.warning(
                f"Failed to apply corrections, using uncorrected text: {e}", **self.log_tags()
            )
            self.corrected_text = text

    async def _save_results(self) -> None:
        await self.ensure_current()

        completed_at = get_current_timestamp_est()
        started_at = self.started_at or completed_at
        duration = max(0.0, (completed_at - started_at).total_seconds())

        metadata: dict[str, Any] = {
            "job_id": self.record_id,
            "attempt": self.attempt,
            "provider": self.result.provider,
            "rerun_reason": self.rerun_reason,
            "first_pass_language": self.first_pass_language,
        }
        if self.translation.was_translated:
            metadata["provider_text"] = self.result.text

        sql = self.services.transcript_sql_manager
        try:
            await sql.upsert_transcript(
                self.call_id,
                self.owner_id,
                self.team_id,
                raw_transcript=self.translation.text,
                edited_transcript=self.corrected_text,
                transcript=self.corrected_text,
                transcription_status=TranscriptStatus.COMPLETED,
                confidence_score=self.result.confidence,
                language=self.translation.language,
                was_translated=self.translation.was_translated,
                original_language=self.translation.original_language,
                timestamps=format_segments_to_timestamps(self.result.segments),
                processing_started_at=started_at,
                processing_completed_at=completed_at,
                processing_duration_seconds=duration,
                error_message=None,
                transcript_metadata=metadata,
            )
            await sql.update_job(
                self.record_id,
                status=TranscriptionJobStatus.COMPLETED,
                completed_at=completed_at,
                error_message=None,
            )
            await sql.update_job_progress(self.record_id, 100, "completed", "Transcription completed")
        except Exception as e:
            raise PersistenceFailure(f"Failed to save transcript: {e}") from e

        await self.services.logging_service.info(
            f"Saved transcript ({len(self.corrected_text or '')} chars, {duration:.1f}s)",
            **self.log_tags(),
        )

    async def _schedule_embedding(self) -> None:
        text = self.corrected_text or self.translation.text
        self.embedding_task = self.services.embedding_manager.schedule_embedding(
            self.call_id, self.owner_id, text, EmbeddingContentType.TRANSCRIPT.value
        )


# -------------------------------------------------------------- #
# Transcription Job Manager Service
# -------------------------------------------------------------- #


class TranscriptionJobManagerService(Manager):
    """
    Service for admitting and orchestrating call transcriptions.

    Jobs run on a JobQueue with a fixed number of workers. Retryable failures
    are re-queued while the job row still has retry budget; everything else
    ends the job as failed.
    """

    def __init__(
        self,
        context: Context,
        workers: int = DEFAULT_WORKERS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS,
    ):
        """
        Initialize the transcription job manager.

        Args:
            context: Application context
            workers: Number of jobs processed concurrently
            timeout_seconds: Wall-clock ceiling of one attempt
            retry_backoff_seconds: Delay per retry before a re-queued attempt starts
        """
        super().__init__(context)
        self.workers = workers
        self.timeout_seconds = timeout_seconds
        self.retry_backoff_seconds = retry_backoff_seconds
        self.events = EventBus()
        self._job_queue: JobQueue[CallTranscriptionJob] | None = None
        self._active_jobs: dict[str, CallTranscriptionJob] = {}
        self._jobs_by_call: dict[str, CallTranscriptionJob] = {}

        # admissions and cancellations of one call run one at a time
        self._call_locks: dict[str, asyncio.Lock] = {}
        self._call_lock_waiters: dict[str, int] = {}

    async def on_start(self, services: ServicesManager) -> None:
        """
        Initialize the transcription job manager.

        Args:
            services: Services manager instance
        """
        await super().on_start(services)

        self._job_queue = JobQueue[CallTranscriptionJob](
            concurrency=self.workers,
            retry_policy=self._on_attempt_failed,
            on_job_started=self._on_job_started,
            on_job_complete=self._on_job_complete,
            on_job_failed=self._on_job_failed,
            on_job_retry=self._on_job_retry,
            on_job_cancelled=self._on_job_cancelled,
        )

        await self.services.logging_service.info(
            f"Transcription Job Manager initialized ({self.workers} workers, "
            f"{self.timeout_seconds:g}s timeout)"
        )

    async def on_close(self) -> None:
        """Cleanup when service is shutting down."""
        if self._job_queue and self._job_queue.is_running():
            await self.services.logging_service.info(
                "Shutting down transcription job queue, waiting for running jobs to complete..."
            )
            await self._job_queue.stop(wait_for_completion=True)

        await super().on_close()

    # -------------------------------------------------------------- #
    # Public API
    # -------------------------------------------------------------- #

    async def start_transcription(
        self,
        caller_id: str,
        call_id: str,
        language: str | None = None,
        prompt: str | None = None,
        force: bool = False,
    ) -> AdmissionResult:
        """
        Admit a transcription request for a call.

        Short calls and calls without a recording are completed immediately
        with a placeholder transcript. Otherwise a job is queued, unless a
        transcription is already completed or in flight and ``force`` is not set.

        Args:
            caller_id: User making the request
            call_id: Call to transcribe
            language: Explicit language (skips language heuristics)
            prompt: Free-text prompt forwarded to the provider
            force: Re-transcribe even if a transcript exists or a job is running

        Returns:
            AdmissionResult (200 for short-circuits, 202 when queued)

        Raises:
            NotFound / AccessDenied: From the access check
            ConflictError: When a non-forced request targets a completed or in-flight call
            ServiceUnavailable: When the service is shutting down
        """
        if self.context.is_shutting_down():
            raise ServiceUnavailable("Service is shutting down")

        call = await self.services.access_gateway.authorize(caller_id, call_id)
        async with self._acquire_call_lock(call_id):
            return await self._admit(call, caller_id, language, prompt, force)

    async def _admit(
        self,
        call: dict[str, Any],
        caller_id: str,
        language: str | None,
        prompt: str | None,
        force: bool,
    ) -> AdmissionResult:
        """Check for duplicate work and queue a job. Runs under the call's lock."""
        call_id = call["id"]
        sql = self.services.transcript_sql_manager
        duration = call.get("duration_seconds")

        # Short-circuits
        if duration and duration < MIN_CALL_DURATION_SECONDS:
            job_row = await self._complete_with_placeholder(call, caller_id, SHORT_CALL_TEXT)
            return AdmissionResult(
                200,
                {
                    "job_id": job_row["id"],
                    "call_id": call_id,
                    "status": TranscriptionJobStatus.COMPLETED.value,
                    "message": f"Call too short to transcribe (< {MIN_CALL_DURATION_SECONDS} seconds)",
                    "call_duration_seconds": duration,
                },
            )

        if not call.get("audio_path") and not call.get("filename"):
            job_row = await self._complete_with_placeholder(call, caller_id, NO_RECORDING_TEXT)
            return AdmissionResult(
                200,
                {
                    "job_id": job_row["id"],
                    "call_id": call_id,
                    "status": TranscriptionJobStatus.COMPLETED.value,
                    "message": NO_RECORDING_TEXT,
                },
            )

        # Duplicate work
        if not force:
            transcript = await sql.get_transcript(call_id)
            if transcript and transcript["transcription_status"] in BLOCKING_TRANSCRIPT_STATUSES:
                raise ConflictError(
                    f"Transcription already {transcript['transcription_status']}",
                    details={"transcript_id": transcript["id"]},
                )

            existing_job = await sql.get_job_by_call(call_id)
            if existing_job and existing_job["status"] in IN_FLIGHT_JOB_STATUSES:
                raise ConflictError(
                    "Transcription already in progress", details={"job_id": existing_job["id"]}
                )

        metadata = JobMetadata(
            language=language,
            prompt=prompt,
            force=force,
            stage="queued",
            message="Waiting for a worker",
            last_updated=get_current_timestamp_est().isoformat(),
        )
        job_row = await sql.admit_job(call_id, caller_id, call.get("team_id"), metadata, duration)

        await sql.upsert_transcript(
            call_id,
            call["user_id"],
            call.get("team_id"),
            transcription_status=TranscriptStatus.PROCESSING,
            transcript=PROCESSING_PLACEHOLDER_TEXT,
            processing_started_at=get_current_timestamp_est(),
            processing_completed_at=None,
            error_message=None,
        )

        job = CallTranscriptionJob(
            job_id=f"{job_row['id']}:{job_row['attempt']}",
            call_id=call_id,
            caller_id=caller_id,
            owner_id=call["user_id"],
            team_id=call.get("team_id"),
            record_id=job_row["id"],
            attempt=job_row["attempt"],
            language=language,
            prompt=prompt,
            services=self.services,
            events=self.events,
            timeout_seconds=self.timeout_seconds,
            retry_backoff_seconds=self.retry_backoff_seconds,
            metadata={"force": force},
        )

        self._active_jobs[job.job_id] = job
        self._jobs_by_call[call_id] = job
        await self._job_queue.add_job(job)

        await self.services.logging_service.info(
            f"Queued transcription (force={force}, language={language or 'auto'})",
            **job.log_tags(),
        )

        body: dict[str, Any] = {
            "job_id": job_row["id"],
            "call_id": call_id,
            "status": job_row["status"],
            "message": "Transcription started. Check status for progress.",
        }
        if duration:
            body["estimated_duration_seconds"] = duration * ESTIMATED_PROCESSING_FACTOR
        return AdmissionResult(202, body)

    async def get_status(self, caller_id: str, call_id: str) -> dict[str, Any]:
        """
        Get the transcription status of a call, intended for polling.

        Args:
            caller_id: User making the request
            call_id: Call to query

        Returns:
            Dictionary with status, stage, progress and transcript details

        Raises:
            NotFound: If the call or its transcription does not exist
            AccessDenied: From the access check
        """
        call = await self.services.access_gateway.authorize(caller_id, call_id)
        sql = self.services.transcript_sql_manager

        job_row = await sql.get_job_by_call(call_id)
        transcript = await sql.get_transcript(call_id)
        if job_row is None and transcript is None:
            raise NotFound("No transcription found for this call", details={"call_id": call_id})

        status = job_row["status"] if job_row else transcript["transcription_status"]
        metadata = JobMetadata.model_validate((job_row or {}).get("job_metadata") or {})
        transcript = transcript or {}

        def _iso(value):
            return value.isoformat() if value is not None else None

        return {
            "job_id": job_row["id"] if job_row else None,
            "call_id": call_id,
            "status": status,
            "stage": metadata.stage,
            "progress": self._estimate_progress(status, metadata, job_row, call),
            "message": metadata.message,
            "transcript": transcript.get("edited_transcript")
            if status == TranscriptionJobStatus.COMPLETED.value
            else None,
            "confidence_score": transcript.get("confidence_score"),
            "language": transcript.get("language"),
            "was_translated": bool(transcript.get("was_translated")),
            "error_message": (job_row or {}).get("error_message") or transcript.get("error_message"),
            "retry_count": (job_row or {}).get("retry_count", 0),
            "started_at": _iso((job_row or {}).get("started_at")),
            "completed_at": _iso((job_row or {}).get("completed_at")),
            "processing_duration_seconds": transcript.get("processing_duration_seconds"),
        }

    async def cancel(self, caller_id: str, call_id: str) -> dict[str, Any]:
        """
        Cancel the in-flight transcription of a call.

        The job row and transcript are marked cancelled right away; the running
        attempt stops at its current await point. Already-persisted partial
        state is left as-is.

        Args:
            caller_id: User making the request
            call_id: Call whose transcription should stop

        Returns:
            Dictionary with ``cancelled`` telling whether anything was in flight
        """
        call = await self.services.access_gateway.authorize(caller_id, call_id)
        async with self._acquire_call_lock(call_id):
            return await self._cancel(call)

    async def _cancel(self, call: dict[str, Any]) -> dict[str, Any]:
        call_id = call["id"]
        sql = self.services.transcript_sql_manager

        job_row = await sql.get_job_by_call(call_id)
        if job_row is None or job_row["status"] not in IN_FLIGHT_JOB_STATUSES:
            return {
                "call_id": call_id,
                "cancelled": False,
                "status": job_row["status"] if job_row else None,
            }

        now = get_current_timestamp_est()
        await sql.update_job(
            job_row["id"],
            status=TranscriptionJobStatus.CANCELLED,
            completed_at=now,
            error_message=CANCELLED_MESSAGE,
        )
        await sql.upsert_transcript(
            call_id,
            call["user_id"],
            call.get("team_id"),
            transcription_status=TranscriptStatus.CANCELLED,
            processing_completed_at=now,
            error_message=CANCELLED_MESSAGE,
        )

        job = self._jobs_by_call.get(call_id)
        signalled = job is not None and self._job_queue.cancel_job(job.job_id)
        if not signalled:
            await self.events.publish(
                TranscriptionEvent(TranscriptionEventType.CANCELLED, call_id, job_row["id"])
            )

        await self.services.logging_service.info(
            "Cancelled transcription", call_id=call_id, job_id=job_row["id"]
        )
        return {
            "call_id": call_id,
            "job_id": job_row["id"],
            "cancelled": True,
            "status": TranscriptionJobStatus.CANCELLED.value,
        }

    async def reapply_corrections(self, caller_id: str, call_id: str) -> dict[str, Any]:
        """
        Re-run the correction rules over a stored transcript without re-transcribing.

        Args:
            caller_id: User making the request (must own the call)
            call_id: Call whose transcript should be corrected

        Returns:
            Dictionary with the corrected text and whether it changed

        Raises:
            NotFound: If the call or its transcript does not exist
            AccessDenied: If the caller does not own the call
        """
        call = await self.services.call_sql_manager.get_call(call_id)
        if call is None:
            raise NotFound(f"Call not found: {call_id}", details={"call_id": call_id})
        if call["user_id"] != caller_id:
            raise AccessDenied("Only the call owner can re-apply corrections")

        sql = self.services.transcript_sql_manager
        transcript = await sql.get_transcript(call_id)
        if transcript is None:
            raise NotFound("Transcript not found", details={"call_id": call_id})

        source = transcript.get("raw_transcript") or transcript.get("edited_transcript") or ""
        corrected = await self.services.correction_manager.apply(source, caller_id)

        await sql.upsert_transcript(
            call_id,
            call["user_id"],
            call.get("team_id"),
            edited_transcript=corrected,
            transcript=corrected,
        )

        await self.services.logging_service.info("Re-applied corrections", call_id=call_id)
        return {
            "call_id": call_id,
            "edited_transcript": corrected,
            "changed": corrected != transcript.get("edited_transcript"),
        }

    async def get_queue_statistics(self) -> dict[str, Any]:
        """
        Get statistics about the job queue.

        Returns:
            Dictionary with queue statistics
        """
        if not self._job_queue:
            return {"error": "Job queue not initialized"}

        stats = self._job_queue.get_statistics()
        stats["active_jobs_count"] = len(self._active_jobs)
        return stats

    async def wait_until_idle(self) -> None:
        """Wait until every queued job has been processed."""
        if self._job_queue:
            await self._job_queue.wait_until_empty()

    # -------------------------------------------------------------- #
    # Private Methods
    # -------------------------------------------------------------- #

    @asynccontextmanager
    async def _acquire_call_lock(self, call_id: str) -> AsyncIterator[None]:
        """Context manager serialising admissions and cancellations of one call."""
        lock = self._call_locks.setdefault(call_id, asyncio.Lock())
        self._call_lock_waiters[call_id] = self._call_lock_waiters.get(call_id, 0) + 1
        await lock.acquire()
        try:
            yield
        finally:
            lock.release()
            self._call_lock_waiters[call_id] -= 1
            if self._call_lock_waiters[call_id] == 0:
                self._call_locks.pop(call_id, None)
                self._call_lock_waiters.pop(call_id, None)

    async def _complete_with_placeholder(
        self, call: dict[str, Any], caller_id: str, text: str
    ) -> dict[str, Any]:
        """Record a completed job and placeholder transcript without running the pipeline."""
        sql = self.services.transcript_sql_manager
        now = get_current_timestamp_est()

        metadata = JobMetadata(
            progress=100, stage="completed", message=text, last_updated=now.isoformat()
        )
        job_row = await sql.admit_job(
            call["id"], caller_id, call.get("team_id"), metadata, call.get("duration_seconds")
        )
        await sql.update_job(
            job_row["id"], status=TranscriptionJobStatus.COMPLETED, started_at=now, completed_at=now
        )
        await sql.upsert_transcript(
            call["id"],
            call["user_id"],
            call.get("team_id"),
            raw_transcript=text,
            edited_transcript=text,
            transcript=text,
            transcription_status=TranscriptStatus.COMPLETED,
            confidence_score=0.0,
            timestamps=[],
            processing_started_at=now,
            processing_completed_at=now,
            processing_duration_seconds=0.0,
            error_message=None,
        )

        await self.services.logging_service.info(text, call_id=call["id"], job_id=job_row["id"])
        await self.events.publish(
            TranscriptionEvent(
                TranscriptionEventType.COMPLETED,
                call["id"],
                job_row["id"],
                {"confidence": 0.0, "language": None, "was_translated": False, "placeholder": True},
            )
        )
        return job_row

    def _estimate_progress(
        self,
        status: str,
        metadata: JobMetadata,
        job_row: dict[str, Any] | None,
        call: dict[str, Any],
    ) -> int:
        if status == TranscriptionJobStatus.COMPLETED.value:
            return 100
        if status == TranscriptionJobStatus.PENDING.value:
            return 0
        if status != TranscriptionJobStatus.PROCESSING.value:
            return metadata.progress

        if metadata.progress:
            return metadata.progress

        started_at = (job_row or {}).get("started_at")
        duration = call.get("duration_seconds")
        if started_at is None or not duration:
            return 50

        elapsed = (to_naive(get_current_timestamp_est()) - started_at).total_seconds()
        expected = duration * ESTIMATED_PROCESSING_FACTOR
        return int(min(95, max(0, elapsed / expected * 100)))

    def _forget(self, job: CallTranscriptionJob) -> None:
        self._active_jobs.pop(job.job_id, None)
        if self._jobs_by_call.get(job.call_id) is job:
            del self._jobs_by_call[job.call_id]

    # -------------------------------------------------------------- #
    # Job Queue Callbacks
    # -------------------------------------------------------------- #

    async def _on_job_started(self, job: CallTranscriptionJob) -> None:
        """
        Callback when a job starts processing.

        Args:
            job: The job that started
        """
        sql = self.services.transcript_sql_manager
        async with self._acquire_call_lock(job.call_id):
            # a cancelled or re-admitted row stays as it is; the attempt stops at its first check
            if not await sql.mark_job_processing(job.record_id, job.attempt, job.started_at):
                return

            await sql.upsert_transcript(
                job.call_id,
                job.owner_id,
                job.team_id,
                transcription_status=TranscriptStatus.PROCESSING,
                processing_started_at=job.started_at,
            )

        await self.services.logging_service.info("Started transcription job", **job.log_tags())
        await self.events.publish(
            TranscriptionEvent(
                TranscriptionEventType.STARTED,
                job.call_id,
                job.record_id,
                {"attempt": job.attempt, "retry_number": job.retry_number},
            )
        )

    async def _on_attempt_failed(self, job: CallTranscriptionJob, error: Exception) -> bool:
        """
        Record a failed attempt and decide whether to re-queue it.

        Args:
            job: The job whose attempt failed
            error: The error raised by the attempt

        Returns:
            True if the job goes back to pending and should run again
        """
        if isinstance(error, AttemptSuperseded):
            await self.services.logging_service.info(
                f"Stopped transcription job: {error}", **job.log_tags()
            )
            return False

        sql = self.services.transcript_sql_manager
        row = await sql.get_job(job.record_id)
        if row is None or row.get("attempt") != job.attempt:
            return False

        if isinstance(error, PipelineError):
            retryable = error.retryable
            message = error.message
            stage = error.stage or job.stage
        else:
            retryable = True
            message = f"{type(error).__name__}: {error}"
            stage = job.stage

        retry_count = row.get("retry_count") or 0
        max_retries = row.get("max_retries") or 0
        will_retry = retryable and retry_count < max_retries
        now = get_current_timestamp_est()

        await sql.update_job(
            job.record_id,
            status=TranscriptionJobStatus.PENDING if will_retry else TranscriptionJobStatus.FAILED,
            retry_count=retry_count + 1,
            error_message=message,
            completed_at=None if will_retry else now,
        )
        await sql.update_job_progress(
            job.record_id, 0 if will_retry else 100, stage, f"Failed: {message}"
        )
        await sql.upsert_transcript(
            job.call_id,
            job.owner_id,
            job.team_id,
            transcription_status=TranscriptStatus.PENDING if will_retry else TranscriptStatus.FAILED,
            error_message=message,
            processing_completed_at=None if will_retry else now,
        )

        await self.services.logging_service.error(
            "Transcription attempt failed "
            f"(retry {retry_count + 1}/{max_retries}, "
            f"{'re-queueing' if will_retry else 'terminal'}): {message}",
            **{**job.log_tags(), "stage": stage},
        )

        data: dict[str, Any] = {
            "error": message,
            "stage": stage,
            "retryable": retryable,
            "will_retry": will_retry,
            "retry_count": retry_count + 1,
        }
        if isinstance(error, PipelineError):
            data["details"] = error.to_dict()
        await self.events.publish(
            TranscriptionEvent(TranscriptionEventType.FAILED, job.call_id, job.record_id, data)
        )

        if will_retry:
            job.retry_number += 1
        return will_retry

    async def _on_job_retry(self, job: CallTranscriptionJob) -> None:
        await self.services.logging_service.info(
            f"Re-queued transcription job (retry {job.retry_number})", **job.log_tags()
        )

    async def _on_job_complete(self, job: CallTranscriptionJob) -> None:
        """
        Callback when a job completes successfully.

        Args:
            job: The job that completed
        """
        self._forget(job)

        await self.services.logging_service.info("Completed transcription job", **job.log_tags())
        await self.events.publish(
            TranscriptionEvent(
                TranscriptionEventType.COMPLETED,
                job.call_id,
                job.record_id,
                {
                    "confidence": job.result.confidence if job.result else None,
                    "language": job.translation.language if job.translation else None,
                    "was_translated": job.translation.was_translated if job.translation else False,
                    "rerun_reason": job.rerun_reason,
                    "provider": job.result.provider if job.result else None,
                },
            )
        )

    async def _on_job_failed(self, job: CallTranscriptionJob) -> None:
        """
        Callback when a job fails for good.

        Args:
            job: The job that failed
        """
        self._forget(job)
        await self.services.logging_service.error(
            f"Failed transcription job: {job.error_message}", **job.log_tags()
        )

    async def _on_job_cancelled(self, job: CallTranscriptionJob) -> None:
        """
        Callback when a queued or running job is cancelled.

        Args:
            job: The job that was cancelled
        """
        self._forget(job)
        await self.services.logging_service.info("Cancelled transcription job", **job.log_tags())
        await self.events.publish(
            TranscriptionEvent(
                TranscriptionEventType.CANCELLED, job.call_id, job.record_id, {"stage": job.stage}
            )
        )
