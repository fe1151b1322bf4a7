import enum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

from callscribe.utils import JOB_UUID_LENGTH

# -------------------------------------------------------------- #
# SQL Database Data Models
# -------------------------------------------------------------- #

Base = declarative_base()


class CallDirection(enum.Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class TranscriptionJobStatus(enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TranscriptStatus(enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class EmbeddingContentType(enum.Enum):
    TRANSCRIPT = "transcript"
    SUMMARY = "summary"


# -------------------------------------------------------------- #
# Models
# -------------------------------------------------------------- #


class CallModel(Base):
    """
    ID = Call ID
    User ID = Owner of the call
    Team ID = Team the call was uploaded into (optional)
    Filename = Original upload filename
    Audio Path = Object path of the audio in storage (None when no recording exists)
    Direction = inbound / outbound
    Duration Seconds = Length of the recording
    Created At = Timestamp when the call record was ingested
    """

    __tablename__ = "calls"

    id = Column(String(36), primary_key=True, index=True)
    user_id = Column(String(36), nullable=False, index=True)
    team_id = Column(String(36), nullable=True, index=True)
    filename = Column(String(512), nullable=True)
    audio_path = Column(String(1024), nullable=True)
    direction = Column(String(16), nullable=False, default=CallDirection.OUTBOUND.value)
    duration_seconds = Column(Float, nullable=True)
    created_at = Column(DateTime, nullable=False)


class TeamMemberModel(Base):
    """
    ID = Membership row ID
    Team ID = Team / group ID
    User ID = Member user ID
    """

    __tablename__ = "team_members"
    __table_args__ = (UniqueConstraint("team_id", "user_id", name="uq_team_members_team_user"),)

    id = Column(String(JOB_UUID_LENGTH), primary_key=True)
    team_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String(36), nullable=False, index=True)


class TranscriptionJobModel(Base):
    """
    ID = Job ID
    Call ID = Call being transcribed (one job row per call)
    User ID = Caller that requested the transcription
    Team ID = Team of the call (optional)
    Status = pending / processing / completed / failed / cancelled
    Priority = Scheduling priority (lower runs first)
    Attempt = Monotonic admission counter, bumped by every admission for the call
    Retry Count = Number of failed attempts so far
    Max Retries = Retry budget for retryable failures
    Created At / Started At / Completed At = Lifecycle timestamps
    Error Message = Last error message
    Job Metadata = {language, prompt, progress, stage, message, last_updated, attempt}
    Audio Duration Seconds = Duration copied from the call
    """

    __tablename__ = "transcription_jobs"

    id = Column(String(JOB_UUID_LENGTH), primary_key=True, index=True)
    call_id = Column(String(36), nullable=False, unique=True, index=True)
    user_id = Column(String(36), nullable=False)
    team_id = Column(String(36), nullable=True)
    status = Column(String(16), nullable=False, default=TranscriptionJobStatus.PENDING.value)
    priority = Column(Integer, nullable=False, default=0)
    attempt = Column(Integer, nullable=False, default=1)
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)
    created_at = Column(DateTime, nullable=False)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)
    job_metadata = Column(JSON, nullable=True)
    audio_duration_seconds = Column(Float, nullable=True)


class TranscriptModel(Base):
    """
    ID = Transcript ID
    Call ID = Call this transcript belongs to (upsert key)
    Raw Transcript = Verbatim provider output (after translation)
    Edited Transcript = Corrected text, user-editable
    Transcript = Legacy display text, mirrors edited transcript
    Transcription Status = pending / processing / completed / failed / cancelled
    Confidence Score = 0-1 derived from provider segments
    Language = Final language of the stored text
    Was Translated / Original Language = Translation bookkeeping
    Timestamps = [{id, start, end, text, confidence, index}, ...]
    Processing * = Timing of the attempt that produced this row
    """

    __tablename__ = "transcripts"

    id = Column(String(JOB_UUID_LENGTH), primary_key=True)
    call_id = Column(String(36), nullable=False, unique=True, index=True)
    user_id = Column(String(36), nullable=False)
    team_id = Column(String(36), nullable=True)
    raw_transcript = Column(Text, nullable=True)
    edited_transcript = Column(Text, nullable=True)
    transcript = Column(Text, nullable=True)
    transcription_status = Column(
        String(16), nullable=False, default=TranscriptStatus.PENDING.value
    )
    confidence_score = Column(Float, nullable=True)
    language = Column(String(16), nullable=True)
    was_translated = Column(Boolean, nullable=False, default=False)
    original_language = Column(String(16), nullable=True)
    timestamps = Column(JSON, nullable=True)
    processing_started_at = Column(DateTime, nullable=True)
    processing_completed_at = Column(DateTime, nullable=True)
    processing_duration_seconds = Column(Float, nullable=True)
    error_message = Column(Text, nullable=True)
    transcript_metadata = Column(JSON, nullable=True)
    updated_at = Column(DateTime, nullable=True)


class CorrectionRuleModel(Base):
    """
    ID = Rule ID
    User ID = Owner of the rule
    Find Text = Literal text or regex pattern
    Replace Text = Replacement (regex group references allowed when Is Regex)
    Is Regex / Case Sensitive = Matching mode
    Priority = Ascending order of application
    """

    __tablename__ = "transcription_corrections"

    id = Column(String(JOB_UUID_LENGTH), primary_key=True)
    user_id = Column(String(36), nullable=False, index=True)
    find_text = Column(Text, nullable=False)
    replace_text = Column(Text, nullable=False)
    is_regex = Column(Boolean, nullable=False, default=False)
    case_sensitive = Column(Boolean, nullable=False, default=False)
    priority = Column(Integer, nullable=False, default=100)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=True)


class EmbeddingModel(Base):
    """
    ID = Embedding row ID
    Call ID / Content Type = Upsert key
    Content Hash = SHA256 of the normalized text
    Embedding = Vector (list of floats)
    Embedding Model = Model that produced the vector
    Token Count = Tokens billed by the generator
    """

    __tablename__ = "embeddings"
    __table_args__ = (
        UniqueConstraint("call_id", "content_type", name="uq_embeddings_call_content_type"),
    )

    id = Column(String(JOB_UUID_LENGTH), primary_key=True)
    call_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String(36), nullable=False)
    content_type = Column(String(32), nullable=False)
    content_hash = Column(String(64), nullable=False, index=True)
    embedding = Column(JSON, nullable=False)
    embedding_model = Column(String(64), nullable=False)
    token_count = Column(Integer, nullable=True)
    generated_at = Column(DateTime, nullable=False)
