from pydantic import BaseModel, Field, RootModel, field_validator

from callscribe.server.sql_models import (
    CallModel,
    CorrectionRuleModel,
    EmbeddingModel,
    TeamMemberModel,
    TranscriptionJobModel,
    TranscriptModel,
)

# -------------------------------------------------------------- #
# SQL DB Models
# -------------------------------------------------------------- #

SQL_DATABASE_MODELS = [
    CallModel,
    TeamMemberModel,
    TranscriptionJobModel,
    TranscriptModel,
    CorrectionRuleModel,
    EmbeddingModel,
]


# -------------------------------------------------------------- #
# Pydantic Validation Models for JSON Fields
# -------------------------------------------------------------- #


class JobMetadata(BaseModel):
    """
    Represents transcription_jobs.job_metadata:
    {language, prompt, progress, stage, message, last_updated, attempt, force}
    """

    language: str | None = None
    prompt: str | None = None
    progress: int = 0
    stage: str | None = None
    message: str | None = None
    last_updated: str | None = None
    attempt: int = 1
    force: bool = False

    @field_validator("progress")
    def validate_progress(cls, v: int) -> int:
        if v < 0 or v > 100:
            raise ValueError("progress must be between 0 and 100")
        return v


class TimestampSegment(BaseModel):
    """One entry of transcripts.timestamps."""

    id: str
    start: float
    end: float
    text: str
    confidence: float = Field(ge=0.0, le=1.0)
    index: int

    @field_validator("end")
    def validate_end(cls, v: float, info) -> float:
        start = info.data.get("start")
        if start is not None and v < start:
            raise ValueError("segment end must not precede its start")
        return v


class TimestampList(RootModel[list[TimestampSegment]]):
    """
    Represents the structure: [{id, start, end, text, confidence, index}, ...]
    ordered by index.
    """

    root: list[TimestampSegment]

    @field_validator("root")
    def validate_order(cls, v: list[TimestampSegment]) -> list[TimestampSegment]:
        for position, segment in enumerate(v):
            if segment.index != position:
                raise ValueError("segments must be ordered by index starting at 0")
        return v
