from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, field_validator, model_validator

from app.jobs.models import DOCUMENT_TYPES, JobStatus

MAX_DOCUMENTS = 5

QuizTypeName = Literal["basic", "rapid", "crossword", "true-false"]
EducationLevelName = Literal["primary-1", "primary-2", "primary-3", "primary-4", "primary-5", "primary-6"]


class TimerSettingsModel(BaseModel):
  """Optional quiz timer configuration."""

  type: Literal["none", "default", "custom"] = "default"
  default_seconds: StrictInt | None = Field(default=None, ge=0, description="Per-question seconds when type is custom.")
  model_config = ConfigDict(extra="forbid")


class DocumentUpload(BaseModel):
  """Metadata for a reference document already written to the upload directory."""

  document_type: StrictStr = Field(default="other", description="syllabus, question-bank, subject-content or other.")
  filename: StrictStr = Field(min_length=1)
  original_name: StrictStr = Field(min_length=1)
  size: StrictInt = Field(ge=0)
  mimetype: StrictStr = Field(default="text/plain")
  storage_path: StrictStr = Field(min_length=1)
  model_config = ConfigDict(extra="forbid")

  @field_validator("document_type", mode="before")
  @classmethod
  def coerce_document_type(cls, value: Any) -> Any:
    # Unknown document types are stored as "other".
    if isinstance(value, str) and value in DOCUMENT_TYPES:
      return value
    return "other"


class GenerationJobRequest(BaseModel):
  """Request payload for batch quiz generation."""

  instructions: StrictStr = Field(min_length=1, description="Shared instructions for every quiz in the batch.", examples=["Focus on fractions and decimals."])
  item_count: StrictInt = Field(default=10, ge=1, le=20, description="Number of independent quizzes to generate.")
  questions_per_quiz: StrictInt = Field(default=10, ge=5, le=20)
  quiz_types: list[QuizTypeName] = Field(default_factory=lambda: ["basic"], min_length=1)
  education_level: EducationLevelName = "primary-1"
  model_id: StrictStr | None = Field(default=None, description="Catalog model id; defaults to the first available model.")
  subject: StrictStr = Field(min_length=1, examples=["Mathematics"])
  documents: list[DocumentUpload] = Field(default_factory=list, max_length=MAX_DOCUMENTS)
  timer_settings: TimerSettingsModel | None = None
  model_config = ConfigDict(extra="forbid", protected_namespaces=())

  @model_validator(mode="before")
  @classmethod
  def reject_topic(cls, values: Any) -> Any:
    # Topics are derived per quiz by the generator.
    if isinstance(values, dict) and "topic" in values:
      raise ValueError("topic is not accepted; describe the topic in instructions.")
    return values

  @field_validator("instructions", "subject")
  @classmethod
  def require_text(cls, value: str) -> str:
    stripped = value.strip()
    if not stripped:
      raise ValueError("must not be blank")
    return stripped

  @field_validator("quiz_types")
  @classmethod
  def dedupe_quiz_types(cls, value: list[str]) -> list[str]:
    return list(dict.fromkeys(value))


class JobCreateResponse(BaseModel):
  job_id: str
  status: JobStatus


class ItemProgressModel(BaseModel):
  temp_id: str
  item_number: int
  status: str
  retry_count: int = 0
  error: str | None = None
  analytics: dict[str, Any] | None = None


class JobProgressModel(BaseModel):
  current: int
  total: int
  items: list[ItemProgressModel] = Field(default_factory=list)


class GeneratedQuizModel(BaseModel):
  temp_id: str
  quiz_type: str
  name: str
  subject: str
  topic: str
  items: list[dict[str, Any]] = Field(default_factory=list)
  entries: list[dict[str, Any]] | None = None
  grid: list[list[Any]] | None = None
  placed_entries: list[dict[str, Any]] | None = None
  total_time_limit: int | None = None
  status: str
  retry_count: int = 0
  error: str | None = None
  saved_quiz_id: str | None = None
  created_at: str | None = None
  updated_at: str | None = None
  analytics: dict[str, Any] | None = None


class JobResultsModel(BaseModel):
  total: int
  successful: int
  failed: int
  quizzes: list[GeneratedQuizModel] = Field(default_factory=list)


class JobStatusResponse(BaseModel):
  """Job status payload; analytics keys appear only for authorized callers."""

  job_id: str
  status: JobStatus
  config: dict[str, Any]
  progress: JobProgressModel
  results: JobResultsModel | None = None
  error: str | None = None
  created_at: str
  started_at: str | None = None
  completed_at: str | None = None
  analytics: dict[str, Any] | None = None


class JobListResponse(BaseModel):
  jobs: list[JobStatusResponse]
  total: int
  limit: int
  skip: int


class PendingCountResponse(BaseModel):
  count: int


class ModelOption(BaseModel):
  id: str
  provider: str
  model: str
  label: str
  description: str


class ModelListResponse(BaseModel):
  models: list[ModelOption]
  default_model_id: str | None
  available: bool


class QuizUpdateRequest(BaseModel):
  """Editable fields of a draft quiz."""

  name: StrictStr | None = Field(default=None, min_length=1)
  subject: StrictStr | None = Field(default=None, min_length=1)
  topic: StrictStr | None = Field(default=None, min_length=1)
  items: list[dict[str, Any]] | None = None
  entries: list[dict[str, Any]] | None = None
  total_time_limit: StrictInt | None = Field(default=None, ge=0)
  status: Literal["draft", "rejected"] | None = None
  model_config = ConfigDict(extra="forbid")


class ApproveRequest(BaseModel):
  quiz_ids: list[StrictStr] = Field(min_length=1, description="Temp ids of the drafts to approve.")


class ApproveResponse(BaseModel):
  saved_quiz_ids: list[str]
  errors: list[Any] = Field(default_factory=list)


class DeleteResponse(BaseModel):
  deleted: int
