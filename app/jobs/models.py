"""Domain models for asynchronous quiz generation jobs."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Any, Literal

JobStatus = Literal["pending", "processing", "completed", "failed"]
ItemStatus = Literal["pending", "generating", "completed", "failed"]
ArtifactStatus = Literal["draft", "failed", "approved", "rejected"]
QuizType = Literal["basic", "rapid", "crossword", "true-false"]
DocumentType = Literal["syllabus", "question-bank", "subject-content", "other"]
EducationLevel = Literal["primary-1", "primary-2", "primary-3", "primary-4", "primary-5", "primary-6"]
TimerType = Literal["none", "default", "custom"]

QUIZ_TYPES: tuple[QuizType, ...] = ("basic", "rapid", "crossword", "true-false")
DOCUMENT_TYPES: tuple[DocumentType, ...] = ("syllabus", "question-bank", "subject-content", "other")
EDUCATION_LEVELS: dict[str, str] = {
  "primary-1": "7-year-old children (Primary 1 Singapore)",
  "primary-2": "8-year-old children (Primary 2 Singapore)",
  "primary-3": "9-year-old children (Primary 3 Singapore)",
  "primary-4": "10-year-old children (Primary 4 Singapore)",
  "primary-5": "11-year-old children (Primary 5 Singapore)",
  "primary-6": "12-year-old children (Primary 6 Singapore)",
}
TERMINAL_ITEM_STATUSES: frozenset[str] = frozenset({"completed", "failed"})

# Rank used to keep job status transitions monotonic.
JOB_STATUS_RANK: dict[str, int] = {"pending": 0, "processing": 1, "completed": 2, "failed": 2}

_DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def utc_now_iso() -> str:
  """Return the current UTC time in the persisted timestamp format."""
  return time.strftime(_DATE_FORMAT, time.gmtime())


def iso_days_ago(days: int, *, now: float | None = None) -> str:
  """Return the timestamp `days` days before now."""
  reference = time.time() if now is None else now
  return time.strftime(_DATE_FORMAT, time.gmtime(reference - days * 86400))


def is_status_regression(current: str, new: str) -> bool:
  """Return True when moving from `current` to `new` would go backwards."""
  if current == new:
    return False
  current_rank = JOB_STATUS_RANK.get(current, 0)
  new_rank = JOB_STATUS_RANK.get(new, 0)
  # Terminal states never change once reached.
  return new_rank < current_rank or current_rank == 2


@dataclass(frozen=True)
class TokenUsage:
  input_tokens: int = 0
  output_tokens: int = 0
  total_tokens: int = 0

  @classmethod
  def from_dict(cls, data: dict[str, Any] | None) -> TokenUsage:
    data = data or {}
    return cls(input_tokens=int(data.get("input_tokens") or 0), output_tokens=int(data.get("output_tokens") or 0), total_tokens=int(data.get("total_tokens") or 0))


@dataclass(frozen=True)
class AttemptAnalytics:
  """Metrics captured for a single provider call."""

  attempt_number: int
  success: bool
  provider: str
  model: str
  llm_latency_ms: int
  usage: TokenUsage
  started_at: str
  completed_at: str
  error: str | None = None

  @classmethod
  def from_dict(cls, data: dict[str, Any]) -> AttemptAnalytics:
    return cls(
      attempt_number=int(data.get("attempt_number") or 0),
      success=bool(data.get("success")),
      provider=str(data.get("provider") or ""),
      model=str(data.get("model") or ""),
      llm_latency_ms=int(data.get("llm_latency_ms") or 0),
      usage=TokenUsage.from_dict(data.get("usage")),
      started_at=str(data.get("started_at") or ""),
      completed_at=str(data.get("completed_at") or ""),
      error=data.get("error"),
    )


@dataclass(frozen=True)
class AnalyticsTotals:
  attempt_count: int = 0
  successful_attempts: int = 0
  retry_count: int = 0
  llm_latency_ms: int = 0
  input_tokens: int = 0
  output_tokens: int = 0
  total_tokens: int = 0

  @classmethod
  def from_attempts(cls, attempts: tuple[AttemptAnalytics, ...] | list[AttemptAnalytics]) -> AnalyticsTotals:
    """Sum attempt metrics; retries count every unsuccessful call."""
    successes = sum(1 for attempt in attempts if attempt.success)
    return cls(
      attempt_count=len(attempts),
      successful_attempts=successes,
      retry_count=max(0, len(attempts) - successes),
      llm_latency_ms=sum(attempt.llm_latency_ms for attempt in attempts),
      input_tokens=sum(attempt.usage.input_tokens for attempt in attempts),
      output_tokens=sum(attempt.usage.output_tokens for attempt in attempts),
      total_tokens=sum(attempt.usage.total_tokens for attempt in attempts),
    )

  @classmethod
  def from_dict(cls, data: dict[str, Any] | None) -> AnalyticsTotals:
    data = data or {}
    return cls(**{name: int(data.get(name) or 0) for name in cls.__dataclass_fields__})


@dataclass(frozen=True)
class ItemAnalytics:
  """Attempt history for one item."""

  attempts: tuple[AttemptAnalytics, ...] = ()
  totals: AnalyticsTotals = field(default_factory=AnalyticsTotals)

  def with_attempt(self, attempt: AttemptAnalytics) -> ItemAnalytics:
    attempts = self.attempts + (attempt,)
    return ItemAnalytics(attempts=attempts, totals=AnalyticsTotals.from_attempts(attempts))

  @classmethod
  def from_dict(cls, data: dict[str, Any] | None) -> ItemAnalytics:
    data = data or {}
    attempts = tuple(AttemptAnalytics.from_dict(item) for item in data.get("attempts") or [])
    return cls(attempts=attempts, totals=AnalyticsTotals.from_attempts(attempts))


@dataclass(frozen=True)
class ProviderModelAnalytics:
  provider: str
  model: str
  attempt_count: int = 0
  successful_attempts: int = 0
  llm_latency_ms: int = 0
  input_tokens: int = 0
  output_tokens: int = 0
  total_tokens: int = 0


@dataclass(frozen=True)
class PlanningAnalytics:
  """Metrics for the optional batch planning pass."""

  success: bool
  fallback_used: bool
  attempt_count: int
  successful_attempts: int
  retry_count: int
  provider: str
  model: str
  llm_latency_ms: int
  usage: TokenUsage
  started_at: str
  completed_at: str
  plan_item_count: int = 0
  error: str | None = None

  @classmethod
  def from_dict(cls, data: dict[str, Any]) -> PlanningAnalytics:
    return cls(
      success=bool(data.get("success")),
      fallback_used=bool(data.get("fallback_used")),
      attempt_count=int(data.get("attempt_count") or 0),
      successful_attempts=int(data.get("successful_attempts") or 0),
      retry_count=int(data.get("retry_count") or 0),
      provider=str(data.get("provider") or ""),
      model=str(data.get("model") or ""),
      llm_latency_ms=int(data.get("llm_latency_ms") or 0),
      usage=TokenUsage.from_dict(data.get("usage")),
      started_at=str(data.get("started_at") or ""),
      completed_at=str(data.get("completed_at") or ""),
      plan_item_count=int(data.get("plan_item_count") or 0),
      error=data.get("error"),
    )


@dataclass(frozen=True)
class JobAnalytics:
  totals: AnalyticsTotals
  by_provider_model: tuple[ProviderModelAnalytics, ...]
  generated_at: str
  planning: PlanningAnalytics | None = None

  def to_dict(self) -> dict[str, Any]:
    payload = asdict(self)
    if self.planning is None:
      payload.pop("planning")
    return payload

  @classmethod
  def from_dict(cls, data: dict[str, Any] | None) -> JobAnalytics | None:
    if not data:
      return None
    planning = data.get("planning")
    groups = tuple(ProviderModelAnalytics(**group) for group in data.get("by_provider_model") or [])
    return cls(totals=AnalyticsTotals.from_dict(data.get("totals")), by_provider_model=groups, generated_at=str(data.get("generated_at") or ""), planning=PlanningAnalytics.from_dict(planning) if planning else None)


@dataclass(frozen=True)
class TimerSettings:
  type: TimerType = "default"
  default_seconds: int | None = None


@dataclass(frozen=True)
class GenerationConfig:
  """Immutable generation settings captured at submission."""

  instructions: str
  item_count: int
  questions_per_quiz: int
  quiz_types: tuple[QuizType, ...]
  education_level: EducationLevel
  model_id: str
  subject: str
  timer_settings: TimerSettings | None = None

  def to_dict(self) -> dict[str, Any]:
    payload = asdict(self)
    payload["quiz_types"] = list(self.quiz_types)
    return payload

  @classmethod
  def from_dict(cls, data: dict[str, Any]) -> GenerationConfig:
    timer = data.get("timer_settings")
    return cls(
      instructions=str(data["instructions"]),
      item_count=int(data["item_count"]),
      questions_per_quiz=int(data.get("questions_per_quiz") or 10),
      quiz_types=tuple(data.get("quiz_types") or ("basic",)),
      education_level=data.get("education_level") or "primary-1",
      model_id=str(data.get("model_id") or ""),
      subject=str(data.get("subject") or ""),
      timer_settings=TimerSettings(**timer) if timer else None,
    )


@dataclass(frozen=True)
class DocumentReference:
  """Uploaded reference document, stored outside the job record."""

  document_type: DocumentType
  filename: str
  original_name: str
  size: int
  mimetype: str
  storage_path: str
  uploaded_at: str


@dataclass(frozen=True)
class ItemProgress:
  """Per-item progress snapshot keyed by temp id."""

  temp_id: str
  item_number: int
  status: ItemStatus = "pending"
  retry_count: int = 0
  error: str | None = None
  analytics: ItemAnalytics = field(default_factory=ItemAnalytics)

  @classmethod
  def from_dict(cls, data: dict[str, Any]) -> ItemProgress:
    return cls(
      temp_id=str(data["temp_id"]),
      item_number=int(data["item_number"]),
      status=data.get("status") or "pending",
      retry_count=int(data.get("retry_count") or 0),
      error=data.get("error"),
      analytics=ItemAnalytics.from_dict(data.get("analytics")),
    )


@dataclass
class JobProgress:
  current: int
  total: int
  items: list[ItemProgress] = field(default_factory=list)

  def to_dict(self) -> dict[str, Any]:
    return asdict(self)

  @classmethod
  def from_dict(cls, data: dict[str, Any] | None, *, total: int) -> JobProgress:
    data = data or {}
    return cls(current=int(data.get("current") or 0), total=int(data.get("total") or total), items=[ItemProgress.from_dict(item) for item in data.get("items") or []])


@dataclass
class GeneratedArtifact:
  """A generated quiz draft and its operator disposition."""

  temp_id: str
  quiz_type: QuizType
  name: str
  subject: str
  topic: str
  items: list[dict[str, Any]] = field(default_factory=list)
  total_time_limit: int | None = None
  status: ArtifactStatus = "draft"
  retry_count: int = 0
  error: str | None = None
  entries: list[dict[str, Any]] | None = None
  grid: list[list[Any]] | None = None
  placed_entries: list[dict[str, Any]] | None = None
  analytics: ItemAnalytics | None = None
  saved_quiz_id: str | None = None
  created_at: str | None = None
  updated_at: str | None = None

  def to_dict(self) -> dict[str, Any]:
    return asdict(self)

  @classmethod
  def from_dict(cls, data: dict[str, Any]) -> GeneratedArtifact:
    payload = dict(data)
    payload["analytics"] = ItemAnalytics.from_dict(payload.get("analytics")) if payload.get("analytics") else None
    known = {key: value for key, value in payload.items() if key in cls.__dataclass_fields__}
    return cls(**known)


@dataclass
class JobResults:
  total: int
  successful: int
  failed: int
  quizzes: list[GeneratedArtifact] = field(default_factory=list)

  def to_dict(self) -> dict[str, Any]:
    return {"total": self.total, "successful": self.successful, "failed": self.failed, "quizzes": [quiz.to_dict() for quiz in self.quizzes]}

  @classmethod
  def from_dict(cls, data: dict[str, Any] | None) -> JobResults | None:
    if not data:
      return None
    return cls(total=int(data.get("total") or 0), successful=int(data.get("successful") or 0), failed=int(data.get("failed") or 0), quizzes=[GeneratedArtifact.from_dict(item) for item in data.get("quizzes") or []])


@dataclass
class GenerationJob:
  """Represents a batch quiz generation job."""

  job_id: str
  owner_id: str
  status: JobStatus
  config: GenerationConfig
  progress: JobProgress
  created_at: str
  updated_at: str
  documents: list[DocumentReference] = field(default_factory=list)
  results: JobResults | None = None
  analytics: JobAnalytics | None = None
  error: str | None = None
  extracted_text: str | None = None
  started_at: str | None = None
  completed_at: str | None = None
