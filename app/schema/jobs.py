from __future__ import annotations

from sqlalchemy import Index, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base

_UTC_NOW_ISO = text("""to_char((now() AT TIME ZONE 'UTC'), 'YYYY-MM-DD"T"HH24:MI:SS"Z"')""")


class GenerationJobRow(Base):
  __tablename__ = "generation_jobs"
  __table_args__ = (Index("ix_generation_jobs_owner_created", "owner_id", "created_at"),)

  job_id: Mapped[str] = mapped_column(String, primary_key=True)
  owner_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  status: Mapped[str] = mapped_column(String, nullable=False, index=True)
  config_json: Mapped[dict] = mapped_column(JSONB, nullable=False)
  documents_json: Mapped[list] = mapped_column(JSONB, nullable=False, server_default=text("'[]'::jsonb"))
  progress_json: Mapped[dict] = mapped_column(JSONB, nullable=False)
  results_json: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  analytics_json: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  error: Mapped[str | None] = mapped_column(Text, nullable=True)
  extracted_text: Mapped[str | None] = mapped_column(Text, nullable=True)
  created_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_UTC_NOW_ISO)
  started_at: Mapped[str | None] = mapped_column(String, nullable=True)
  completed_at: Mapped[str | None] = mapped_column(String, nullable=True)
  updated_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_UTC_NOW_ISO)
