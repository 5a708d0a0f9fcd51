# promptform/entities.py
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import JSON, DateTime, Float, Index, String, Text, text
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

Base = declarative_base()

# form ids accepted by the API must fit these columns
FORM_ID_MAX_LENGTH = 128


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FormRecord(Base):
    __tablename__ = "forms"

    form_id: Mapped[str] = mapped_column(String(FORM_ID_MAX_LENGTH), primary_key=True, default=lambda: str(uuid4()))
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False)

    title: Mapped[str] = mapped_column(Text, nullable=False, server_default=text("''"))
    description: Mapped[str | None] = mapped_column(Text)

    # full validated form document (fields, resultPages, quiz settings)
    form: Mapped[dict[str, object]] = mapped_column(JSON, nullable=False, default=dict)

    theme_name: Mapped[str | None] = mapped_column(String(32))
    theme_primary_color: Mapped[str | None] = mapped_column(String(16))
    theme_background_color: Mapped[str | None] = mapped_column(String(16))

    ai_summary: Mapped[str | None] = mapped_column(Text)
    ai_summary_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    last_opened_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_forms_owner_id", "owner_id"),
    )


class ResponseRecord(Base):
    __tablename__ = "form_responses"

    response_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))

    # no FK: responses outlive their form
    form_id: Mapped[str] = mapped_column(String(FORM_ID_MAX_LENGTH), nullable=False)

    payload: Mapped[dict[str, object]] = mapped_column(JSON, nullable=False, default=dict)
    score: Mapped[float | None] = mapped_column(Float)
    max_score: Mapped[float | None] = mapped_column(Float)

    user_agent: Mapped[str | None] = mapped_column(Text)
    ip: Mapped[str | None] = mapped_column(String(64))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_form_responses_form_id_created_at", "form_id", "created_at"),
    )
