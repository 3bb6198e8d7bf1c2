"""SQLModel table definitions for stored scores."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Float, String, UniqueConstraint
from sqlmodel import Field, SQLModel


class ScoreRecordTable(SQLModel, table=True):
    """One computed score per user and reporting period."""

    __tablename__ = "score_records"
    __table_args__ = (UniqueConstraint("user_id", "period_start", "period_end", name="uq_score_user_period"),)

    id: str = Field(primary_key=True, index=True)
    user_id: str = Field(sa_column=Column(String(255), nullable=False, index=True))
    period_start: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    period_end: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    quality: float = Field(sa_column=Column(Float, nullable=False))
    consistency: float = Field(sa_column=Column(Float, nullable=False))
    speed: float = Field(sa_column=Column(Float, nullable=False))
    volume: float = Field(sa_column=Column(Float, nullable=False))
    total: float = Field(sa_column=Column(Float, nullable=False))
    computed_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
