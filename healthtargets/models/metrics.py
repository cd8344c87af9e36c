from datetime import date, datetime

from sqlalchemy import DateTime, Date, Float, ForeignKey, Index, Integer, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from healthtargets.core.database import Base


class MetricsRecord(Base):
    """One computation of a user's daily targets. Never updated after insert."""

    __tablename__ = "metrics_records"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    computed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    computed_on: Mapped[date] = mapped_column(Date, nullable=False)

    bmi: Mapped[float] = mapped_column(Float, nullable=False)
    bmr: Mapped[int] = mapped_column(Integer, nullable=False)
    tdee: Mapped[int] = mapped_column(Integer, nullable=False)
    calorie_target: Mapped[int] = mapped_column(Integer, nullable=False)
    protein_target: Mapped[float] = mapped_column(Float, nullable=False)
    water_target: Mapped[int] = mapped_column(Integer, nullable=False)
    weekly_rate: Mapped[float] = mapped_column(Float, nullable=False)
    estimated_weeks: Mapped[int | None] = mapped_column(Integer, nullable=True)
    projected_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "version", name="uq_metrics_records_user_version"),
        Index("ix_metrics_records_user_day", "user_id", "computed_on"),
    )


class AcknowledgmentRecord(Base):
    """A user's confirmation of one exact (version, computed_at) pair."""

    __tablename__ = "metrics_acknowledgments"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    # Whole-second precision; see AcknowledgmentGate
    metrics_computed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    acknowledged_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "user_id", "version", "metrics_computed_at", name="uq_metrics_acknowledgments_key"
        ),
    )
