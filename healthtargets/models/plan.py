from datetime import date, datetime

from sqlalchemy import Boolean, DateTime, Date, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from healthtargets.core.database import Base


class PlanSnapshot(Base):
    __tablename__ = "plan_snapshots"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    week_start: Mapped[date] = mapped_column(Date, nullable=False)
    week_end: Mapped[date] = mapped_column(Date, nullable=False)
    metrics_version: Mapped[int] = mapped_column(Integer, nullable=False)

    bmr: Mapped[int] = mapped_column(Integer, nullable=False)
    tdee: Mapped[int] = mapped_column(Integer, nullable=False)
    calorie_target: Mapped[int] = mapped_column(Integer, nullable=False)
    protein_target: Mapped[float] = mapped_column(Float, nullable=False)
    water_target: Mapped[int] = mapped_column(Integer, nullable=False)
    weekly_rate: Mapped[float] = mapped_column(Float, nullable=False)
    estimated_weeks: Mapped[int | None] = mapped_column(Integer, nullable=True)
    projected_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    recomputed: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    previous_calorie_target: Mapped[int | None] = mapped_column(Integer, nullable=True)
    previous_protein_target: Mapped[float | None] = mapped_column(Float, nullable=True)
    previous_water_target: Mapped[int | None] = mapped_column(Integer, nullable=True)
    previous_bmr: Mapped[int | None] = mapped_column(Integer, nullable=True)
    previous_tdee: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "week_start", name="uq_plan_snapshots_user_week"),
    )
