from fastapi import APIRouter, Depends
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from healthtargets.core.auth import get_current_user
from healthtargets.core.clock import Clock, as_utc, get_clock
from healthtargets.core.database import get_db_session
from healthtargets.core.errors import NotFoundError
from healthtargets.models.user import User
from healthtargets.schemas.metrics import AcknowledgeRequest, AcknowledgmentRead, TodayMetricsRead
from healthtargets.services.acknowledgment import AcknowledgmentGate
from healthtargets.services.metrics import MetricsComputer, targets_of
from healthtargets.services.science import explain_targets

router = APIRouter(prefix="/metrics", tags=["metrics"])


@router.get("/today", response_model=TodayMetricsRead)
async def get_today_metrics(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    clock: Clock = Depends(get_clock),
):
    metrics = MetricsComputer(db, clock)
    record = await metrics.current_for_today(current_user.id)
    if record is None:
        raise NotFoundError("No metrics computed for today")

    acknowledgment = await AcknowledgmentGate(db, clock, metrics).acknowledgment_for(record)
    targets = targets_of(record)
    return TodayMetricsRead(
        bmr=targets.bmr,
        tdee=targets.tdee,
        calorie_target=targets.calorie_target,
        protein_target=targets.protein_target,
        water_target=targets.water_target,
        weekly_rate=targets.weekly_rate,
        estimated_weeks=targets.estimated_weeks,
        projected_date=targets.projected_date,
        bmi=record.bmi,
        version=record.version,
        computed_at=as_utc(record.computed_at),
        acknowledged=acknowledgment is not None,
        acknowledged_at=as_utc(acknowledgment.acknowledged_at) if acknowledgment else None,
        explanations={to_camel(key): text for key, text in explain_targets(targets).items()},
    )


@router.post("/acknowledge", response_model=AcknowledgmentRead)
async def acknowledge_metrics(
    data: AcknowledgeRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    clock: Clock = Depends(get_clock),
):
    acknowledgment = await AcknowledgmentGate(db, clock).acknowledge(
        current_user.id, data.version, data.metrics_computed_at
    )
    return AcknowledgmentRead(
        version=acknowledgment.version,
        metrics_computed_at=as_utc(acknowledgment.metrics_computed_at),
        acknowledged_at=as_utc(acknowledgment.acknowledged_at),
    )
