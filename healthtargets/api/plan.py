from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from healthtargets.core.auth import get_current_user
from healthtargets.core.clock import Clock, get_clock
from healthtargets.core.database import get_db_session
from healthtargets.models.user import User
from healthtargets.schemas.metrics import TargetsRead
from healthtargets.schemas.plan import PlanGenerateRequest, PlanGenerationRead, PlanRead, PlanStateRead
from healthtargets.services.plan_gate import PlanGenerationGate

router = APIRouter(prefix="/plan", tags=["plan"])


@router.post("/generate", response_model=PlanGenerationRead)
async def generate_plan(
    data: Optional[PlanGenerateRequest] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    clock: Clock = Depends(get_clock),
):
    force_recompute = data.force_recompute if data is not None else False
    result = await PlanGenerationGate(db, clock).generate(current_user.id, force_recompute)
    return PlanGenerationRead(
        plan=PlanRead.model_validate(result.snapshot),
        targets=TargetsRead.model_validate(result.targets),
        recomputed=result.recomputed,
        previous_targets=(
            TargetsRead.model_validate(result.previous_targets) if result.previous_targets else None
        ),
    )


@router.get("/state", response_model=PlanStateRead)
async def get_plan_state(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    clock: Clock = Depends(get_clock),
):
    status = await PlanGenerationGate(db, clock).status(current_user.id)
    return PlanStateRead(
        state=status.state,
        version=status.metrics.version if status.metrics is not None else None,
    )
