from datetime import date
from typing import Optional

from pydantic import StrictBool

from healthtargets.schemas.metrics import CamelModel, TargetsRead
from healthtargets.services.plan_gate import PlanState


class PlanGenerateRequest(CamelModel):
    force_recompute: StrictBool = False


class PlanRead(CamelModel):
    id: int
    name: str
    week_start: date
    week_end: date
    metrics_version: int


class PlanGenerationRead(CamelModel):
    plan: PlanRead
    targets: TargetsRead
    recomputed: bool
    previous_targets: Optional[TargetsRead] = None


class PlanStateRead(CamelModel):
    state: PlanState
    version: Optional[int] = None
