from pydantic import BaseModel, Field
from datetime import date
from typing import Optional

from healthtargets.models.user import ActivityLevel, PrimaryGoal, Gender
from healthtargets.services.science import HEIGHT_RANGE_CM, TARGET_WEIGHT_RANGE_KG, WEIGHT_RANGE_KG


class UserProfileCreate(BaseModel):
    date_of_birth: date
    gender: Optional[Gender] = None
    weight: float = Field(ge=WEIGHT_RANGE_KG[0], le=WEIGHT_RANGE_KG[1])
    height: float = Field(ge=HEIGHT_RANGE_CM[0], le=HEIGHT_RANGE_CM[1])
    primary_goal: Optional[PrimaryGoal] = None
    activity_level: Optional[ActivityLevel] = None
    target_weight: Optional[float] = Field(
        default=None, ge=TARGET_WEIGHT_RANGE_KG[0], le=TARGET_WEIGHT_RANGE_KG[1]
    )


class UserProfileUpdate(BaseModel):
    date_of_birth: Optional[date] = None
    gender: Optional[Gender] = None
    weight: Optional[float] = Field(default=None, ge=WEIGHT_RANGE_KG[0], le=WEIGHT_RANGE_KG[1])
    height: Optional[float] = Field(default=None, ge=HEIGHT_RANGE_CM[0], le=HEIGHT_RANGE_CM[1])
    primary_goal: Optional[PrimaryGoal] = None
    activity_level: Optional[ActivityLevel] = None
    target_weight: Optional[float] = Field(
        default=None, ge=TARGET_WEIGHT_RANGE_KG[0], le=TARGET_WEIGHT_RANGE_KG[1]
    )


class UserProfileRead(BaseModel):
    id: int
    user_id: int
    date_of_birth: date
    gender: Optional[Gender] = None
    weight: float
    height: float
    primary_goal: Optional[PrimaryGoal] = None
    activity_level: Optional[ActivityLevel] = None
    target_weight: Optional[float] = None

    model_config = {"from_attributes": True}
