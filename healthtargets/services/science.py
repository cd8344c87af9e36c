"""Mifflin-St Jeor BMR / TDEE calculator and goal-based daily targets.

Everything here is pure: no I/O, no clock reads. Callers pass ``now`` where a
calendar projection is needed.
"""

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from healthtargets.core.errors import ValidationError
from healthtargets.models.user import ActivityLevel, Gender, PrimaryGoal

# Canonical ranges, shared by profile input and target computation.
WEIGHT_RANGE_KG = (30.0, 300.0)
HEIGHT_RANGE_CM = (100.0, 250.0)
AGE_RANGE_YEARS = (13, 120)
TARGET_WEIGHT_RANGE_KG = WEIGHT_RANGE_KG

GENDER_OFFSET: dict[Gender, float] = {
    Gender.MALE: 5,
    Gender.FEMALE: -161,
    Gender.OTHER: (5 + -161) / 2,
}

ACTIVITY_MULTIPLIER: dict[ActivityLevel, float] = {
    ActivityLevel.SEDENTARY: 1.2,
    ActivityLevel.LIGHTLY_ACTIVE: 1.375,
    ActivityLevel.MODERATELY_ACTIVE: 1.55,
    ActivityLevel.VERY_ACTIVE: 1.725,
    ActivityLevel.EXTREMELY_ACTIVE: 1.9,
}

GOAL_CALORIE_ADJUSTMENT: dict[PrimaryGoal, int] = {
    PrimaryGoal.LOSE_WEIGHT: -500,
    PrimaryGoal.GAIN_MUSCLE: 400,
    PrimaryGoal.MAINTAIN: 0,
    PrimaryGoal.IMPROVE_HEALTH: 0,
}

PROTEIN_PER_KG: dict[PrimaryGoal, float] = {
    PrimaryGoal.LOSE_WEIGHT: 2.2,
    PrimaryGoal.GAIN_MUSCLE: 2.4,
    PrimaryGoal.MAINTAIN: 1.8,
    PrimaryGoal.IMPROVE_HEALTH: 1.8,
}

WEEKLY_RATE_KG: dict[PrimaryGoal, float] = {
    PrimaryGoal.LOSE_WEIGHT: -0.5,
    PrimaryGoal.GAIN_MUSCLE: 0.4,
    PrimaryGoal.MAINTAIN: 0.0,
    PrimaryGoal.IMPROVE_HEALTH: 0.0,
}

WATER_ML_PER_KG = 35


@dataclass(frozen=True)
class ScienceInputs:
    weight: float
    height: float
    age: int
    gender: Gender
    activity_level: ActivityLevel
    primary_goal: PrimaryGoal
    target_weight: float | None = None


@dataclass(frozen=True)
class ComputedTargets:
    bmr: int
    tdee: int
    calorie_target: int
    protein_target: float
    water_target: int
    weekly_rate: float
    estimated_weeks: int | None = None
    projected_date: date | None = None
    bmi: float | None = None


@dataclass
class ValidationResult:
    errors: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _check_range(errors: list[str], name: str, value, bounds: tuple, unit: str) -> None:
    lo, hi = bounds
    if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
        errors.append(f"{name}: must be a number")
    elif value < lo:
        errors.append(f"{name}: must be at least {lo:g} {unit}")
    elif value > hi:
        errors.append(f"{name}: must be at most {hi:g} {unit}")


def _check_member(errors: list[str], name: str, value, enum_cls) -> None:
    try:
        enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        errors.append(f"{name}: must be one of {allowed}")


def validate(inputs: ScienceInputs) -> ValidationResult:
    """Collect every violated field rather than stopping at the first."""
    errors: list[str] = []
    _check_range(errors, "weight", inputs.weight, WEIGHT_RANGE_KG, "kg")
    _check_range(errors, "height", inputs.height, HEIGHT_RANGE_CM, "cm")
    if isinstance(inputs.age, bool) or not isinstance(inputs.age, int):
        errors.append("age: must be a whole number of years")
    else:
        _check_range(errors, "age", inputs.age, AGE_RANGE_YEARS, "years")
    _check_member(errors, "gender", inputs.gender, Gender)
    _check_member(errors, "activity_level", inputs.activity_level, ActivityLevel)
    _check_member(errors, "primary_goal", inputs.primary_goal, PrimaryGoal)
    if inputs.target_weight is not None:
        _check_range(errors, "target_weight", inputs.target_weight, TARGET_WEIGHT_RANGE_KG, "kg")
    return ValidationResult(errors=errors)


def calculate_age(date_of_birth: date, today: date | None = None) -> int:
    if today is None:
        today = date.today()
    age = today.year - date_of_birth.year
    if (today.month, today.day) < (date_of_birth.month, date_of_birth.day):
        age -= 1
    return age


def calculate_bmr(
    weight_kg: float,
    height_cm: float,
    age_years: int,
    gender: Gender,
) -> int:
    """
    Mifflin-St Jeor equation.

    Male:   BMR = 10 × weight(kg) + 6.25 × height(cm) − 5 × age + 5
    Female: BMR = 10 × weight(kg) + 6.25 × height(cm) − 5 × age − 161
    Other:  average of the two offsets (−78)
    """
    base = 10 * weight_kg + 6.25 * height_cm - 5 * age_years
    return _round_half_up(base + GENDER_OFFSET[Gender(gender)])


def calculate_tdee(bmr: float, activity_level: ActivityLevel) -> int:
    return _round_half_up(bmr * ACTIVITY_MULTIPLIER[ActivityLevel(activity_level)])


def calculate_calorie_target(tdee: int, goal: PrimaryGoal) -> int:
    return tdee + GOAL_CALORIE_ADJUSTMENT[PrimaryGoal(goal)]


def calculate_protein_target(weight_kg: float, goal: PrimaryGoal) -> float:
    return round(weight_kg * PROTEIN_PER_KG[PrimaryGoal(goal)], 1)


def calculate_water_target(weight_kg: float) -> int:
    """35 ml per kg, rounded to the nearest 100 ml."""
    return _round_half_up(weight_kg * WATER_ML_PER_KG / 100) * 100


def calculate_weekly_rate(goal: PrimaryGoal) -> float:
    return WEEKLY_RATE_KG[PrimaryGoal(goal)]


def calculate_timeline(
    current_weight: float,
    target_weight: float | None,
    weekly_rate: float,
    now: datetime,
) -> tuple[int | None, date | None]:
    """Weeks until target weight at ``weekly_rate``, and the calendar date it lands on.

    No projection without a target weight or for maintenance goals.
    """
    if target_weight is None or weekly_rate == 0:
        return None, None
    weeks = math.ceil(round(abs(target_weight - current_weight) / abs(weekly_rate), 6))
    projected = (now + timedelta(days=weeks * 7)).date()
    return weeks, projected


def calculate_bmi(weight_kg: float, height_cm: float) -> float:
    height_m = height_cm / 100
    return round(weight_kg / (height_m * height_m), 2)


def bmi_category(bmi: float) -> str:
    if bmi < 18.5:
        return "underweight"
    if bmi < 25:
        return "normal weight"
    if bmi < 30:
        return "overweight"
    return "obese"


def compute_targets(inputs: ScienceInputs, now: datetime) -> ComputedTargets:
    result = validate(inputs)
    if not result.valid:
        raise ValidationError("Invalid input parameters", errors=result.errors)

    bmr = calculate_bmr(inputs.weight, inputs.height, inputs.age, inputs.gender)
    tdee = calculate_tdee(bmr, inputs.activity_level)
    weekly_rate = calculate_weekly_rate(inputs.primary_goal)
    estimated_weeks, projected_date = calculate_timeline(
        inputs.weight, inputs.target_weight, weekly_rate, now
    )
    return ComputedTargets(
        bmr=bmr,
        tdee=tdee,
        calorie_target=calculate_calorie_target(tdee, inputs.primary_goal),
        protein_target=calculate_protein_target(inputs.weight, inputs.primary_goal),
        water_target=calculate_water_target(inputs.weight),
        weekly_rate=weekly_rate,
        estimated_weeks=estimated_weeks,
        projected_date=projected_date,
        bmi=calculate_bmi(inputs.weight, inputs.height),
    )


def explain_targets(targets: ComputedTargets) -> dict[str, str]:
    """
    Plain-language explanation of each number, shown next to today's metrics.
    """
    explanations = {
        "bmr": (
            f"Your BMR is {targets.bmr} calories per day: the energy your body burns at rest "
            "to keep breathing, circulating blood and repairing cells. It is calculated with "
            "the Mifflin-St Jeor equation."
        ),
        "tdee": (
            f"Your TDEE is {targets.tdee} calories per day: your BMR scaled by how active you are. "
            "Eating this much keeps your weight stable."
        ),
        "water_target": (
            f"Aim for {targets.water_target} ml of water a day ({WATER_ML_PER_KG} ml per kg of body weight)."
        ),
    }

    delta = targets.calorie_target - targets.tdee
    if delta < 0:
        explanations["calorie_target"] = (
            f"A {abs(delta)} calorie daily deficit puts you on track to lose about "
            f"{abs(targets.weekly_rate)} kg per week."
        )
    elif delta > 0:
        explanations["calorie_target"] = (
            f"A {delta} calorie daily surplus supports gaining about {targets.weekly_rate} kg per week, "
            "mostly lean mass when paired with strength training."
        )
    else:
        explanations["calorie_target"] = (
            f"You will eat at maintenance ({targets.calorie_target} calories) to keep your weight stable."
        )

    explanations["protein_target"] = (
        f"Eat {targets.protein_target} g of protein daily to preserve and build lean mass."
    )

    if targets.bmi is not None:
        explanations["bmi"] = (
            f"Your BMI is {targets.bmi}, which falls into the {bmi_category(targets.bmi)} category. "
            "It is a screening tool and does not measure body fat directly."
        )

    if targets.estimated_weeks:
        explanations["timeline"] = (
            f"At {abs(targets.weekly_rate)} kg per week you will reach your target weight in about "
            f"{targets.estimated_weeks} weeks."
        )
    return explanations
