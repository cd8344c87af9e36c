from healthtargets.models.user import User, UserProfile  # noqa: F401
from healthtargets.models.metrics import MetricsRecord, AcknowledgmentRecord  # noqa: F401
from healthtargets.models.plan import PlanSnapshot  # noqa: F401
