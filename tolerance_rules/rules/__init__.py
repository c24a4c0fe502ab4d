from .feedback_360 import feedback_360_rule
from .initiative_checkin import initiative_checkin_rule
from .manager_span import manager_span_rule
from .one_on_one_frequency import one_on_one_frequency_rule

__all__ = [
    "feedback_360_rule",
    "initiative_checkin_rule",
    "manager_span_rule",
    "one_on_one_frequency_rule",
]
