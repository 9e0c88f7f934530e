from accountability.models.user import User
from accountability.models.connection import Connection
from accountability.models.check_in_schedule import CheckInSchedule
from accountability.models.check_in_instance import CheckInInstance, CheckInStatus
from accountability.models.check_in_escalation import CheckInEscalation
from accountability.models.sobriety_date import SobrietyDate
from accountability.models.relapse import Relapse

__all__ = [
    "User",
    "Connection",
    "CheckInSchedule",
    "CheckInInstance",
    "CheckInStatus",
    "CheckInEscalation",
    "SobrietyDate",
    "Relapse",
]
