from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict
from zoneinfo import ZoneInfo

from ..config import settings


def local_now() -> datetime:
    """
    Current office wall-clock time, naive.

    Appointment slots are entered as local wall times, so check-in/out stamps
    use the same clock to keep wait/duration arithmetic meaningful.
    """
    return datetime.now(ZoneInfo(settings.office_timezone)).replace(tzinfo=None, microsecond=0)


class Priority(str, Enum):
    URGENT = "URGENT"
    HIGH = "HIGH"
    NORMAL = "NORMAL"
    LOW = "LOW"


PRIORITY_RANK: Dict[Priority, int] = {
    Priority.URGENT: 4,
    Priority.HIGH: 3,
    Priority.NORMAL: 2,
    Priority.LOW: 1,
}


def priority_rank(priority: object) -> int:
    try:
        return PRIORITY_RANK[Priority(priority)]
    except ValueError:
        return PRIORITY_RANK[Priority.NORMAL]
