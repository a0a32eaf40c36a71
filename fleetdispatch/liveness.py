from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from dateutil import parser as dtparser

# Agents heartbeat every ~3 minutes; anything quieter than this is offline.
ONLINE_THRESHOLD = timedelta(seconds=190)


def _as_utc(ts: Union[datetime, str]) -> datetime:
    if isinstance(ts, str):
        ts = dtparser.isoparse(ts)
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def is_online(last_heartbeat: Optional[Union[datetime, str]], now: Optional[datetime] = None) -> bool:
    """True iff the last heartbeat is less than ONLINE_THRESHOLD before ``now``.

    Naive datetimes are read as UTC. A device that never sent a heartbeat is
    offline.
    """
    if last_heartbeat is None:
        return False
    now = _as_utc(now) if now is not None else datetime.now(timezone.utc)
    return now - _as_utc(last_heartbeat) < ONLINE_THRESHOLD
