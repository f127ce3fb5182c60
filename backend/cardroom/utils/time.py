from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def deadline_in(seconds: float) -> datetime:
    return utc_now() + timedelta(seconds=seconds)


def is_past(deadline: datetime) -> bool:
    return utc_now() > deadline
