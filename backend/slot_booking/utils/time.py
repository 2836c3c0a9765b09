from datetime import datetime, timezone


def utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def utc_naive_to_aware(dt: datetime) -> datetime:
    return dt.replace(tzinfo=timezone.utc)
