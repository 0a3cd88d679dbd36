from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value):
    """Coerce a datetime or ISO-8601 string to an aware UTC datetime.

    Naive datetimes are taken to already be in UTC, which is how the
    database hands them back.
    """
    if value is None:
        return None
    if isinstance(value, str):
        value_text = value.strip()
        if not value_text:
            return None
        if value_text.endswith("Z"):
            value_text = value_text[:-1] + "+00:00"
        value = datetime.fromisoformat(value_text)
    if not isinstance(value, datetime):
        raise TypeError("expected datetime, got {}".format(type(value).__name__))
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
