from datetime import UTC, datetime


def get_current_time() -> str:
    """
    Return the current UTC time as an ISO-8601 string ending in ``Z``.

    Use this whenever the question depends on today's date or the current time.
    """
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")
