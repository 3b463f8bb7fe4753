"""Fire-time computation for repeatable jobs."""

from datetime import UTC, datetime, timedelta

from croniter import croniter


def validate_cron(expression: str) -> None:
    if not croniter.is_valid(expression):
        raise ValueError(f"Invalid cron expression: {expression}")


def next_fire_time(cron: str | None, every_ms: int | None, after: datetime) -> datetime:
    """Next fire time strictly after ``after`` (UTC)."""
    if cron is not None:
        validate_cron(cron)
        return croniter(cron, after.astimezone(UTC)).get_next(datetime)
    if every_ms is None or every_ms <= 0:
        raise ValueError("every_ms must be a positive interval")
    return after + timedelta(milliseconds=every_ms)
