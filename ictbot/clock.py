from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

NEW_YORK = "America/New_York"


def get_zone(timezone_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(timezone_name)
    except ZoneInfoNotFoundError as exc:
        raise RuntimeError(
            f"Timezone '{timezone_name}' is not available. "
            "Install tzdata in your environment: pip install tzdata"
        ) from exc


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_timezone(dt: datetime, timezone_name: str) -> datetime:
    return ensure_utc(dt).astimezone(get_zone(timezone_name))


def trading_day(dt: datetime, timezone_name: str = NEW_YORK) -> date:
    return to_timezone(dt, timezone_name).date()


def week_start(dt: datetime, timezone_name: str = NEW_YORK) -> date:
    local_day = trading_day(dt, timezone_name)
    return local_day - timedelta(days=local_day.weekday())


def parse_hhmm(raw: str) -> time:
    hour_raw, minute_raw = raw.strip().split(":", 1)
    return time(hour=int(hour_raw), minute=int(minute_raw))


def is_past_local_cutoff(dt: datetime, cutoff: str, timezone_name: str = NEW_YORK) -> bool:
    local = to_timezone(dt, timezone_name)
    return local.time() >= parse_hhmm(cutoff)


def timeframe_to_minutes(timeframe: str) -> int:
    normalized = timeframe.strip().upper()
    mapping = {
        "M1": 1,
        "M5": 5,
        "M15": 15,
        "H1": 60,
        "H4": 240,
        "D1": 1440,
    }
    if normalized not in mapping:
        raise ValueError(f"Unsupported timeframe {timeframe}")
    return mapping[normalized]


def expected_closed_candle_utc(
    now_utc: datetime,
    timeframe_minutes: int,
    *,
    close_grace_seconds: int,
) -> datetime:
    """Open time of the newest candle that has fully closed at ``now_utc``."""
    anchor = ensure_utc(now_utc) - timedelta(seconds=max(0, close_grace_seconds))
    interval_seconds = timeframe_minutes * 60
    current_open = int(anchor.timestamp()) // interval_seconds * interval_seconds
    return datetime.fromtimestamp(current_open - interval_seconds, tz=timezone.utc)


def should_poll_closed_candle(
    *,
    now_utc: datetime,
    timeframe: str,
    last_processed_closed_ts: datetime | None,
    last_attempt_target_ts: datetime | None,
    last_attempt_at: datetime | None,
    close_grace_seconds: int,
    retry_seconds: int,
) -> tuple[bool, datetime]:
    target = expected_closed_candle_utc(
        now_utc,
        timeframe_to_minutes(timeframe),
        close_grace_seconds=close_grace_seconds,
    )
    if last_processed_closed_ts is not None and last_processed_closed_ts >= target:
        return False, target
    if (
        last_attempt_target_ts is not None
        and last_attempt_target_ts == target
        and last_attempt_at is not None
        and (now_utc - last_attempt_at).total_seconds() < max(1, retry_seconds)
    ):
        return False, target
    return True, target
