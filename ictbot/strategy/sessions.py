from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta

from ictbot.clock import ensure_utc, get_zone, parse_hhmm
from ictbot.config import SessionConfig
from ictbot.data.candles import Candle
from ictbot.strategy.liquidity import SessionRange


@dataclass(slots=True, frozen=True)
class Session:
    name: str
    start: time
    end: time
    tradeable: bool = False
    no_trade: bool = False

    @property
    def wraps_midnight(self) -> bool:
        return self.end <= self.start

    def contains(self, local_time: time) -> bool:
        if self.wraps_midnight:
            return local_time >= self.start or local_time < self.end
        return self.start <= local_time < self.end


def parse_sessions(config: SessionConfig) -> list[Session]:
    sessions: list[Session] = []
    for item in config.windows:
        start_raw, end_raw = item.window.split("-", 1)
        sessions.append(
            Session(
                name=item.name,
                start=parse_hhmm(start_raw),
                end=parse_hhmm(end_raw),
                tradeable=item.tradeable,
                no_trade=item.no_trade,
            )
        )
    return sessions


class SessionCalendar:
    """Fixed local-time windows; DST is handled by the zone database."""

    def __init__(self, config: SessionConfig | None = None):
        self.config = config or SessionConfig()
        self.zone = get_zone(self.config.timezone)
        self.sessions = parse_sessions(self.config)

    def local(self, now_utc: datetime) -> datetime:
        return ensure_utc(now_utc).astimezone(self.zone)

    def get(self, name: str) -> Session | None:
        return next((s for s in self.sessions if s.name == name), None)

    def current(self, now_utc: datetime) -> Session | None:
        local_time = self.local(now_utc).time()
        for session in self.sessions:
            if session.contains(local_time):
                return session
        return None

    def is_killzone_active(self, now_utc: datetime) -> bool:
        session = self.current(now_utc)
        return session is not None and session.tradeable

    def is_no_trade_zone(self, now_utc: datetime) -> bool:
        session = self.current(now_utc)
        return session is not None and session.no_trade

    def _occurrence(self, session: Session, ref_utc: datetime) -> tuple[datetime, datetime]:
        """Most recent start of ``session`` at or before ``ref_utc`` and its end."""
        local_ref = self.local(ref_utc)
        for days_back in range(0, 3):
            day = local_ref.date() - timedelta(days=days_back)
            start = datetime.combine(day, session.start, tzinfo=self.zone)
            if start <= local_ref:
                end_day = day + timedelta(days=1) if session.wraps_midnight else day
                end = datetime.combine(end_day, session.end, tzinfo=self.zone)
                return ensure_utc(start), ensure_utc(end)
        raise ValueError(f"No occurrence for session {session.name}")

    def session_range(self, name: str, candles: list[Candle], ref_utc: datetime) -> SessionRange | None:
        session = self.get(name)
        if session is None:
            return None
        start, end = self._occurrence(session, ref_utc)
        inside = [c for c in candles if start <= c.timestamp < end]
        if not inside:
            return None
        return SessionRange(
            name=name,
            high=max(c.high for c in inside),
            low=min(c.low for c in inside),
            start=start,
        )

    def session_ranges(self, candles: list[Candle], ref_utc: datetime) -> list[SessionRange]:
        ranges: list[SessionRange] = []
        for name in self.config.range_sessions:
            item = self.session_range(name, candles, ref_utc)
            if item is not None:
                ranges.append(item)
        return ranges

    def next_killzone_start(self, now_utc: datetime) -> tuple[Session, datetime] | None:
        local_now = self.local(now_utc)
        best: tuple[Session, datetime] | None = None
        for session in self.sessions:
            if not session.tradeable:
                continue
            for days_ahead in range(0, 2):
                day = local_now.date() + timedelta(days=days_ahead)
                start = datetime.combine(day, session.start, tzinfo=self.zone)
                if start > local_now:
                    if best is None or start < best[1]:
                        best = (session, start)
                    break
        if best is None:
            return None
        return best[0], ensure_utc(best[1])

    def status(self, now_utc: datetime) -> str:
        local_now = self.local(now_utc)
        session = self.current(now_utc)
        name = session.name if session is not None else "NONE"
        if session is not None and session.tradeable:
            tag = "KILLZONE"
        elif session is not None and session.no_trade:
            tag = "NO_TRADE"
        else:
            tag = "IDLE"
        line = f"{local_now:%H:%M} {local_now.tzname()} | session={name} ({tag})"
        upcoming = self.next_killzone_start(now_utc)
        if upcoming is not None and tag != "KILLZONE":
            minutes = int((upcoming[1] - ensure_utc(now_utc)).total_seconds() // 60)
            line += f" | next={upcoming[0].name} in {minutes // 60}h{minutes % 60:02d}m"
        return line
