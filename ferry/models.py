from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import date, datetime, time, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


DEFAULT_DURATION = "PT1H"
KEY_SEPARATOR = "|"


def _ensure_tz(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def parse_iso_datetime(value: str | datetime | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return _ensure_tz(value)
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    return _ensure_tz(parsed)


def parse_occurrence(value: str | date | datetime | None) -> date | datetime | None:
    """Parse a date-only or date-time string.

    Date-only input stays a ``date`` (all-day); anything with a time component becomes
    an aware datetime in UTC.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return _ensure_tz(value).astimezone(timezone.utc)
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    if "T" not in text:
        return date.fromisoformat(text)
    parsed = parse_iso_datetime(text)
    return parsed.astimezone(timezone.utc) if parsed else None


def has_time(value: date | datetime | None) -> bool:
    return isinstance(value, datetime)


def calendar_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def serialize_occurrence(value: date | datetime | None) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return _ensure_tz(value).isoformat()
    return value.isoformat()


def resolve_timezone(name: str) -> ZoneInfo | timezone:
    if not name or name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


@dataclass
class NotionPropertyNames:
    title: str = "Name"
    description: str = "Description"
    due_date: str = "Due date"
    area: str = "Area"
    status: str = "Status"
    event_id: str = "Morgen Event ID"
    last_update: str = "Last Update"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "NotionPropertyNames":
        data = data or {}
        defaults = cls()
        values = {}
        for name in asdict(defaults):
            values[name] = str(data.get(name, getattr(defaults, name)) or "").strip() or getattr(defaults, name)
        return cls(**values)


@dataclass
class NotionConfig:
    api_key: str = ""
    database_id: str = ""
    api_base_url: str = "https://api.notion.com/v1"
    api_version: str = "2022-06-28"
    timeout_seconds: int = 30
    default_area: str = "School"
    default_status: str = "Not started"
    properties: NotionPropertyNames = field(default_factory=NotionPropertyNames)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "NotionConfig":
        data = data or {}
        return cls(
            api_key=str(data.get("api_key", "")).strip(),
            database_id=str(data.get("database_id", "")).strip(),
            api_base_url=str(data.get("api_base_url", "https://api.notion.com/v1")).strip()
            or "https://api.notion.com/v1",
            api_version=str(data.get("api_version", "2022-06-28")).strip() or "2022-06-28",
            timeout_seconds=max(1, int(data.get("timeout_seconds", 30))),
            default_area=str(data.get("default_area", "School")).strip() or "School",
            default_status=str(data.get("default_status", "Not started")).strip() or "Not started",
            properties=NotionPropertyNames.from_dict(data.get("properties")),
        )

    def is_configured(self) -> bool:
        return bool(self.api_key and self.database_id)


@dataclass
class MorgenConfig:
    api_key: str = ""
    account_id: str = ""
    calendar_id: str = ""
    api_base_url: str = "https://api.morgen.so/v3"
    timeout_seconds: int = 30
    default_duration: str = DEFAULT_DURATION

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "MorgenConfig":
        data = data or {}
        return cls(
            api_key=str(data.get("api_key", "")).strip(),
            account_id=str(data.get("account_id", "")).strip(),
            calendar_id=str(data.get("calendar_id", "")).strip(),
            api_base_url=str(data.get("api_base_url", "https://api.morgen.so/v3")).strip()
            or "https://api.morgen.so/v3",
            timeout_seconds=max(1, int(data.get("timeout_seconds", 30))),
            default_duration=str(data.get("default_duration", DEFAULT_DURATION)).strip() or DEFAULT_DURATION,
        )

    def is_configured(self) -> bool:
        return bool(self.api_key and self.account_id and self.calendar_id)


@dataclass
class SyncConfig:
    interval_seconds: int = 40
    lookback_days: int = 1
    lookahead_days: int = 3
    timezone: str = "UTC"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SyncConfig":
        data = data or {}
        return cls(
            interval_seconds=max(10, int(data.get("interval_seconds", 40))),
            lookback_days=max(0, int(data.get("lookback_days", 1))),
            lookahead_days=max(0, int(data.get("lookahead_days", 3))),
            timezone=str(data.get("timezone", "UTC")).strip() or "UTC",
        )


@dataclass
class LoggingConfig:
    level: str = "INFO"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "LoggingConfig":
        data = data or {}
        return cls(level=str(data.get("level", "INFO")).strip().upper() or "INFO")


@dataclass
class AppConfig:
    notion: NotionConfig = field(default_factory=NotionConfig)
    morgen: MorgenConfig = field(default_factory=MorgenConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AppConfig":
        data = data or {}
        return cls(
            notion=NotionConfig.from_dict(data.get("notion")),
            morgen=MorgenConfig.from_dict(data.get("morgen")),
            sync=SyncConfig.from_dict(data.get("sync")),
            logging=LoggingConfig.from_dict(data.get("logging")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class UniversalRecord:
    ref_a: str | None = None
    ref_b: str | None = None
    title: str = ""
    description: str = ""
    occurs_at: date | datetime | None = None
    duration: str = DEFAULT_DURATION
    last_modified: str = ""

    @property
    def all_day(self) -> bool:
        return not has_time(self.occurs_at)

    def with_updates(self, **kwargs: Any) -> "UniversalRecord":
        return replace(self, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["occurs_at"] = serialize_occurrence(self.occurs_at)
        payload["all_day"] = self.all_day
        return payload


@dataclass
class Pair:
    a: UniversalRecord | None = None
    b: UniversalRecord | None = None

    @property
    def matched(self) -> bool:
        return self.a is not None and self.b is not None

    @property
    def one_sided(self) -> bool:
        return (self.a is None) != (self.b is None)

    @property
    def state(self) -> str:
        if self.matched:
            return "matched"
        if self.a is not None:
            return "a_only"
        if self.b is not None:
            return "b_only"
        return "empty"

    def title(self) -> str:
        for record in (self.a, self.b):
            if record is not None and record.title:
                return record.title
        return ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state,
            "a": self.a.to_dict() if self.a is not None else None,
            "b": self.b.to_dict() if self.b is not None else None,
        }


PairMap = dict[str, Pair]


@dataclass
class SyncResult:
    status: str
    message: str
    duration_ms: int
    changes_applied: int
    conflicts: int
    errors: int
    trigger: str
    run_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "message": self.message,
            "duration_ms": self.duration_ms,
            "changes_applied": self.changes_applied,
            "conflicts": self.conflicts,
            "errors": self.errors,
            "trigger": self.trigger,
            "run_at": self.run_at.isoformat(),
        }


def default_app_config() -> AppConfig:
    return AppConfig()


def sync_window(now: datetime, sync_config: SyncConfig) -> tuple[datetime, datetime]:
    tz = resolve_timezone(sync_config.timezone)
    local_now = _ensure_tz(now).astimezone(tz)
    start_date = local_now.date() - timedelta(days=sync_config.lookback_days)
    start = datetime.combine(start_date, time.min, tzinfo=tz)
    end = start + timedelta(days=sync_config.lookahead_days)
    return start, end
