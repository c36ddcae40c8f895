from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any

import requests

from ferry.backlink import embed_page_id, extract_page_id, strip_page_id_tag
from ferry.models import MorgenConfig, UniversalRecord, resolve_timezone

logger = logging.getLogger(__name__)

MORGEN_DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%S"
SERIES_UPDATE_MODE = "single"


def format_morgen_start(value: date | datetime) -> str:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).strftime(MORGEN_DATETIME_FORMAT)
    return f"{value.isoformat()}T00:00:00"


def format_window_bound(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(MORGEN_DATETIME_FORMAT)


def _parse_start(raw_start: str, zone_name: str, show_without_time: bool) -> date | datetime:
    text = raw_start.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    if show_without_time or "T" not in text:
        return date.fromisoformat(text.split("T", 1)[0])
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=resolve_timezone(zone_name))
    return parsed.astimezone(timezone.utc)


def event_to_record(event: dict[str, Any], default_duration: str) -> UniversalRecord | None:
    event_id = str(event.get("id", "") or "").strip()
    raw_start = str(event.get("start", "") or "")
    if not event_id or not raw_start:
        logger.info("Skipping Morgen event without id/start: %r", event_id or event.get("title"))
        return None
    try:
        occurs_at = _parse_start(
            raw_start,
            str(event.get("timeZone", "") or ""),
            bool(event.get("showWithoutTime", False)),
        )
    except ValueError:
        logger.warning("Skipping Morgen event %s with unparseable start %r", event_id, raw_start)
        return None

    description = str(event.get("description", "") or "")
    page_id = extract_page_id(description)
    return UniversalRecord(
        ref_a=page_id or None,
        ref_b=event_id,
        title=str(event.get("title", "") or ""),
        description=strip_page_id_tag(description),
        occurs_at=occurs_at,
        duration=str(event.get("duration", "") or "") or default_duration,
        last_modified=str(event.get("updated", "") or ""),
    )


class MorgenService:
    """Calendar store backed by one Morgen calendar."""

    def __init__(self, config: MorgenConfig, session: requests.Session | None = None) -> None:
        self.config = config
        self._session = session or requests.Session()

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"ApiKey {self.config.api_key}",
            "Content-Type": "application/json",
            "accept": "application/json",
        }

    def _url(self, path: str) -> str:
        return f"{self.config.api_base_url.rstrip('/')}/{path.lstrip('/')}"

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        payload: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        if not self.config.is_configured():
            raise RuntimeError("Morgen config is incomplete.")
        response = self._session.request(
            method,
            self._url(path),
            headers=self._headers(),
            params=params,
            json=payload,
            timeout=self.config.timeout_seconds,
        )
        response.raise_for_status()
        if not response.content:
            return {}
        body = response.json()
        return body if isinstance(body, dict) else {}

    def list_events(self, start: datetime, end: datetime) -> list[dict[str, Any]]:
        body = self._request(
            "GET",
            "events/list",
            params={
                "accountId": self.config.account_id,
                "calendarIds": self.config.calendar_id,
                "start": format_window_bound(start),
                "end": format_window_bound(end),
            },
        )
        data = body.get("data")
        if not isinstance(data, dict) or "events" not in data:
            raise RuntimeError("Morgen response is missing data.events.")
        events = data["events"]
        if not isinstance(events, list):
            raise RuntimeError("Morgen data.events is not a list.")
        logger.info("%d Morgen events fetched", len(events))
        return [item for item in events if isinstance(item, dict)]

    def fetch(self, start: datetime, end: datetime) -> list[UniversalRecord]:
        records: list[UniversalRecord] = []
        for event in self.list_events(start, end):
            record = event_to_record(event, self.config.default_duration)
            if record is not None:
                records.append(record)
        return records

    def _event_body(self, record: UniversalRecord) -> dict[str, Any]:
        if record.occurs_at is None:
            raise RuntimeError(f"Cannot write Morgen event without a start: {record.title!r}")
        return {
            "accountId": self.config.account_id,
            "calendarId": self.config.calendar_id,
            "title": record.title,
            "description": embed_page_id(record.description, record.ref_a or ""),
            "start": format_morgen_start(record.occurs_at),
            "duration": record.duration or self.config.default_duration,
            "timeZone": "UTC",
            "showWithoutTime": record.all_day,
        }

    def create(self, record: UniversalRecord) -> str:
        body = self._request("POST", "events/create", payload=self._event_body(record))
        data = body.get("data") if isinstance(body.get("data"), dict) else {}
        event = data.get("event") if isinstance(data.get("event"), dict) else {}
        event_id = str(event.get("id", "") or "").strip()
        if not event_id:
            raise RuntimeError("Morgen create response is missing the event id.")
        logger.info("Morgen event created: %s", record.title)
        return event_id

    def update(self, ref: str, record: UniversalRecord) -> None:
        payload = self._event_body(record)
        payload["id"] = ref
        self._request(
            "POST",
            "events/update",
            params={"seriesUpdateMode": SERIES_UPDATE_MODE},
            payload=payload,
        )
        logger.info("Morgen event updated: %s", record.title)

    def delete(self, ref: str) -> None:
        self._request(
            "POST",
            "events/delete",
            params={"seriesUpdateMode": SERIES_UPDATE_MODE},
            payload={
                "accountId": self.config.account_id,
                "calendarId": self.config.calendar_id,
                "id": ref,
            },
        )
        logger.info("Morgen event deleted: %s", ref)

    def link(self, ref: str, counterpart_ref: str, record: UniversalRecord) -> None:
        self._request(
            "POST",
            "events/update",
            params={"seriesUpdateMode": SERIES_UPDATE_MODE},
            payload={
                "accountId": self.config.account_id,
                "calendarId": self.config.calendar_id,
                "id": ref,
                "description": embed_page_id(record.description, counterpart_ref),
            },
        )
        logger.info("Morgen event %s linked to Notion page %s", ref, counterpart_ref)
