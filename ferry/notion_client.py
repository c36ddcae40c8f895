from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import requests

from ferry.models import DEFAULT_DURATION, NotionConfig, UniversalRecord, parse_occurrence, serialize_occurrence
from ferry.properties import (
    DateValue,
    RichTextValue,
    SelectValue,
    StatusValue,
    TitleValue,
    date_property,
    date_start,
    edited_time,
    parse_property,
    rich_text,
    rich_text_property,
    select_property,
    status_property,
    title_property,
    title_text,
)

logger = logging.getLogger(__name__)

SYNCED_NOTE = "This task was synced from Morgen."


def missing_required_properties(page: dict[str, Any], config: NotionConfig) -> list[str]:
    names = config.properties
    properties = page.get("properties") or {}
    required = [
        (names.title, TitleValue),
        (names.due_date, DateValue),
        (names.description, RichTextValue),
        (names.area, SelectValue),
        (names.status, StatusValue),
    ]
    missing: list[str] = []
    for prop_name, expected in required:
        if not isinstance(parse_property(properties.get(prop_name)), expected):
            missing.append(prop_name)
    return missing


def page_to_record(page: dict[str, Any], config: NotionConfig) -> UniversalRecord | None:
    page_id = str(page.get("id", "") or "").strip()
    if not page_id:
        logger.warning("Skipping Notion page without id")
        return None
    missing = missing_required_properties(page, config)
    if missing:
        logger.info("Skipping incomplete task with page id %s (missing %s)", page_id, ", ".join(missing))
        return None

    names = config.properties
    properties = page.get("properties") or {}
    try:
        occurs_at = parse_occurrence(date_start(parse_property(properties.get(names.due_date))))
    except ValueError:
        logger.warning("Skipping task %s with unparseable due date", page_id)
        return None

    last_modified = edited_time(
        parse_property(properties.get(names.last_update)),
        str(page.get("last_edited_time", "") or ""),
    )
    event_id = rich_text(parse_property(properties.get(names.event_id))).strip()
    return UniversalRecord(
        ref_a=page_id,
        ref_b=event_id or None,
        title=title_text(parse_property(properties.get(names.title))),
        description=rich_text(parse_property(properties.get(names.description))),
        occurs_at=occurs_at,
        duration=DEFAULT_DURATION,
        last_modified=last_modified,
    )


class NotionService:
    """Task store backed by a Notion database."""

    def __init__(self, config: NotionConfig, session: requests.Session | None = None) -> None:
        self.config = config
        self._session = session or requests.Session()

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Notion-Version": self.config.api_version,
            "Content-Type": "application/json",
            "accept": "application/json",
        }

    def _url(self, path: str) -> str:
        return f"{self.config.api_base_url.rstrip('/')}/{path.lstrip('/')}"

    def _request(self, method: str, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        if not self.config.is_configured():
            raise RuntimeError("Notion config is incomplete.")
        response = self._session.request(
            method,
            self._url(path),
            headers=self._headers(),
            json=payload,
            timeout=self.config.timeout_seconds,
        )
        response.raise_for_status()
        body = response.json()
        if not isinstance(body, dict):
            raise RuntimeError("Notion response root must be an object.")
        return body

    def query_pages(self, start: datetime, end: datetime) -> list[dict[str, Any]]:
        due_date = self.config.properties.due_date
        payload: dict[str, Any] = {
            "filter": {
                "and": [
                    {"property": due_date, "date": {"on_or_after": start.isoformat()}},
                    {"property": due_date, "date": {"on_or_before": end.isoformat()}},
                ]
            }
        }
        pages: list[dict[str, Any]] = []
        while True:
            body = self._request("POST", f"databases/{self.config.database_id}/query", payload)
            results = body.get("results") or []
            pages.extend(item for item in results if isinstance(item, dict))
            next_cursor = body.get("next_cursor")
            if not body.get("has_more", bool(next_cursor)) or not next_cursor:
                break
            payload["start_cursor"] = next_cursor
        logger.info("%d Notion pages fetched", len(pages))
        return pages

    def fetch(self, start: datetime, end: datetime) -> list[UniversalRecord]:
        records: list[UniversalRecord] = []
        for page in self.query_pages(start, end):
            record = page_to_record(page, self.config)
            if record is not None:
                records.append(record)
        return records

    def _content_properties(self, record: UniversalRecord) -> dict[str, Any]:
        names = self.config.properties
        return {
            names.title: title_property(record.title),
            names.description: rich_text_property(record.description),
            names.due_date: date_property(serialize_occurrence(record.occurs_at) or ""),
        }

    def create(self, record: UniversalRecord) -> str:
        names = self.config.properties
        properties = self._content_properties(record)
        properties[names.area] = select_property(self.config.default_area)
        properties[names.status] = status_property(self.config.default_status)
        properties[names.event_id] = rich_text_property(record.ref_b or "")
        body = self._request(
            "POST",
            "pages",
            {
                "parent": {"type": "database_id", "database_id": self.config.database_id},
                "properties": properties,
                "children": [
                    {
                        "object": "block",
                        "type": "paragraph",
                        "paragraph": {
                            "rich_text": [{"type": "text", "text": {"content": SYNCED_NOTE}}],
                            "color": "default",
                        },
                    }
                ],
            },
        )
        page_id = str(body.get("id", "") or "").strip()
        if not page_id:
            raise RuntimeError("Notion create response is missing the page id.")
        logger.info("Notion task created: %s", record.title)
        return page_id

    def update(self, ref: str, record: UniversalRecord) -> None:
        self._request("PATCH", f"pages/{ref}", {"properties": self._content_properties(record)})
        logger.info("Notion task updated: %s", record.title)

    def delete(self, ref: str) -> None:
        self._request("PATCH", f"pages/{ref}", {"archived": True})
        logger.info("Notion task archived: %s", ref)

    def link(self, ref: str, counterpart_ref: str, record: UniversalRecord) -> None:
        names = self.config.properties
        self._request(
            "PATCH",
            f"pages/{ref}",
            {"properties": {names.event_id: rich_text_property(counterpart_ref)}},
        )
        logger.info("Notion task %s linked to Morgen event %s", ref, counterpart_ref)
