"""Typed views over Notion page property payloads.

Notion returns every property as a loosely shaped JSON object whose content key
depends on its ``type``. ``parse_property`` turns that into one of the small value
classes below; anything absent or of an unexpected shape becomes ``MISSING``. The
``*_text`` helpers are total: they return a default instead of raising.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union


@dataclass(frozen=True)
class TitleValue:
    text: str


@dataclass(frozen=True)
class RichTextValue:
    text: str


@dataclass(frozen=True)
class DateValue:
    start: str


@dataclass(frozen=True)
class SelectValue:
    name: str


@dataclass(frozen=True)
class StatusValue:
    name: str


@dataclass(frozen=True)
class LastEditedTimeValue:
    timestamp: str


@dataclass(frozen=True)
class MissingValue:
    type_name: str = ""


MISSING = MissingValue()

PropertyValue = Union[
    TitleValue,
    RichTextValue,
    DateValue,
    SelectValue,
    StatusValue,
    LastEditedTimeValue,
    MissingValue,
]


def _plain_text(fragments: Any) -> str:
    if not isinstance(fragments, list):
        return ""
    parts: list[str] = []
    for fragment in fragments:
        if not isinstance(fragment, dict):
            continue
        text = fragment.get("plain_text")
        if text is None:
            text = (fragment.get("text") or {}).get("content", "")
        parts.append(str(text or ""))
    return "".join(parts)


def _named(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    name = payload.get("name")
    if name is None:
        return None
    return str(name)


def parse_property(raw: Any) -> PropertyValue:
    if isinstance(raw, list):
        # Property-item endpoints may return paginated lists; the first item carries the type.
        raw = raw[0] if raw else None
    if not isinstance(raw, dict):
        return MISSING
    type_name = str(raw.get("type", ""))
    content = raw.get(type_name)
    if type_name == "title":
        if not isinstance(content, list) or not content:
            return MissingValue(type_name)
        return TitleValue(_plain_text(content))
    if type_name == "rich_text":
        if not isinstance(content, list):
            return MissingValue(type_name)
        return RichTextValue(_plain_text(content))
    if type_name == "date":
        if not isinstance(content, dict) or not content.get("start"):
            return MissingValue(type_name)
        return DateValue(str(content["start"]))
    if type_name == "select":
        name = _named(content)
        return SelectValue(name) if name is not None else MissingValue(type_name)
    if type_name == "status":
        name = _named(content)
        return StatusValue(name) if name is not None else MissingValue(type_name)
    if type_name == "last_edited_time":
        if not content:
            return MissingValue(type_name)
        return LastEditedTimeValue(str(content))
    return MissingValue(type_name)


def title_text(value: PropertyValue, default: str = "No Title") -> str:
    return value.text if isinstance(value, TitleValue) else default


def rich_text(value: PropertyValue, default: str = "") -> str:
    return value.text if isinstance(value, RichTextValue) else default


def date_start(value: PropertyValue, default: str = "") -> str:
    return value.start if isinstance(value, DateValue) else default


def option_name(value: PropertyValue, default: str = "") -> str:
    if isinstance(value, (SelectValue, StatusValue)):
        return value.name
    return default


def edited_time(value: PropertyValue, default: str = "") -> str:
    return value.timestamp if isinstance(value, LastEditedTimeValue) else default


def title_property(text: str) -> dict[str, Any]:
    return {"title": [{"text": {"content": text}}]}


def rich_text_property(text: str) -> dict[str, Any]:
    if not text:
        return {"rich_text": []}
    return {"rich_text": [{"text": {"content": text}}]}


def date_property(start: str) -> dict[str, Any]:
    return {"date": {"start": start}}


def select_property(name: str) -> dict[str, Any]:
    return {"select": {"name": name}}


def status_property(name: str) -> dict[str, Any]:
    return {"status": {"name": name}}
