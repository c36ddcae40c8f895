from __future__ import annotations

import re

PAGE_ID_TAG_PATTERN = re.compile(r"^#PAGEID:([\w-]+)#")


def page_id_tag(page_id: str) -> str:
    return f"#PAGEID:{page_id}#"


def extract_page_id(description: str) -> str:
    if not description:
        return ""
    match = PAGE_ID_TAG_PATTERN.match(description)
    if not match:
        return ""
    return match.group(1)


def strip_page_id_tag(description: str) -> str:
    if not description:
        return ""
    return PAGE_ID_TAG_PATTERN.sub("", description, count=1)


def embed_page_id(description: str, page_id: str) -> str:
    """Prefix ``description`` with the page-id tag, replacing any existing tag."""
    body = strip_page_id_tag(description or "")
    if not page_id:
        return body
    return f"{page_id_tag(page_id)}{body}"
