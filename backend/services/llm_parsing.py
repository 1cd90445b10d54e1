"""Helpers shared by the LLM-backed parsers: page formatting and lenient coercion."""
import re
from typing import Any, Iterable, List

from models.document import Page

RANGE_PATTERN = re.compile(r"^(\d+)\s*[-–]\s*(\d+)$")
MAX_RANGE_SPAN = 200


def format_pages(pages: Iterable[Page], max_chars: int = 0) -> str:
    """Render pages as "[Page N]\\ntext" blocks, optionally truncating each page."""
    blocks = []
    for page in pages:
        text = page.text[:max_chars] if max_chars else page.text
        blocks.append(f"[Page {page.page_number}]\n{text}")
    return "\n\n".join(blocks)


def coerce_source_pages(value: Any) -> List[int]:
    """
    Accept the shapes models produce for page references: a list, a single
    number, "3-5" ranges or "1, 2" lists. Returns sorted unique positive pages.
    """
    pages: List[int] = []
    if isinstance(value, bool):
        return []
    if isinstance(value, (int, float)):
        pages = [int(value)]
    elif isinstance(value, (list, tuple)):
        for v in value:
            try:
                pages.append(int(float(v)))
            except (TypeError, ValueError):
                continue
    elif isinstance(value, str):
        trimmed = value.strip()
        match = RANGE_PATTERN.match(trimmed)
        if match:
            start, end = int(match.group(1)), int(match.group(2))
            if 0 < start <= end and end - start < MAX_RANGE_SPAN:
                pages = list(range(start, end + 1))
        else:
            for token in re.split(r"[,\s]+", trimmed):
                if token.isdigit():
                    pages.append(int(token))
    return sorted({p for p in pages if p > 0})


def coerce_string_list(value: Any) -> List[str]:
    """None -> [], "x" -> ["x"], lists keep their non-empty string items."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v is not None and str(v).strip()]
    return []


def extract_list(raw: Any, *keys: str) -> List[Any]:
    """
    Pull the item array out of a model response.

    JSON mode forces an object at the top level, so the array usually sits
    under one of ``keys``; a bare array is accepted as well.
    """
    if isinstance(raw, list):
        return raw
    if isinstance(raw, dict):
        for key in keys:
            value = raw.get(key)
            if isinstance(value, list):
                return value
    return []
