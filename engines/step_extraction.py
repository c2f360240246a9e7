"""Heuristic recovery of thinking steps from free text.

Used when a model reply for a thinking process cannot be parsed as JSON. The
extractor recognises numbered lines (``1.``, ``2)``, ``Step 3:``), markdown
headings and bold headings; anything else is split into paragraphs.
"""

from __future__ import annotations

import re
from typing import Dict, List

_STEP_HEADER = re.compile(
    r"""^\s*(?:
        (?:\#{1,6}\s*)?(?:\*\*)?\s*step\s*(?P<n1>\d+)\s*[:.)\-–]?\s*(?:\*\*)?\s*(?P<t1>.*)   # Step 1: Title
      | (?P<n2>\d+)\s*[.)]\s+(?:\*\*)?(?P<t2>.*?)(?:\*\*)?\s*$                              # 1. Title / 1) Title
      | \#{1,6}\s+(?P<t3>.+)                                                                   # ## Title
      | \*\*(?P<t4>[^*]+)\*\*\s*:?\s*$                                                         # **Title**
    )""",
    re.IGNORECASE | re.VERBOSE,
)
_INLINE_SPLIT = re.compile(r"^(?P<title>[^:]{1,80}?)\s*[:\-–]\s+(?P<body>.+)$")
_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")

ERROR_STEP = {
    "title": "Error Generating Thinking Process",
    "content": (
        "We encountered an error when trying to generate a thinking process for your problem. "
        "Please try again later or with a different problem description."
    ),
}


def _clean(text: str) -> str:
    text = re.sub(r"\*\*(.+?)\*\*", r"\1", text)
    return re.sub(r"[ \t]+", " ", text).strip(" \t*#")


def _header_title(match: re.Match[str]) -> str:
    for group in ("t1", "t2", "t3", "t4"):
        value = match.group(group)
        if value is not None:
            return _clean(value)
    return ""


def _finalise(title: str, body_lines: List[str], index: int) -> Dict[str, str]:
    body = _clean("\n".join(line.strip() for line in body_lines if line.strip()))
    if not body:
        inline = _INLINE_SPLIT.match(title)
        if inline:
            title, body = _clean(inline.group("title")), _clean(inline.group("body"))
    if not title:
        title = f"Step {index}"
    return {"title": title, "content": body or title}


def extract_steps(text: str) -> List[Dict[str, str]]:
    """Split ``text`` into ``{"title", "content"}`` steps.

    Returns an empty list when the text holds nothing usable.
    """

    if not text or not text.strip():
        return []

    steps: List[Dict[str, str]] = []
    title: str | None = None
    body: List[str] = []
    preamble: List[str] = []

    for line in text.splitlines():
        match = _STEP_HEADER.match(line)
        if match:
            if title is not None:
                steps.append(_finalise(title, body, len(steps) + 1))
            title = _header_title(match)
            body = []
        elif title is None:
            preamble.append(line)
        else:
            body.append(line)
    if title is not None:
        steps.append(_finalise(title, body, len(steps) + 1))

    if steps:
        return steps

    paragraphs = [p.strip() for p in _PARAGRAPH_BREAK.split("\n".join(preamble)) if p.strip()]
    return [
        {"title": f"Step {idx}", "content": _clean(paragraph)}
        for idx, paragraph in enumerate(paragraphs, start=1)
    ]
