"""
Textual action-tag parsing.

In text mode the model writes actions as XML-like tags inside free-form
output::

    <read path="src/app.py"/>
    <edit path="src/app.py">
    @@ -3,1 @@
    -old
    +new
    </edit>
    <end>Done.</end>

Tags may be self-closing or carry a body. Attribute values are quoted.
"""

import re
from dataclasses import dataclass
from typing import Iterable

from agentlane.core.domain.events import Action, ActionType, WRITE_LIKE_TYPES

MULTILINE_TAGS = ("edit", "write")

_ATTR = re.compile(r"([A-Za-z_][\w-]*)\s*=\s*(?:\"([^\"]*)\"|'([^']*)')")


@dataclass(frozen=True)
class ParsedTag:
    """One tag occurrence in model output."""

    tag: str
    attrs: dict[str, str]
    body: str | None
    start: int


def _tag_pattern(tags: Iterable[str]) -> re.Pattern[str]:
    names = "|".join(re.escape(t) for t in sorted(set(tags), key=len, reverse=True))
    return re.compile(
        rf"<(?P<tag>{names})(?=[\s/>])"
        r"(?P<attrs>(?:[^>\"']|\"[^\"]*\"|'[^']*')*?)"
        r"(?:/>|>(?P<body>[\s\S]*?)</(?P=tag)\s*>)",
        re.IGNORECASE,
    )


def parse_attrs(raw: str) -> dict[str, str]:
    return {m.group(1): m.group(2) if m.group(2) is not None else m.group(3) for m in _ATTR.finditer(raw)}


def find_tags(text: str, tags: Iterable[str]) -> list[ParsedTag]:
    """Find all occurrences of the given tags, in order of appearance."""
    tags = list(tags)
    if not tags or not text:
        return []
    found = []
    for match in _tag_pattern(tags).finditer(text):
        body = match.group("body")
        if body is not None:
            body = _strip_body(body)
        found.append(
            ParsedTag(
                tag=match.group("tag").lower(),
                attrs=parse_attrs(match.group("attrs") or ""),
                body=body,
                start=match.start(),
            )
        )
    return found


def _strip_body(body: str) -> str:
    # Drop the newline right after the opening tag and before the closing tag.
    if body.startswith("\r\n"):
        body = body[2:]
    elif body.startswith("\n"):
        body = body[1:]
    if body.endswith("\n"):
        body = body[:-1]
        if body.endswith("\r"):
            body = body[:-1]
    return body


def find_unclosed_tag(text: str, tags: Iterable[str] = MULTILINE_TAGS) -> str | None:
    """
    Return the first multi-line tag opened but never closed, if any.

    Such output was cut off by the model's output token limit.
    """
    for tag in tags:
        opens = len(re.findall(rf"<{tag}\b(?:[^>\"']|\"[^\"]*\"|'[^']*')*?(?<!/)>", text, re.IGNORECASE))
        closes = len(re.findall(rf"</{tag}\s*>", text, re.IGNORECASE))
        if opens > closes:
            return tag
    return None


def dedupe_actions(actions: list[Action]) -> list[Action]:
    """
    Drop repeats introduced by merging truncated output.

    Write-like actions keep the most recent attempt per (type, path);
    plan-ready keeps only the first occurrence.
    """
    drop: set[int] = set()
    last_write: dict[tuple[str, str], int] = {}
    seen_plan_ready = False
    for index, action in enumerate(actions):
        if action.type in WRITE_LIKE_TYPES and action.path:
            key = (action.type, action.path)
            if key in last_write:
                drop.add(last_write[key])
            last_write[key] = index
        elif action.type == ActionType.PLAN_READY.value:
            if seen_plan_ready:
                drop.add(index)
            seen_plan_ready = True
    return [a for i, a in enumerate(actions) if i not in drop]
