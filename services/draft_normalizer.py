from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass

from services.draft_policy import DEFAULT_POLICY, PolicyTable, RiskLevel, find_content_risks
from services.errors import EmptyResult

logger = logging.getLogger(__name__)

MAX_DRAFTS = 3
MAX_TITLE_LENGTH = 200
MIN_PARAGRAPH_LENGTH = 10

TITLE_KEYS = ("title", "제목", "name")
CONTENT_KEYS = ("content", "내용", "text")

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n|(?<=[.!?])\s+(?=[A-Z가-힣])")
_TAG = re.compile(r"<[^>]*>")


@dataclass(frozen=True)
class Draft:
    title: str
    content: str
    risk_level: RiskLevel
    word_count: int
    category: str


def _first_value(candidate: dict[str, object], keys: Sequence[str]) -> str:
    for key in keys:
        value = candidate.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return ""


def wrap_paragraphs(content: str) -> str:
    if "<p>" in content or "<div>" in content:
        return content
    paragraphs = [
        part.strip()
        for part in _PARAGRAPH_BREAK.split(content)
        if len(part.strip()) > MIN_PARAGRAPH_LENGTH
    ]
    if len(paragraphs) > 1:
        return "".join(f"<p>{paragraph}</p>" for paragraph in paragraphs)
    return f"<p>{content}</p>"


def normalize_drafts(
    candidates: Sequence[object],
    category: str,
    policy: PolicyTable = DEFAULT_POLICY,
) -> list[Draft]:
    """Turn raw parser candidates into at most three validated drafts.

    Candidates without content are dropped; a missing title becomes an
    ordinal placeholder. Risky phrasing only tags the draft as ``MEDIUM``.
    """
    drafts: list[Draft] = []
    min_length = policy.min_content_length(category)

    for index, candidate in enumerate(candidates[:MAX_DRAFTS], start=1):
        if not isinstance(candidate, dict):
            logger.warning("Draft %s: not an object, skipping", index)
            continue

        title = _first_value(candidate, TITLE_KEYS)[:MAX_TITLE_LENGTH].strip() or f"초안 {index}"
        content = _first_value(candidate, CONTENT_KEYS)
        if not content:
            logger.warning("Draft %s: empty content, skipping", index)
            continue

        content = wrap_paragraphs(content)
        if len(content) < min_length:
            logger.warning(
                "Draft %s is shorter than the %s minimum (%s < %s chars)",
                index,
                category,
                len(content),
                min_length,
            )

        risks = find_content_risks(content, policy)
        if risks:
            logger.warning("Content risk in draft %s: %s", index, ", ".join(risks))

        drafts.append(
            Draft(
                title=title,
                content=content,
                risk_level=RiskLevel.medium if risks else RiskLevel.low,
                word_count=len(_TAG.sub("", content)),
                category=category,
            )
        )

    if not drafts:
        raise EmptyResult("No draft candidate survived validation.")

    logger.info("%s drafts validated", len(drafts))
    return drafts
