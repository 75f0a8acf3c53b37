from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "일반"

SUB_CATEGORIES: dict[str, tuple[str, ...]] = {
    "의정활동": ("국정감사", "법안발의", "질의응답", "위원회활동", "예산심사", "정책토론"),
    "지역활동": ("현장방문", "주민간담회", "지역현안", "봉사활동", "상권점검", "민원해결"),
    "정책/비전": ("경제정책", "사회복지", "교육정책", "환경정책", "디지털정책", "청년정책"),
    "보도자료": ("성명서", "논평", "제안서", "건의문", "발표문", "입장문"),
    "일반": ("일상소통", "감사인사", "축하메시지", "격려글", "교육컨텐츠"),
}

CATEGORIES: tuple[str, ...] = tuple(SUB_CATEGORIES)


class RiskLevel(str, Enum):
    low = "LOW"
    medium = "MEDIUM"
    high = "HIGH"


@dataclass(frozen=True)
class PolicyTable:
    """Keyword and pattern lists used by the advisory risk screens.

    Swap the whole table to retarget the screens at another jurisdiction.
    """

    political_keywords: tuple[str, ...]
    content_risk_patterns: tuple[re.Pattern[str], ...]
    min_content_lengths: dict[str, int] = field(default_factory=dict)
    default_min_content_length: int = 600

    def min_content_length(self, category: str) -> int:
        return self.min_content_lengths.get(category, self.default_min_content_length)


DEFAULT_POLICY = PolicyTable(
    political_keywords=(
        "선거", "투표", "지지", "반대", "탄핵", "규탄", "비판", "공격",
        "후보", "당선", "낙선", "정치자금", "기부", "후원", "선거운동",
        "정적", "견제", "대립", "갈등", "논란", "스캔들",
    ),
    content_risk_patterns=(
        re.compile(r"지지.*해주세요"),
        re.compile(r"투표.*부탁"),
        re.compile(r"후원.*요청"),
        re.compile(r"기부.*해주"),
        re.compile(r"반대.*해야"),
        re.compile(r"규탄.*합니다"),
    ),
    min_content_lengths={
        "보도자료": 600,
        "정책/비전": 1200,
        "의정활동": 1000,
        "지역활동": 800,
        "일반": 600,
    },
)


def find_risk_keywords(
    topic: str,
    keywords: str | None = None,
    policy: PolicyTable = DEFAULT_POLICY,
) -> list[str]:
    text = f"{topic} {keywords or ''}".lower()
    return [keyword for keyword in policy.political_keywords if keyword.lower() in text]


def screen(topic: str, keywords: str | None = None, policy: PolicyTable = DEFAULT_POLICY) -> RiskLevel:
    matched = find_risk_keywords(topic, keywords, policy)
    if matched:
        logger.warning("Political risk keywords detected: %s", ", ".join(matched))
        return RiskLevel.high
    return RiskLevel.low


def find_content_risks(content: str, policy: PolicyTable = DEFAULT_POLICY) -> list[str]:
    """Return labels of the solicitation patterns found in draft content."""
    return [
        f"election_law_pattern_{index}"
        for index, pattern in enumerate(policy.content_risk_patterns, start=1)
        if pattern.search(content)
    ]
