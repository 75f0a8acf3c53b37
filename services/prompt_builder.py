from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from services.draft_policy import DEFAULT_CATEGORY
from services.request_sanitizer import SanitizedRequest

PROMPT_EXEMPLAR = """
[
  {
    "title": "첫 번째 초안의 제목",
    "content": "<p>첫 번째 문단입니다.</p><p>두 번째 문단입니다.</p>"
  },
  {
    "title": "두 번째 초안의 제목",
    "content": "<p>첫 번째 문단입니다.</p><p>두 번째 문단입니다.</p>"
  },
  {
    "title": "세 번째 초안의 제목",
    "content": "<p>첫 번째 문단입니다.</p><p>두 번째 문단입니다.</p>"
  }
]
""".strip()

PROMPT_TEMPLATE = """
# AI 비서관 역할
당신은 정치인의 전문 비서관입니다.

## 작성자 정보
이름: {name}
직책: {position}
지역: {region}
선거구: {district}
작성일: {written_on}

## 중요한 지역 맥락 지침
- 반드시 '{greeting}'로 시작하세요
- 서울, 부산, 대구, 인천 등 다른 지역명은 절대 언급하지 마세요
- {region} 지역의 구체적인 현안과 특성을 반영하세요
- {district_rule}
- '우리 지역', '우리 {region_local}' 등의 표현을 자주 사용하세요

## 작성 요청
주제: {topic}
키워드: {keywords}
카테고리: {category_label}

## 작성 가이드라인 ({category_label})
- 작성 목표: {goal}
- 핵심 내용: {focus}
- 톤앤매너: {tone}
- 지역 특화: 반드시 {region} 지역구 맥락을 반영하여 작성하세요

## 작성 요구사항
- 블로그 원고 초안 3개를 작성하세요
- 각 초안은 1500자 이상으로 작성하세요
- 각 문단을 <p> 태그로 감싸서 HTML 형식으로 작성하세요
- 제목은 흥미롭고 클릭하고 싶게 만드세요
- 첫 문장은 반드시 "{greeting}"로 시작하세요
- 다른 지역(서울, 부산, 대구, 인천 등) 언급 절대 금지

## 중요한 JSON 형식 지침
- 반드시 아래 정확한 JSON 형식으로만 응답하세요
- 다른 설명이나 텍스트는 절대 포함하지 마세요
- JSON 외부에 어떤 텍스트도 쓰지 마세요
- 백슬래시(\\)는 사용하지 마세요
- 따옴표 안에서 따옴표가 필요하면 작은따옴표(')를 사용하세요

## 응답 형식 (정확히 이대로)
{exemplar}

지금 시작하세요:
""".strip()


@dataclass(frozen=True)
class CategoryBrief:
    goal: str
    focus: str
    tone: str


# {region} is filled in per request.
CATEGORY_BRIEFS: dict[str, CategoryBrief] = {
    "의정활동": CategoryBrief(
        goal="국회 내에서의 공식적인 활동을 전문적이고 신뢰도 높게 전달합니다.",
        focus="활동의 구체적인 내용, 법적 근거, 그리고 {region} 주민들에게 미치는 긍정적인 영향을 명확히 서술해야 합니다.",
        tone="객관적이고 논리적인 어조를 유지하며, 전문 용어는 쉽게 풀어서 설명해주세요.",
    ),
    "지역활동": CategoryBrief(
        goal="{region} 주민들과의 유대감을 강화하고, 지역 현안 해결을 위한 노력을 진정성 있게 보여줍니다.",
        focus="{region} 주민들의 목소리를 직접 반영하고, 구체적인 활동 내용과 향후 계획을 공유하여 신뢰를 얻어야 합니다.",
        tone="따뜻하고 친근한 어조를 사용하되, 문제 해결에 대한 의지를 단호하게 보여주세요.",
    ),
    "정책/비전": CategoryBrief(
        goal="의원의 정책적 전문성과 {region} 지역 발전에 대한 깊은 고민을 보여주며, 정책 리더로서의 이미지를 구축합니다.",
        focus="{region} 지역의 사회 문제에 대한 날카로운 분석과 함께, 실현 가능한 대안과 장기적인 비전을 제시해야 합니다.",
        tone="예리하고 통찰력 있는 어조를 사용하며, 데이터나 근거를 바탕으로 주장을 뒷받침해주세요.",
    ),
    "보도자료": CategoryBrief(
        goal="언론을 통해 {region} 지역구 의원의 공식 입장을 명확하고 간결하게 전달합니다.",
        focus="육하원칙에 따라 사실 관계를 정확히 전달해야 하며, 제목은 핵심 내용을 함축적으로 보여줘야 합니다.",
        tone="간결하고 명료한 문체를 사용하여, 오해의 소지가 없도록 작성해야 합니다.",
    ),
    "일반": CategoryBrief(
        goal="{region} 주민들이 흥미를 느끼고 쉽게 이해할 수 있는 블로그 게시물을 작성합니다.",
        focus="서론, 본론, 결론의 구조를 갖추고, 논리적인 흐름에 따라 내용을 전개해주세요.",
        tone="대중 친화적이고 설득력 있는 어조를 사용해주세요.",
    ),
}


def build_prompt(request: SanitizedRequest, written_on: date) -> str:
    """Render the instruction document sent to the model.

    The output depends only on the arguments, so identical input always
    yields byte-identical text.
    """
    region = request.region
    district = request.user_profile.electoral_district or ""
    brief = CATEGORY_BRIEFS.get(request.category, CATEGORY_BRIEFS[DEFAULT_CATEGORY])
    category_label = (
        f"{request.category} > {request.sub_category}" if request.sub_category else request.category
    )
    focus = brief.focus.format(region=region)
    if request.sub_category:
        focus = f"{request.sub_category}에 초점을 맞춰, {focus}"
    district_rule = (
        f"{district} 선거구 맥락에 맞는 내용으로 작성하세요"
        if district
        else "해당 지역구 맥락에 맞는 내용으로 작성하세요"
    )

    return PROMPT_TEMPLATE.format(
        name=request.user_profile.name,
        position=request.user_profile.position,
        region=region,
        district=district,
        written_on=written_on.isoformat(),
        greeting=request.greeting,
        district_rule=district_rule,
        region_local=request.user_profile.region_local or region,
        topic=request.prompt,
        keywords=request.keywords or "없음",
        category_label=category_label,
        goal=brief.goal.format(region=region),
        focus=focus,
        tone=brief.tone,
        exemplar=PROMPT_EXEMPLAR,
    )
