from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable

from services.errors import EmptyResult, ParsingError

logger = logging.getLogger(__name__)

Candidate = dict[str, object]
Strategy = Callable[[str], list[Candidate]]

MAX_CANDIDATES = 3
FALLBACK_MIN_SECTION_LENGTH = 50
FALLBACK_TITLE_LENGTH = 100
FALLBACK_SECTION_CONTENT_LENGTH = 500
EMERGENCY_CONTENT_LENGTH = 1500
EMERGENCY_TITLE = "AI 생성 원고"

_CODE_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
_SMART_DOUBLE_QUOTES = re.compile("[“”„‟]")
_SMART_SINGLE_QUOTES = re.compile("[‘’‚‛]")
_BACKSLASH_WHITESPACE = re.compile(r"\\\s+")
_INVALID_ESCAPE = re.compile(r'\\([^"\\/bfnrtu])')
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_CONTROL_ESCAPES = {"\n": "\\n", "\t": "\\t", "\r": "\\r"}

# (title, content) pairs, strictest first
_FIELD_PATTERNS: tuple[tuple[re.Pattern[str], re.Pattern[str]], ...] = (
    (
        re.compile(r'"title"\s*:\s*"((?:[^"\\]|\\.)*)"'),
        re.compile(r'"content"\s*:\s*"((?:[^"\\]|\\.)*)"'),
    ),
    (
        re.compile(r'"title"\s*:\s*"([^"]*?)"'),
        re.compile(r'"content"\s*:\s*"([\s\S]*?)"'),
    ),
    (
        re.compile(r"title['\":\s]*([^'\",}\]]+)", re.IGNORECASE),
        re.compile(r"content['\":\s]*((?:[^'\"}]|}[^'\",}])*)", re.IGNORECASE),
    ),
)

_LINE_TITLE = re.compile(r"title['\":=\s]*([^\"'\n]+)", re.IGNORECASE)
_LINE_CONTENT = re.compile(r"content['\":=\s]*([^\"'\n]*)", re.IGNORECASE)
_STRUCTURAL_LINE = re.compile(r"^[{}\[\],]*$")
_DRAFT_MARKER = re.compile(r"(?:초안|draft)\s*[0-9]+", re.IGNORECASE)


def _extract_array_span(text: str) -> str:
    candidate = text.strip()
    match = _CODE_BLOCK.search(text)
    if match and match.group(1):
        candidate = match.group(1).strip()

    start = candidate.find("[")
    end = candidate.rfind("]")
    if start == -1 or end == -1 or end < start:
        raise ValueError("No JSON array found in response.")
    return candidate[start : end + 1]


def _as_candidates(payload: object) -> list[Candidate]:
    items = payload if isinstance(payload, list) else [payload]
    return [item for item in items if isinstance(item, dict)]


def _escape_control_chars_in_strings(text: str) -> str:
    """Escape raw newlines, tabs and carriage returns inside JSON string literals."""
    output: list[str] = []
    in_string = False
    escaped = False
    for char in text:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            elif char in _CONTROL_ESCAPES:
                output.append(_CONTROL_ESCAPES[char])
                continue
        elif char == '"':
            in_string = True
        output.append(char)
    return "".join(output)


def clean_json_string(text: str) -> str:
    text = _SMART_DOUBLE_QUOTES.sub('"', text)
    text = _SMART_SINGLE_QUOTES.sub("'", text)
    text = _BACKSLASH_WHITESPACE.sub(" ", text)
    text = _INVALID_ESCAPE.sub(r"\1", text)
    text = _escape_control_chars_in_strings(text)
    text = _TRAILING_COMMA.sub(r"\1", text)
    return text.replace("\\\\", "\\")


def clean_extracted_text(text: str) -> str:
    return (
        text.replace("\\n", "\n")
        .replace("\\t", "\t")
        .replace("\\r", "\r")
        .replace('\\"', '"')
        .replace("\\'", "'")
        .replace("\\\\", "\\")
        .strip()
    )


def parse_clean_json(text: str) -> list[Candidate]:
    return _as_candidates(json.loads(_extract_array_span(text)))


def parse_with_text_cleaning(text: str) -> list[Candidate]:
    return _as_candidates(json.loads(clean_json_string(_extract_array_span(text))))


def parse_with_smart_extraction(text: str) -> list[Candidate]:
    for index, (title_pattern, content_pattern) in enumerate(_FIELD_PATTERNS, start=1):
        titles = [match.group(1).strip() for match in title_pattern.finditer(text)]
        contents = [match.group(1).strip() for match in content_pattern.finditer(text)]
        titles = [title for title in titles if title]
        contents = [content for content in contents if content]
        logger.debug("Field pattern %s: %s titles, %s contents", index, len(titles), len(contents))

        drafts = [
            {"title": clean_extracted_text(title), "content": clean_extracted_text(content)}
            for title, content in zip(titles[:MAX_CANDIDATES], contents[:MAX_CANDIDATES])
        ]
        if drafts:
            return drafts

    raise ValueError("No title/content fields found.")


def parse_with_manual_reconstruction(text: str) -> list[Candidate]:
    lines = [line.strip() for line in text.split("\n") if line.strip()]
    drafts: list[Candidate] = []
    current: Candidate | None = None
    buffer: list[str] = []
    collecting = False

    def flush() -> None:
        if current is not None and buffer:
            current["content"] = " ".join(buffer).strip()
            drafts.append(current)

    for line in lines:
        if "title" in line and (":" in line or "=" in line):
            flush()
            match = _LINE_TITLE.search(line)
            current = {"title": match.group(1).strip().rstrip(",").strip()} if match else None
            buffer = []
            collecting = False
        elif "content" in line and current is not None:
            collecting = True
            match = _LINE_CONTENT.search(line)
            if match and match.group(1).strip():
                buffer.append(match.group(1).strip())
        elif collecting and current is not None:
            if "}" in line or "]" in line or "title" in line:
                collecting = False
                continue
            cleaned = line.strip("'\"").strip(", ")
            if cleaned and not _STRUCTURAL_LINE.match(cleaned):
                buffer.append(cleaned)

    flush()
    if not drafts:
        raise ValueError("No drafts reconstructed from lines.")
    return drafts


def parse_with_fallback_extraction(text: str) -> list[Candidate]:
    if not text.strip():
        raise ValueError("Empty response.")

    sections = [
        section.strip()
        for section in _DRAFT_MARKER.split(text)
        if len(section.strip()) > FALLBACK_MIN_SECTION_LENGTH
    ]
    if not sections:
        capped = text.strip()[:EMERGENCY_CONTENT_LENGTH]
        paragraphs = capped.replace("\n", "</p><p>")
        logger.warning("No draft sections found; wrapping whole response as one draft")
        return [{"title": EMERGENCY_TITLE, "content": f"<p>{paragraphs}</p>"}]

    drafts: list[Candidate] = []
    for index, section in enumerate(sections[:MAX_CANDIDATES], start=1):
        lines = [line.strip() for line in section.split("\n") if line.strip()]
        title = lines[0][:FALLBACK_TITLE_LENGTH].strip() if lines else f"초안 {index}"
        content = " ".join(lines[1:]).strip() or section[:FALLBACK_SECTION_CONTENT_LENGTH]
        drafts.append({"title": title, "content": f"<p>{content}</p>"})
    return drafts


PARSE_STRATEGIES: tuple[tuple[str, Strategy], ...] = (
    ("clean_json", parse_clean_json),
    ("text_cleaning", parse_with_text_cleaning),
    ("smart_extraction", parse_with_smart_extraction),
    ("manual_reconstruction", parse_with_manual_reconstruction),
    ("fallback_extraction", parse_with_fallback_extraction),
)


def run_strategies(
    text: str,
    validate: Callable[[list[Candidate]], list] | None = None,
    strategies: tuple[tuple[str, Strategy], ...] = PARSE_STRATEGIES,
) -> tuple[str, list]:
    """Return the name of the first strategy whose candidates are accepted, and the result.

    With ``validate`` given, a strategy only wins when ``validate`` accepts its
    candidates; an ``EmptyResult`` from it moves on to the next strategy.
    """
    logger.debug("Parsing model response (%s chars)", len(text))
    last_error: Exception | None = None
    rejected: EmptyResult | None = None

    for name, strategy in strategies:
        try:
            candidates = strategy(text)
        except ValueError as exc:
            logger.debug("Parse strategy %s failed: %s", name, exc)
            last_error = exc
            continue

        if not candidates:
            logger.debug("Parse strategy %s produced no candidates", name)
            continue

        if validate is None:
            logger.info("Parse strategy %s recovered %s candidates", name, len(candidates))
            return name, candidates

        try:
            accepted = validate(candidates)
        except EmptyResult as exc:
            logger.info("Parse strategy %s: no candidate survived validation", name)
            rejected = exc
            continue

        logger.info("Parse strategy %s recovered %s drafts", name, len(accepted))
        return name, accepted

    if rejected is not None:
        raise EmptyResult(f"No strategy produced a valid draft: {rejected}")
    raise ParsingError(f"All parse strategies failed. Last error: {last_error or 'no candidates'}")


def parse_response(text: str) -> list[Candidate]:
    return run_strategies(text)[1]
