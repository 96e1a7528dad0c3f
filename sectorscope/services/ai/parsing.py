"""Parsers that turn AI output into pipeline data.

All parsers raise ``ReportParseError`` when the output cannot be used, which
classifies as a validation failure and is never retried.
"""

from __future__ import annotations

import json
import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from sectorscope.core.logging import get_logger
from sectorscope.jobs.errors import ReportParseError
from sectorscope.services.ai.schemas import StructuredInsights


logger = get_logger("ai.parsing")

_SUB_SECTOR_HEADING = re.compile(r"^#{2}\s*Sub-sector:\s*(?P<name>.+?)\s*$", re.MULTILINE | re.IGNORECASE)
_RANK_HEADING = re.compile(
    r"^#{3}\s*Rank\s*\d+(?:\s*/\s*\d+)?\s*[:.\-]\s*(?P<title>.+?)\s*$",
    re.MULTILINE | re.IGNORECASE,
)
_TRAILING_PARENS = re.compile(r"^(?P<name>.*?)\s*\((?P<ticker>[^()]*)\)\s*$")
_DECISION = re.compile(
    r"DECISION\s*:?\s*\**\s*:?\s*\[?\s*(?P<verdict>APPROVED|REJECTED)",
    re.IGNORECASE,
)
_LEADING_VERDICT = re.compile(r"^\s*\**\s*(?P<verdict>APPROVED|REJECTED)\b", re.IGNORECASE)
_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)

_PRIVATE_MARKERS = {"private", "private company", "n/a", "na", "none", "-", ""}


# =============================================================================
# JSON
# =============================================================================


def extract_json(text: str) -> Any:
    """Parse JSON from model output, tolerating code fences and chatter."""
    cleaned = _CODE_FENCE.sub("", text.strip()).strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start != -1 and end > start:
        try:
            return json.loads(cleaned[start : end + 1])
        except json.JSONDecodeError as e:
            raise ReportParseError(f"Invalid JSON in AI output: {e}") from e

    raise ReportParseError("No JSON object found in AI output")


# =============================================================================
# Sector research
# =============================================================================


def _normalize_ticker(raw: str) -> str | None:
    ticker = raw.strip()
    if ticker.lower() in _PRIVATE_MARKERS:
        return None
    # "NASDAQ: ENPH" -> "ENPH"
    if ":" in ticker:
        ticker = ticker.rsplit(":", 1)[1].strip()
    return ticker.upper() or None


def _parse_company_title(title: str) -> tuple[str, str | None]:
    title = title.strip().strip("*").strip()
    match = _TRAILING_PARENS.match(title)
    if not match:
        return title, None
    return match.group("name").strip().strip("*").strip(), _normalize_ticker(match.group("ticker"))


def _clean_block(text: str) -> str:
    lines = [line for line in text.strip().splitlines() if line.strip() != "---"]
    return "\n".join(lines).strip()


def _overview(text: str) -> str:
    """Sub-sector overview: everything before the trends list."""
    marker = re.search(r"^\*\*Key Trends", text, re.MULTILINE | re.IGNORECASE)
    return _clean_block(text[: marker.start()] if marker else text)


def parse_sector_report(report: str) -> list[dict[str, Any]]:
    """Split a sector research report into sub-sectors and candidate stocks.

    Returns:
        ``[{"name", "summary", "stocks": [{"company_name", "ticker",
        "preliminary_notes"}]}]`` in report order. Sub-sectors without any
        candidate company are dropped.

    Raises:
        ReportParseError: no usable sub-sector in the report
    """
    headings = list(_SUB_SECTOR_HEADING.finditer(report))
    sub_sectors: list[dict[str, Any]] = []

    for index, heading in enumerate(headings):
        end = headings[index + 1].start() if index + 1 < len(headings) else len(report)
        body = report[heading.end() : end]

        ranks = list(_RANK_HEADING.finditer(body))
        if not ranks:
            logger.warning(f"Sub-sector '{heading.group('name')}' has no candidates, skipping")
            continue

        stocks = []
        seen: set[str] = set()
        for pos, rank in enumerate(ranks):
            stop = ranks[pos + 1].start() if pos + 1 < len(ranks) else len(body)
            company_name, ticker = _parse_company_title(rank.group("title"))
            key = company_name.lower()
            if not company_name or key in seen:
                continue
            seen.add(key)
            stocks.append(
                {
                    "company_name": company_name,
                    "ticker": ticker,
                    "preliminary_notes": _clean_block(body[rank.end() : stop]),
                }
            )

        sub_sectors.append(
            {
                "name": heading.group("name").strip().strip("*").strip(),
                "summary": _overview(body[: ranks[0].start()]),
                "stocks": stocks,
            }
        )

    if not sub_sectors:
        raise ReportParseError("Sector report contains no sub-sectors with candidates")
    return sub_sectors


# =============================================================================
# Ranking
# =============================================================================


def parse_ranking(content: str) -> list[int]:
    """Read the 1-based candidate order from a ranking response."""
    data = extract_json(content)
    order = data.get("ranking") if isinstance(data, dict) else data
    if not isinstance(order, list):
        raise ReportParseError("Ranking response has no 'ranking' list")

    numbers = []
    for item in order:
        try:
            numbers.append(int(item))
        except (TypeError, ValueError):
            continue
    return numbers


def assign_ranks(candidate_ids: Sequence[str], order: Sequence[int]) -> dict[str, int]:
    """Turn a (possibly sloppy) candidate order into ranks 1..N.

    Unknown or repeated candidate numbers are ignored and candidates the
    order leaves out are appended in their original sequence, so the
    result is always a total order over ``candidate_ids``.
    """
    ordered: list[str] = []
    seen: set[int] = set()
    for number in order:
        if 1 <= number <= len(candidate_ids) and number not in seen:
            seen.add(number)
            ordered.append(candidate_ids[number - 1])

    if len(ordered) < len(candidate_ids):
        logger.warning(
            f"Ranking covered {len(ordered)}/{len(candidate_ids)} candidates, appending the rest"
        )
    for index, candidate_id in enumerate(candidate_ids, start=1):
        if index not in seen:
            ordered.append(candidate_id)

    return {candidate_id: rank for rank, candidate_id in enumerate(ordered, start=1)}


# =============================================================================
# Judge review
# =============================================================================


@dataclass(frozen=True)
class JudgeVerdict:
    approved: bool
    review: str


def parse_judge_verdict(review: str) -> JudgeVerdict:
    """Read the DECISION line of a judge review.

    A review without a recognizable decision counts as a rejection, so
    nothing is formatted without an explicit approval.
    """
    match = _DECISION.search(review) or _LEADING_VERDICT.search(review)
    if match is None:
        logger.warning("Judge review has no decision line, treating as rejected")
        return JudgeVerdict(approved=False, review=review)
    return JudgeVerdict(approved=match.group("verdict").upper() == "APPROVED", review=review)


# =============================================================================
# Insights
# =============================================================================


def parse_insights(content: str) -> StructuredInsights:
    """Validate the format stage's JSON into ``StructuredInsights``."""
    data = extract_json(content)
    if not isinstance(data, dict):
        raise ReportParseError("Insights response is not a JSON object")
    try:
        return StructuredInsights.model_validate(data)
    except PydanticValidationError as e:
        raise ReportParseError(
            f"Insights failed validation: {e.error_count()} errors",
            details={"errors": e.errors(include_url=False, include_context=False)},
        ) from e
