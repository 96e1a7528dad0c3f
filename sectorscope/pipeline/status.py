"""Entity lifecycle states and the sub-sector completion cascade.

StockAnalysis:
    pending -> analyzing -> (judge) -> completed
                         -> analyzing (rejected, attempt < 3, attempt + 1)
                         -> review_failed (rejected on attempt 3, or hard failure)

SubSector:
    pending -> approved -> analyzing -> completed
    analyzing -> pending when ranking fails

Sub-sector completion is derived from persisted state every time a stock
finishes formatting. Siblings finish in any order and may all run the check;
recomputing from storage keeps the result identical regardless.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import Enum
from typing import TYPE_CHECKING, Any

from sectorscope.core.logging import get_logger

if TYPE_CHECKING:
    from sectorscope.repositories.analysis_orm import AnalysisRepository


logger = get_logger("pipeline.status")

# Fixed fan-out: the best-ranked stocks get automatic deep analysis
TOP_STOCK_COUNT = 5

# Analysis -> judge cycles per stock before giving up
MAX_ANALYSIS_ATTEMPTS = 3

# Delay before a judge-rejected analysis runs again (seconds)
JUDGE_RETRY_DELAY = 5.0


class SectorStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class SubSectorStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    ANALYZING = "analyzing"
    COMPLETED = "completed"


class AnalysisStatus(str, Enum):
    PENDING = "pending"
    ANALYZING = "analyzing"
    REVIEW_FAILED = "review_failed"
    COMPLETED = "completed"


def top_ranked_stocks(
    stocks: Iterable[Mapping[str, Any]],
    limit: int = TOP_STOCK_COUNT,
) -> list[Mapping[str, Any]]:
    """Return the ``limit`` lowest-rank stocks, ignoring unranked (rank 0) ones."""
    ranked = [s for s in stocks if (s.get("rank") or 0) >= 1]
    ranked.sort(key=lambda s: s["rank"])
    return ranked[:limit]


def derive_sub_sector_status(
    stocks: Iterable[Mapping[str, Any]],
    analyses: Mapping[str, Mapping[str, Any] | None],
    current: str = SubSectorStatus.ANALYZING.value,
) -> str:
    """Derive a sub-sector's status from its stocks and their analyses.

    Args:
        stocks: Stock dicts with ``id`` and ``rank``
        analyses: Analysis dicts keyed by stock id (missing = not started)
        current: Status to keep when the sub-sector is not finished

    Returns:
        ``completed`` when every top-ranked stock has a completed analysis,
        otherwise ``current``.
    """
    top = top_ranked_stocks(stocks)
    if not top:
        return current

    for stock in top:
        analysis = analyses.get(stock["id"])
        if analysis is None or analysis.get("status") != AnalysisStatus.COMPLETED.value:
            return current

    return SubSectorStatus.COMPLETED.value


async def complete_sub_sector_if_done(
    repository: AnalysisRepository,
    stock_analysis_id: str,
) -> bool:
    """Mark the parent sub-sector completed once all top stocks are done.

    Safe to call repeatedly and concurrently; returns True when the
    sub-sector is (now or already) completed.
    """
    family = await repository.get_sub_sector_family(stock_analysis_id)
    if family is None:
        logger.warning(f"No sub-sector found for stock analysis {stock_analysis_id}")
        return False

    sub_sector = family["sub_sector"]
    stocks = family["stocks"]
    analyses = {stock["id"]: stock.get("analysis") for stock in stocks}

    status = derive_sub_sector_status(stocks, analyses, current=sub_sector["status"])
    if status != SubSectorStatus.COMPLETED.value:
        return False

    if sub_sector["status"] != SubSectorStatus.COMPLETED.value:
        await repository.update_sub_sector(
            sub_sector["id"], status=SubSectorStatus.COMPLETED.value
        )
        logger.info(
            f"Sub-sector {sub_sector['name']} completed - all top stocks analyzed",
            extra={"extra_fields": {"sub_sector_id": sub_sector["id"]}},
        )
    return True
