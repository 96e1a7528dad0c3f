"""Pipeline state machine and entry/approval triggers."""

from .status import (
    MAX_ANALYSIS_ATTEMPTS,
    TOP_STOCK_COUNT,
    AnalysisStatus,
    SectorStatus,
    SubSectorStatus,
    complete_sub_sector_if_done,
    derive_sub_sector_status,
    top_ranked_stocks,
)

__all__ = [
    "MAX_ANALYSIS_ATTEMPTS",
    "TOP_STOCK_COUNT",
    "AnalysisStatus",
    "SectorStatus",
    "SubSectorStatus",
    "complete_sub_sector_if_done",
    "derive_sub_sector_status",
    "top_ranked_stocks",
]
