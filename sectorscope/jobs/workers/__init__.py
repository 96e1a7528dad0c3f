"""Stage workers, one per pipeline queue."""

from sectorscope.jobs.workers.base import StageWorker
from sectorscope.jobs.workers.format_insights import FormatInsightsWorker
from sectorscope.jobs.workers.judge_review import JudgeReviewWorker
from sectorscope.jobs.workers.sector_research import SectorResearchWorker
from sectorscope.jobs.workers.stock_analysis import StockAnalysisWorker
from sectorscope.jobs.workers.stock_ranking import StockRankingWorker

WORKER_CLASSES: tuple[type[StageWorker], ...] = (
    SectorResearchWorker,
    StockRankingWorker,
    StockAnalysisWorker,
    JudgeReviewWorker,
    FormatInsightsWorker,
)

__all__ = [
    "WORKER_CLASSES",
    "FormatInsightsWorker",
    "JudgeReviewWorker",
    "SectorResearchWorker",
    "StageWorker",
    "StockAnalysisWorker",
    "StockRankingWorker",
]
