"""Repository for the research hierarchy - SQLAlchemy ORM version.

SectorAnalysis -> SubSector -> Stock -> StockAnalysis. All methods return
plain dicts so callers never touch lazy-loading ORM instances outside a
session.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from typing import Any, AsyncContextManager

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from sectorscope.core.logging import get_logger
from sectorscope.database.connection import get_session
from sectorscope.database.orm import SectorAnalysis, Stock, StockAnalysis, SubSector


logger = get_logger("repositories.analysis")

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]


def _analysis_to_dict(analysis: StockAnalysis) -> dict[str, Any]:
    return {
        "id": analysis.id,
        "stock_id": analysis.stock_id,
        "status": analysis.status,
        "raw_analysis": analysis.raw_analysis,
        "judge_review": analysis.judge_review,
        "insights": analysis.insights,
        "attempt_count": analysis.attempt_count,
        "failure_reason": analysis.failure_reason,
        "created_at": analysis.created_at,
        "updated_at": analysis.updated_at,
    }


def _stock_to_dict(stock: Stock, *, with_analysis: bool = False) -> dict[str, Any]:
    data = {
        "id": stock.id,
        "sub_sector_id": stock.sub_sector_id,
        "company_name": stock.company_name,
        "ticker": stock.ticker,
        "rank": stock.rank,
        "preliminary_notes": stock.preliminary_notes,
        "created_at": stock.created_at,
        "updated_at": stock.updated_at,
    }
    if with_analysis:
        data["analysis"] = _analysis_to_dict(stock.analysis) if stock.analysis else None
    return data


def _sub_sector_to_dict(
    sub_sector: SubSector, *, with_stocks: bool = False
) -> dict[str, Any]:
    data = {
        "id": sub_sector.id,
        "sector_analysis_id": sub_sector.sector_analysis_id,
        "name": sub_sector.name,
        "summary": sub_sector.summary,
        "status": sub_sector.status,
        "created_at": sub_sector.created_at,
        "updated_at": sub_sector.updated_at,
    }
    if with_stocks:
        data["stocks"] = [
            _stock_to_dict(stock, with_analysis=True) for stock in sub_sector.stocks
        ]
    return data


def _sector_to_dict(
    analysis: SectorAnalysis, *, with_sub_sectors: bool = False
) -> dict[str, Any]:
    data = {
        "id": analysis.id,
        "user_id": analysis.user_id,
        "sector_name": analysis.sector_name,
        "status": analysis.status,
        "full_report": analysis.full_report,
        "created_at": analysis.created_at,
        "updated_at": analysis.updated_at,
    }
    if with_sub_sectors:
        data["sub_sectors"] = [
            _sub_sector_to_dict(sub, with_stocks=True) for sub in analysis.sub_sectors
        ]
    return data


def _apply(instance: Any, fields: Mapping[str, Any]) -> None:
    columns = instance.__table__.columns.keys()
    for key, value in fields.items():
        if key not in columns or key == "id":
            raise ValueError(f"{type(instance).__name__} has no updatable field {key!r}")
        setattr(instance, key, value)


_STOCKS_WITH_ANALYSIS = selectinload(SubSector.stocks).selectinload(Stock.analysis)


class AnalysisRepository:
    """CRUD and nested reads over the research hierarchy."""

    def __init__(self, session_factory: SessionFactory = get_session):
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Sector analyses
    # ------------------------------------------------------------------

    async def create_sector_analysis(self, user_id: str, sector_name: str) -> dict[str, Any]:
        async with self._session_factory() as session:
            analysis = SectorAnalysis(
                user_id=user_id,
                sector_name=sector_name,
                status="in_progress",
            )
            session.add(analysis)
            await session.commit()
            await session.refresh(analysis)
            return _sector_to_dict(analysis)

    async def get_sector_analysis(self, sector_analysis_id: str) -> dict[str, Any] | None:
        async with self._session_factory() as session:
            analysis = await session.get(SectorAnalysis, sector_analysis_id)
            return _sector_to_dict(analysis) if analysis else None

    async def update_sector_analysis(
        self, sector_analysis_id: str, **fields: Any
    ) -> dict[str, Any] | None:
        async with self._session_factory() as session:
            analysis = await session.get(SectorAnalysis, sector_analysis_id)
            if analysis is None:
                return None
            _apply(analysis, fields)
            await session.commit()
            await session.refresh(analysis)
            return _sector_to_dict(analysis)

    async def get_sector_analysis_tree(self, sector_analysis_id: str) -> dict[str, Any] | None:
        """Sector analysis with every sub-sector, stock and stock analysis."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(SectorAnalysis)
                .where(SectorAnalysis.id == sector_analysis_id)
                .options(
                    selectinload(SectorAnalysis.sub_sectors)
                    .selectinload(SubSector.stocks)
                    .selectinload(Stock.analysis)
                )
            )
            analysis = result.scalar_one_or_none()
            return _sector_to_dict(analysis, with_sub_sectors=True) if analysis else None

    async def complete_sector_research(
        self,
        sector_analysis_id: str,
        full_report: str,
        sub_sectors: Sequence[Mapping[str, Any]],
    ) -> list[dict[str, Any]]:
        """Store the report and its sub-sectors, and mark the analysis completed.

        Runs in one transaction and replaces sub-sectors from any earlier
        attempt, so a redelivered research job does not duplicate rows.

        Args:
            sub_sectors: ``{"name", "summary", "stocks": [{"company_name",
                "ticker", "preliminary_notes"}]}`` per sub-sector
        """
        async with self._session_factory() as session:
            analysis = await session.get(SectorAnalysis, sector_analysis_id)
            if analysis is None:
                raise LookupError(f"Sector analysis {sector_analysis_id} not found")

            await session.execute(
                delete(SubSector).where(SubSector.sector_analysis_id == sector_analysis_id)
            )

            created: list[SubSector] = []
            for parsed in sub_sectors:
                sub = SubSector(
                    sector_analysis_id=sector_analysis_id,
                    name=parsed["name"],
                    summary=parsed.get("summary", ""),
                    status="pending",
                )
                sub.stocks = [
                    Stock(
                        company_name=candidate["company_name"],
                        ticker=candidate.get("ticker"),
                        preliminary_notes=candidate.get("preliminary_notes", ""),
                        rank=0,
                    )
                    for candidate in parsed.get("stocks", [])
                ]
                session.add(sub)
                created.append(sub)

            analysis.full_report = full_report
            analysis.status = "completed"
            await session.commit()

            return [_sub_sector_to_dict(sub) for sub in created]

    async def list_related_ids(self, sector_analysis_id: str) -> list[str]:
        """Ids of the sector analysis and every descendant entity."""
        ids = [sector_analysis_id]
        async with self._session_factory() as session:
            sub_ids = (
                await session.execute(
                    select(SubSector.id).where(SubSector.sector_analysis_id == sector_analysis_id)
                )
            ).scalars().all()
            if not sub_ids:
                return ids
            ids.extend(sub_ids)

            stock_ids = (
                await session.execute(
                    select(Stock.id).where(Stock.sub_sector_id.in_(sub_ids))
                )
            ).scalars().all()
            if not stock_ids:
                return ids
            ids.extend(stock_ids)

            analysis_ids = (
                await session.execute(
                    select(StockAnalysis.id).where(StockAnalysis.stock_id.in_(stock_ids))
                )
            ).scalars().all()
            ids.extend(analysis_ids)
        return ids

    # ------------------------------------------------------------------
    # Sub-sectors and stocks
    # ------------------------------------------------------------------

    async def get_sub_sector(self, sub_sector_id: str) -> dict[str, Any] | None:
        """Sub-sector with its stocks (ordered by rank) and their analyses."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(SubSector)
                .where(SubSector.id == sub_sector_id)
                .options(_STOCKS_WITH_ANALYSIS)
            )
            sub = result.scalar_one_or_none()
            return _sub_sector_to_dict(sub, with_stocks=True) if sub else None

    async def update_sub_sector(self, sub_sector_id: str, **fields: Any) -> dict[str, Any] | None:
        async with self._session_factory() as session:
            sub = await session.get(SubSector, sub_sector_id)
            if sub is None:
                return None
            _apply(sub, fields)
            await session.commit()
            await session.refresh(sub)
            return _sub_sector_to_dict(sub)

    async def get_stock(self, stock_id: str) -> dict[str, Any] | None:
        """Stock with its analysis and the name of its sub-sector."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Stock)
                .where(Stock.id == stock_id)
                .options(selectinload(Stock.analysis), selectinload(Stock.sub_sector))
            )
            stock = result.scalar_one_or_none()
            if stock is None:
                return None
            data = _stock_to_dict(stock, with_analysis=True)
            data["sub_sector_name"] = stock.sub_sector.name
            return data

    async def set_stock_ranks(
        self, sub_sector_id: str, ranks: Mapping[str, int]
    ) -> list[dict[str, Any]]:
        """Persist ranks for a sub-sector's stocks; returns them ordered by rank."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Stock).where(Stock.sub_sector_id == sub_sector_id)
            )
            stocks = result.scalars().all()
            for stock in stocks:
                if stock.id in ranks:
                    stock.rank = ranks[stock.id]
            await session.commit()

            ordered = sorted(stocks, key=lambda s: (s.rank == 0, s.rank))
            return [_stock_to_dict(stock) for stock in ordered]

    # ------------------------------------------------------------------
    # Stock analyses
    # ------------------------------------------------------------------

    async def ensure_stock_analysis(self, stock_id: str) -> tuple[dict[str, Any], bool]:
        """Return the stock's analysis, creating a pending one if it has none.

        The second element is True when a new row was created.
        """
        async with self._session_factory() as session:
            existing = (
                await session.execute(
                    select(StockAnalysis).where(StockAnalysis.stock_id == stock_id)
                )
            ).scalar_one_or_none()
            if existing is not None:
                return _analysis_to_dict(existing), False

            analysis = StockAnalysis(stock_id=stock_id, status="pending", attempt_count=1)
            session.add(analysis)
            try:
                await session.commit()
            except IntegrityError:
                # Created concurrently by another trigger
                await session.rollback()
                existing = (
                    await session.execute(
                        select(StockAnalysis).where(StockAnalysis.stock_id == stock_id)
                    )
                ).scalar_one()
                return _analysis_to_dict(existing), False

            await session.refresh(analysis)
            return _analysis_to_dict(analysis), True

    async def get_stock_analysis(self, stock_analysis_id: str) -> dict[str, Any] | None:
        async with self._session_factory() as session:
            analysis = await session.get(StockAnalysis, stock_analysis_id)
            return _analysis_to_dict(analysis) if analysis else None

    async def update_stock_analysis(
        self, stock_analysis_id: str, **fields: Any
    ) -> dict[str, Any] | None:
        async with self._session_factory() as session:
            analysis = await session.get(StockAnalysis, stock_analysis_id)
            if analysis is None:
                return None
            _apply(analysis, fields)
            await session.commit()
            await session.refresh(analysis)
            return _analysis_to_dict(analysis)

    async def get_sub_sector_family(self, stock_analysis_id: str) -> dict[str, Any] | None:
        """The sub-sector owning a stock analysis, with all sibling stocks.

        Returns ``{"sub_sector": dict, "stocks": [stock dict with "analysis"]}``
        read fresh from storage.
        """
        async with self._session_factory() as session:
            sub_sector_id = (
                await session.execute(
                    select(Stock.sub_sector_id)
                    .join(StockAnalysis, StockAnalysis.stock_id == Stock.id)
                    .where(StockAnalysis.id == stock_analysis_id)
                )
            ).scalar_one_or_none()
            if sub_sector_id is None:
                return None

            sub = (
                await session.execute(
                    select(SubSector)
                    .where(SubSector.id == sub_sector_id)
                    .options(_STOCKS_WITH_ANALYSIS)
                )
            ).scalar_one()
            data = _sub_sector_to_dict(sub, with_stocks=True)
            stocks = data.pop("stocks")
            return {"sub_sector": data, "stocks": stocks}
