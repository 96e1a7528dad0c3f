"""Tests for status derivation and the sub-sector completion cascade."""

from __future__ import annotations

import pytest

from sectorscope.pipeline.status import (
    complete_sub_sector_if_done,
    derive_sub_sector_status,
    top_ranked_stocks,
)


def _stocks(*ranks):
    return [{"id": f"s{i}", "rank": rank} for i, rank in enumerate(ranks)]


class TestTopRankedStocks:
    def test_lowest_ranks_first(self):
        top = top_ranked_stocks(_stocks(7, 3, 1, 0, 2, 6, 5, 4))
        assert [s["rank"] for s in top] == [1, 2, 3, 4, 5]

    def test_unranked_ignored(self):
        assert top_ranked_stocks(_stocks(0, 0, 2)) == [{"id": "s2", "rank": 2}]


class TestDeriveSubSectorStatus:
    def test_completed_when_all_top_done(self):
        stocks = _stocks(1, 2, 3, 4, 5, 6)
        analyses = {f"s{i}": {"status": "completed"} for i in range(5)}
        assert derive_sub_sector_status(stocks, analyses) == "completed"

    def test_waits_for_missing_analysis(self):
        stocks = _stocks(1, 2)
        analyses = {"s0": {"status": "completed"}}
        assert derive_sub_sector_status(stocks, analyses) == "analyzing"

    def test_review_failed_blocks_completion(self):
        stocks = _stocks(1, 2)
        analyses = {"s0": {"status": "completed"}, "s1": {"status": "review_failed"}}
        assert derive_sub_sector_status(stocks, analyses, current="analyzing") == "analyzing"

    def test_no_ranked_stocks_keeps_current(self):
        assert derive_sub_sector_status(_stocks(0, 0), {}, current="approved") == "approved"


class TestCompletionCascade:
    async def _sub_sector(self, repository, count):
        analysis = await repository.create_sector_analysis("user-1", "Clean Energy")
        await repository.complete_sector_research(
            analysis["id"],
            "report",
            [
                {
                    "name": "Wind Power",
                    "summary": "",
                    "stocks": [{"company_name": f"Co {n}"} for n in range(count)],
                }
            ],
        )
        sub = (await repository.get_sector_analysis_tree(analysis["id"]))["sub_sectors"][0]
        await repository.set_stock_ranks(
            sub["id"], {s["id"]: rank for rank, s in enumerate(sub["stocks"], start=1)}
        )
        await repository.update_sub_sector(sub["id"], status="analyzing")
        analyses = []
        for stock in (await repository.get_sub_sector(sub["id"]))["stocks"][:5]:
            row, _ = await repository.ensure_stock_analysis(stock["id"])
            analyses.append(row)
        return sub, analyses

    @pytest.mark.asyncio
    async def test_completes_after_last_top_stock(self, repository):
        sub, analyses = await self._sub_sector(repository, 6)

        for row in analyses[:-1]:
            await repository.update_stock_analysis(row["id"], status="completed")
            assert await complete_sub_sector_if_done(repository, row["id"]) is False
        assert (await repository.get_sub_sector(sub["id"]))["status"] == "analyzing"

        await repository.update_stock_analysis(analyses[-1]["id"], status="completed")
        assert await complete_sub_sector_if_done(repository, analyses[-1]["id"]) is True
        assert (await repository.get_sub_sector(sub["id"]))["status"] == "completed"

    @pytest.mark.asyncio
    async def test_idempotent_and_order_independent(self, repository):
        sub, analyses = await self._sub_sector(repository, 5)
        for row in analyses:
            await repository.update_stock_analysis(row["id"], status="completed")

        # Every sibling runs the check, in any order
        results = [
            await complete_sub_sector_if_done(repository, row["id"]) for row in reversed(analyses)
        ]
        assert results == [True] * 5
        assert await complete_sub_sector_if_done(repository, analyses[0]["id"]) is True
        assert (await repository.get_sub_sector(sub["id"]))["status"] == "completed"

    @pytest.mark.asyncio
    async def test_unknown_analysis(self, repository):
        assert await complete_sub_sector_if_done(repository, "missing") is False
