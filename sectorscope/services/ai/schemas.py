"""Structured insight schema extracted from an approved stock analysis."""

from __future__ import annotations

import re
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class Recommendation(str, Enum):
    STRONG_BUY = "Strong Buy"
    BUY = "Buy"
    HOLD = "Hold"
    SELL = "Sell"
    STRONG_SELL = "Strong Sell"


class _InsightModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
        extra="ignore",
    )


class PriceRanges(_InsightModel):
    strong_buy: Optional[str] = None
    accumulate: Optional[str] = None
    fair_value: str = ""
    reduce: Optional[str] = None
    sell: Optional[str] = None


class Scenario(_InsightModel):
    target: str = ""
    assumptions: str = ""


class Scenarios(_InsightModel):
    bull: Scenario = Field(default_factory=Scenario)
    base: Scenario = Field(default_factory=Scenario)
    bear: Scenario = Field(default_factory=Scenario)


class KeyMetric(_InsightModel):
    label: str
    value: str
    sentiment: Literal["positive", "neutral", "negative"] = "neutral"

    @field_validator("sentiment", mode="before")
    @classmethod
    def normalize_sentiment(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


class StructuredInsights(_InsightModel):
    """Dashboard-ready summary of a stock analysis."""

    recommendation: Recommendation
    conviction_score: str = ""
    analysis_confidence: str = ""
    target_price: Optional[float] = None
    implied_annual_return: str = ""
    price_ranges: PriceRanges = Field(default_factory=PriceRanges)
    scenarios: Scenarios = Field(default_factory=Scenarios)
    summary: str
    key_metrics: list[KeyMetric] = Field(default_factory=list)
    opportunities: list[str] = Field(default_factory=list)
    risks: list[str] = Field(default_factory=list)
    catalysts: list[str] = Field(default_factory=list)

    @field_validator("recommendation", mode="before")
    @classmethod
    def normalize_recommendation(cls, v):
        if isinstance(v, str):
            cleaned = " ".join(v.replace("_", " ").split()).title()
            return cleaned
        return v

    @field_validator("target_price", mode="before")
    @classmethod
    def parse_target_price(cls, v):
        # Models sometimes answer "$123.45" or "null"
        if isinstance(v, str):
            match = re.search(r"-?\d[\d,]*(?:\.\d+)?", v)
            if not match:
                return None
            return float(match.group(0).replace(",", ""))
        return v

    def to_storage(self) -> dict:
        """JSON-ready dict with camelCase keys, as stored and served."""
        return self.model_dump(mode="json", by_alias=True)
