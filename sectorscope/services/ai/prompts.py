"""
Prompt builders for the five pipeline stages.

The output formats requested here are the contracts that
``sectorscope.services.ai.parsing`` reads back, so the two modules change
together.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any, Mapping, Optional


def _current_year() -> int:
    return datetime.now(UTC).year


def sector_research_prompt(sector_name: str) -> str:
    year = _current_year()
    return f"""You are a professional equity research analyst running sector-wide research.

Analyze the **{sector_name}** sector and find the most promising opportunities for a 5-10 year holding period.

TASK:
1. Identify 4-8 distinct sub-sectors of {sector_name} with strong growth drivers.
2. For each sub-sector write a 2-3 paragraph overview of the opportunity.
3. For each sub-sector identify 5-15 companies with high growth potential, give each a 1-2 paragraph preliminary analysis, and rank them.
4. Use web search for information current as of {year}. Prefer verifiable facts and cite metrics.

This is screening, not deep analysis: pick the companies worth a closer look.

OUTPUT FORMAT (follow exactly, it is parsed by software):

---
## Sub-sector: <Name>

<2-3 paragraph overview>

**Key Trends:**
- <Trend>

### Rank 1/10: <Company Name> (<TICKER>)
<1-2 paragraph preliminary analysis>

### Rank 2/10: <Company Name> (<TICKER>)
<analysis>
---

RULES:
- Write "Private" in place of the ticker for private companies.
- Be objective; cover risks as well as opportunities.
- Do not pad or compress the analysis artificially."""


def stock_ranking_prompt(
    sub_sector_name: str,
    candidates: Sequence[Mapping[str, Any]],
) -> str:
    lines = []
    for index, candidate in enumerate(candidates, start=1):
        ticker = candidate.get("ticker") or "Private"
        notes = (candidate.get("preliminary_notes") or "").strip() or "(no notes)"
        lines.append(f"{index}. {candidate['company_name']} ({ticker})\n{notes}")
    listing = "\n\n".join(lines)

    return f"""You are a portfolio strategist ranking candidate companies in the **{sub_sector_name}** sub-sector.

Order ALL of the candidates below by estimated long-term (5-10 year) return potential, best first.
Weigh business quality, industry tailwinds, financial health and valuation.

CANDIDATES:

{listing}

OUTPUT FORMAT:
Return ONLY a JSON object listing every candidate number exactly once, best first:
{{"ranking": [3, 1, 2]}}"""


def stock_analysis_prompt(
    company_name: str,
    ticker: Optional[str],
    sub_sector_name: str,
    attempt_number: int,
    previous_review: Optional[str] = None,
) -> str:
    label = f"({ticker})" if ticker else "(Private Company)"
    attempt_note = f"This is attempt #{attempt_number}."
    if attempt_number > 1:
        attempt_note += (
            " A previous attempt was rejected in review. Vary your research approach"
            " and dig deeper into the areas found insufficient."
        )

    feedback = ""
    if attempt_number > 1 and previous_review:
        feedback = f"\n## Reviewer Feedback From The Previous Attempt\n\n{previous_review.strip()}\n"

    return f"""You are a senior equity research analyst writing an in-depth report on **{company_name}** {label}.

The report is part of research into the **{sub_sector_name}** sub-sector. {attempt_note}
{feedback}
## Weighting
- Business quality (40%): moat durability, unit economics, capital allocation, management
- Industry context (25%): structural trends, competition, disruption and regulation
- Financial health (20%): balance sheet, cash generation, performance through cycles
- Valuation (15%): historical ranges, peers, several methodologies

## Required Sections
1. Business Overview & Model
2. Competitive Analysis
3. Financial Analysis (3-5 year history, margins, cash flow, balance sheet)
4. Management & Governance
5. Industry Dynamics & Market Opportunity
6. Valuation Assessment
7. Investment Thesis & Catalysts
8. Risk Factors
9. Investment Synthesis: thesis, base case 5-year price target with methodology and implied
   annual return, bull/base/bear scenarios, conviction score (1-10), analysis confidence (1-5)

## Research Approach
- Prefer primary sources: filings, earnings call transcripts, investor presentations.
- Focus on information from {_current_year()} while analyzing historical patterns.
- State assumptions and confidence levels; name the data gaps.

Write in a professional research report style with clear section headers."""


def judge_review_prompt(
    company_name: str,
    attempt_number: int,
    raw_analysis: str,
    max_attempts: int = 3,
) -> str:
    return f"""You are a senior research director reviewing an analyst report before publication.

## Report To Review

**Company:** {company_name}
**Attempt:** {attempt_number}/{max_attempts}

{raw_analysis}

## Evaluate
1. Completeness: are all required sections present and substantive?
2. Factual accuracy: are claims supported, calculations right, comparisons reasonable?
3. Research quality: is the information current ({_current_year()}) and well sourced?
4. Investment utility: are risks, opportunities and valuation actionable?
5. Red flags: implausible claims, missing risks, promotional tone, superficial analysis.
6. Synthesis: clear thesis, price target methodology, justified conviction and confidence.

## Output Format

**DECISION:** APPROVED or REJECTED

**CONFIDENCE SCORE:** 1-10

**STRENGTHS:**
- ...

**ISSUES FOUND:** (if rejected)
- ...

**GUIDANCE FOR RETRY:** (if rejected)
1-2 sentences on what the next attempt should focus on.

APPROVED means investment-grade and good enough to publish. REJECTED means material gaps.
Be tough but fair."""


def format_insights_prompt(
    company_name: str,
    approved_analysis: str,
    judge_review: str,
) -> str:
    return f"""You are extracting structured data from an approved investment analysis for a dashboard.

## Approved Analysis

**Company:** {company_name}

{approved_analysis}

## Reviewer Notes

{judge_review}

## Task

Return ONLY a JSON object with this shape:

{{
  "recommendation": "Strong Buy | Buy | Hold | Sell | Strong Sell",
  "convictionScore": "1-10 with explanation",
  "analysisConfidence": "1-5 with data quality notes",
  "targetPrice": 123.45,
  "impliedAnnualReturn": "percentage over 5 years",
  "priceRanges": {{
    "strongBuy": "price or null",
    "accumulate": "range or null",
    "fairValue": "range",
    "reduce": "range or null",
    "sell": "threshold or null"
  }},
  "scenarios": {{
    "bull": {{"target": "price", "assumptions": "brief"}},
    "base": {{"target": "price", "assumptions": "brief"}},
    "bear": {{"target": "price", "assumptions": "brief"}}
  }},
  "summary": "2-3 sentence executive summary",
  "keyMetrics": [{{"label": "name", "value": "value with units", "sentiment": "positive | neutral | negative"}}],
  "opportunities": ["3-5 growth drivers"],
  "risks": ["3-5 risk factors"],
  "catalysts": ["3-5 near-term events with timeframe"]
}}

Use null for targetPrice when the analysis gives none. 4-8 key metrics."""
