"""AI collaborator: client, prompts and output parsing."""

from sectorscope.services.ai.client import AIClient, AIResult, TokenUsage
from sectorscope.services.ai.schemas import StructuredInsights

__all__ = ["AIClient", "AIResult", "StructuredInsights", "TokenUsage"]
