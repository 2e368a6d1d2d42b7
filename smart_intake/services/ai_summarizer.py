# smart_intake/services/ai_summarizer.py
from __future__ import annotations

from typing import Optional

from ..integrations.llm_client import LLMClient


class AISummarizer:
    """Prose for Analyze (market context) and Synthesize (executive summary). Both optional."""

    def __init__(self, llm: Optional[LLMClient] = None) -> None:
        self.llm = llm or LLMClient()

    async def market_context(self, *, asset_type: str, state: Optional[str]) -> str:
        where = state or "the United States"
        return await self.llm.chat_complete(
            system="You are a healthcare real estate market analyst.",
            user=(
                f"Provide current market conditions for {asset_type} facilities in {where}. "
                "Include recent transaction activity, cap rate trends, occupancy trends, regulatory changes "
                "and notable market events. Keep to 300 words max."
            ),
        )

    async def executive_summary(self, prompt: str) -> str:
        return await self.llm.chat_complete(
            system="You are an executive deal analyst. Write a concise, actionable executive summary.",
            user=prompt,
        )
