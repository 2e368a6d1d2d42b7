# smart_intake/services/document_analyzer.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..config import settings
from ..integrations.llm_client import LLMClient

_SYSTEM = (
    "You are a healthcare real estate analyst. Read the document excerpt and reply with a JSON object: "
    '{"summary": string (2-3 sentences), "keyFindings": [string, ...] (at most 8), '
    '"confidence": number 0-100 (how reliable the document is for underwriting)}.'
)


@dataclass(frozen=True)
class ContentAnalysis:
    summary: str
    key_findings: tuple[str, ...]
    confidence: float


def _clamp_confidence(v: object) -> float:
    try:
        f = float(v)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0.0
    return max(0.0, min(100.0, f))


class DocumentAnalyzer:
    """LLM-backed content summary. Raises CollaboratorUnavailable when the model cannot be used."""

    def __init__(self, llm: Optional[LLMClient] = None) -> None:
        self.llm = llm or LLMClient()

    async def analyze(self, *, text: str, document_type: str, filename: str) -> ContentAnalysis:
        excerpt = (text or "")[: int(settings.analyzer_text_chars)]
        user = f"Filename: {filename}\nDocument type: {document_type}\n\n---\n{excerpt}"
        data = await self.llm.chat_json(system=_SYSTEM, user=user)

        findings = data.get("keyFindings") or data.get("key_findings") or []
        if not isinstance(findings, list):
            findings = [str(findings)]

        return ContentAnalysis(
            summary=str(data.get("summary") or f"{document_type} document"),
            key_findings=tuple(str(x) for x in findings[:8]),
            confidence=_clamp_confidence(data.get("confidence")),
        )
