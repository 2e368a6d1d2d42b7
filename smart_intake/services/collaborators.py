# smart_intake/services/collaborators.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from ..config import settings
from ..domain.analysis import analyze_deal
from ..domain.extraction import classify_document
from ..domain.pipeline_types import AnalysisSummary, ExtractedDealData, RedFlag, UploadedFile
from ..integrations.llm_client import LLMClient
from .ai_summarizer import AISummarizer
from .deal_writer import DealRecordWriter
from .document_analyzer import DocumentAnalyzer
from .facility_matcher import FacilityMatcher
from .file_reader import FileContent, read_file
from .snapshots import SnapshotWriter
from .tool_runner import ToolRunner


class RuleBasedDealAnalyzer:
    async def analyze(
        self,
        *,
        data: ExtractedDealData,
        red_flags: Sequence[RedFlag],
        completeness_score: int,
        market_context: Optional[str] = None,
    ) -> AnalysisSummary:
        return analyze_deal(data, red_flags, completeness_score, market_context=market_context)


@dataclass
class PipelineCollaborators:
    """
    Everything the sequencer delegates to. Optional members may be None:
    the pipeline then takes its rule-based fallback for that step.
    """
    read_file: Callable[[UploadedFile], FileContent] = read_file
    classify: Callable[[str, str], str] = classify_document
    document_analyzer: Optional[DocumentAnalyzer] = None
    facility_matcher: Optional[FacilityMatcher] = None
    deal_writer: DealRecordWriter = field(default_factory=DealRecordWriter)
    deal_analyzer: RuleBasedDealAnalyzer = field(default_factory=RuleBasedDealAnalyzer)
    tool_runner: ToolRunner = field(default_factory=ToolRunner)
    summarizer: Optional[AISummarizer] = None
    snapshots: SnapshotWriter = field(default_factory=SnapshotWriter)

    @classmethod
    def default(cls) -> "PipelineCollaborators":
        llm = LLMClient()
        ai_enabled = llm.enabled()
        return cls(
            document_analyzer=DocumentAnalyzer(llm) if ai_enabled else None,
            facility_matcher=FacilityMatcher() if settings.cms_enabled else None,
            summarizer=AISummarizer(llm) if ai_enabled else None,
        )
