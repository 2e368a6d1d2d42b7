# smart_intake/services/deal_writer.py
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from ..config import settings
from ..db import session_scope
from ..domain.pipeline_types import AnalysisSummary, ExtractedDealData, ParsedFile
from ..models import AnalysisStage, Deal, DealDocument, Facility

ANALYSIS_STAGES = (
    "document_upload",
    "census_validation",
    "revenue_analysis",
    "expense_analysis",
    "cms_integration",
    "valuation_coverage",
)


@dataclass(frozen=True)
class DealRecord:
    deal_id: str
    facility_ids: list[str]


def _create_deal_sync(session_id: str, data: ExtractedDealData, files: Sequence[ParsedFile]) -> DealRecord:
    with session_scope() as db:
        deal = Deal(
            name=data.suggested_deal_name,
            asset_type=data.suggested_asset_type,
            deal_structure="purchase",
            status="new",
            beds=data.total_beds(),
            primary_state=data.primary_state(),
            asking_price=data.financials.asking_price,
            source_session_id=session_id,
        )
        db.add(deal)
        db.flush()

        facility_rows: list[Facility] = []
        for f in data.facilities:
            row = Facility(
                deal_id=deal.id,
                name=f.name,
                ccn=f.ccn,
                asset_type=f.asset_type,
                address=f.address,
                city=f.city,
                state=f.state,
                zip_code=f.zip_code,
                licensed_beds=f.licensed_beds,
                certified_beds=f.certified_beds,
                year_built=f.year_built,
                cms_rating=f.cms_data.overall_rating if f.cms_data else None,
                cms_json=json.dumps(f.cms_data.as_dict()) if f.cms_data else None,
            )
            db.add(row)
            facility_rows.append(row)

        for order, stage in enumerate(ANALYSIS_STAGES, start=1):
            db.add(AnalysisStage(deal_id=deal.id, stage=stage, order=order, status="in_progress"))

        limit = int(settings.max_raw_text_chars)
        for pf in files:
            db.add(
                DealDocument(
                    deal_id=deal.id,
                    filename=pf.filename,
                    media_type=pf.media_type,
                    size_bytes=pf.size_bytes,
                    document_type=pf.document_type,
                    summary=json.dumps(
                        {"summary": pf.summary, "keyFindings": list(pf.key_findings), "confidence": pf.confidence}
                    ),
                    confidence=float(pf.confidence or 0),
                    raw_text=(pf.raw_text or "")[:limit] or None,
                )
            )

        # facility ids come from the column default, assigned at flush
        db.flush()
        return DealRecord(deal_id=deal.id, facility_ids=[r.id for r in facility_rows])


def _mark_reviewed_sync(deal_id: str, analysis: AnalysisSummary) -> None:
    with session_scope() as db:
        deal = db.get(Deal, deal_id)
        if deal is None:
            return
        deal.analysis_json = json.dumps(
            {
                "confidenceScore": analysis.confidence_score,
                "thesis": analysis.thesis,
                "narrative": analysis.narrative,
            },
            ensure_ascii=False,
        )
        deal.status = "reviewed"
        deal.updated_at = datetime.utcnow()


class DealRecordWriter:
    """SQLAlchemy-backed writer. Errors propagate; the Assemble phase has no fallback for a missing deal."""

    async def create_deal(
        self, *, session_id: str, data: ExtractedDealData, files: Sequence[ParsedFile]
    ) -> DealRecord:
        return await asyncio.to_thread(_create_deal_sync, session_id, data, list(files))

    async def mark_reviewed(self, deal_id: str, analysis: AnalysisSummary) -> None:
        await asyncio.to_thread(_mark_reviewed_sync, deal_id, analysis)
