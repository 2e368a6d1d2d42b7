# smart_intake/models.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


def _uuid() -> str:
    return str(uuid.uuid4())


# -----------------------------
# Pipeline session snapshots
# -----------------------------
class PipelineSessionSnapshot(Base):
    __tablename__ = "pipeline_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    status: Mapped[str] = mapped_column(String(40), nullable=False, default="idle", index=True)
    current_phase: Mapped[str] = mapped_column(String(20), nullable=False, default="ingest")

    phase_results_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    files_metadata_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    extracted_data_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    clarifications_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    answers_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tool_results_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    red_flags_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    synthesis_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    completeness_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    missing_documents_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    deal_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)


# -----------------------------
# Deal records (written by Assemble)
# -----------------------------
class Deal(Base):
    __tablename__ = "deals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    asset_type: Mapped[str] = mapped_column(String(20), nullable=False, default="SNF")  # SNF|ALF|ILF|HOSPICE
    deal_structure: Mapped[str] = mapped_column(String(40), nullable=False, default="purchase")
    status: Mapped[str] = mapped_column(String(40), nullable=False, default="new")  # new|reviewed
    beds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    primary_state: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    asking_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    source_session_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)

    analysis_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    facilities: Mapped[List["Facility"]] = relationship(back_populates="deal", cascade="all, delete-orphan")
    documents: Mapped[List["DealDocument"]] = relationship(back_populates="deal", cascade="all, delete-orphan")
    stages: Mapped[List["AnalysisStage"]] = relationship(back_populates="deal", cascade="all, delete-orphan")


class Facility(Base):
    __tablename__ = "facilities"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    deal_id: Mapped[str] = mapped_column(ForeignKey("deals.id", ondelete="CASCADE"), nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    ccn: Mapped[Optional[str]] = mapped_column(String(20), nullable=True, index=True)
    asset_type: Mapped[str] = mapped_column(String(20), nullable=False, default="SNF")
    address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    zip_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    licensed_beds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    certified_beds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    year_built: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    cms_rating: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    cms_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    deal: Mapped["Deal"] = relationship(back_populates="facilities")


class DealDocument(Base):
    __tablename__ = "deal_documents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    deal_id: Mapped[str] = mapped_column(ForeignKey("deals.id", ondelete="CASCADE"), nullable=False, index=True)

    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    media_type: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    document_type: Mapped[str] = mapped_column(String(40), nullable=False, default="unknown")
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    raw_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    deal: Mapped["Deal"] = relationship(back_populates="documents")


class AnalysisStage(Base):
    __tablename__ = "analysis_stages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    deal_id: Mapped[str] = mapped_column(ForeignKey("deals.id", ondelete="CASCADE"), nullable=False, index=True)

    stage: Mapped[str] = mapped_column(String(40), nullable=False)
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")  # pending|in_progress|completed

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    deal: Mapped["Deal"] = relationship(back_populates="stages")
