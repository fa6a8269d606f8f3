from __future__ import annotations
from typing import Any, Literal, Optional
from pydantic import BaseModel, Field

from crm_enrichment.services.column_detector import ColumnType


FocusOn = Literal["behavior", "demographics", "both"]
RefinementAction = Literal["merge", "split", "rename"]


# ── Upload & column mapping ──────────────────────────────────────────────────

class CrmUploadResponse(BaseModel):
    file_name: str
    file_type: str
    row_count: int
    column_count: int
    columns: list[str]
    preview: list[dict[str, Any]]
    detected_mapping: dict[str, ColumnType]
    suggestions: dict[ColumnType, list[str]]
    unmapped: list[str]


# ── Clustering ───────────────────────────────────────────────────────────────

class AnalysisOptions(BaseModel):
    num_clusters: int = Field(default=5, ge=1, le=20)
    focus_on: FocusOn = "behavior"


class CrmAnalysisRequest(BaseModel):
    column_mapping: dict[str, ColumnType] = Field(default_factory=dict)
    analysis_options: AnalysisOptions = Field(default_factory=AnalysisOptions)


class CrmCluster(BaseModel):
    id: str
    name: str
    size: int
    percentage: float
    behavioral_traits: dict[str, Any] = Field(default_factory=dict)
    demographic_traits: Optional[dict[str, Any]] = None
    reasoning: str = ""


class CrmAnalysisResponse(BaseModel):
    clusters: list[CrmCluster]
    status: Literal["completed", "error"]
    error_message: Optional[str] = None


class ClusterRefinementRequest(BaseModel):
    action: RefinementAction
    cluster_ids: list[str] = Field(default_factory=list)
    new_name: Optional[str] = None
    split_criteria: Optional[dict[str, Any]] = None
