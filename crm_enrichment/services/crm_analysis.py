"""Analysis flow: read a full CRM export, cluster it, and refine the result."""

import logging
from typing import Sequence

from crm_enrichment.exceptions import CrmEnrichmentError
from crm_enrichment.schemas.crm import (
    ClusterRefinementRequest,
    CrmAnalysisRequest,
    CrmAnalysisResponse,
    CrmCluster,
)
from crm_enrichment.services.ai_clustering import generate_clusters, refine_clusters
from crm_enrichment.services.column_detector import detect_column_mappings
from crm_enrichment.services.crm_parser import parse_crm_file

logger = logging.getLogger(__name__)


def build_analysis_response(data: bytes, request: CrmAnalysisRequest) -> CrmAnalysisResponse:
    """
    Cluster every row of an uploaded file.

    The submitted column mapping goes to clustering as-is; when none was
    submitted the detected mapping is used instead. Parsing and model
    failures come back as ``status="error"`` rather than raising.
    """
    options = request.analysis_options

    try:
        parsed = parse_crm_file(data)
        column_mapping = request.column_mapping
        if not column_mapping:
            column_mapping = detect_column_mappings(parsed.columns, parsed.rows).detected
            logger.info("No column mapping submitted, using %d detected columns", len(column_mapping))

        clusters = generate_clusters(
            parsed.rows,
            column_mapping,
            num_clusters=options.num_clusters,
            focus_on=options.focus_on,
        )
    except CrmEnrichmentError as e:
        logger.error("CRM analysis failed: %s", e)
        return CrmAnalysisResponse(clusters=[], status="error", error_message=str(e))

    return CrmAnalysisResponse(clusters=clusters, status="completed")


def apply_cluster_refinement(
    clusters: Sequence[CrmCluster],
    request: ClusterRefinementRequest,
) -> list[CrmCluster]:
    """Run a merge, split or rename request against the current clusters."""
    return refine_clusters(
        clusters,
        request.action,
        cluster_ids=request.cluster_ids,
        new_name=request.new_name,
        split_criteria=request.split_criteria,
    )
