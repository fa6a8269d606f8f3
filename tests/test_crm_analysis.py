"""Tests for the end-to-end analysis and refinement flow."""

import json
from unittest.mock import MagicMock

import pytest

from crm_enrichment.schemas.crm import (
    AnalysisOptions,
    ClusterRefinementRequest,
    CrmAnalysisRequest,
    CrmCluster,
)
from crm_enrichment.services import ai_clustering
from crm_enrichment.services.column_detector import ColumnType
from crm_enrichment.services.crm_analysis import apply_cluster_refinement, build_analysis_response


# ============================================================================
# FIXTURES
# ============================================================================

CSV_EXPORT = (
    "Customer ID,Email,Total Spend,Notes\n"
    + "".join(f"C{i},c{i}@shop.com,{100 * i},n{i}\n" for i in range(1, 13))
).encode("utf-8")

TWO_CLUSTERS = (
    "```json\n"
    + json.dumps([
        {"id": "cluster_1", "name": "Big Spenders", "percentage": 25},
        {"id": "cluster_2", "name": "Everyone Else", "percentage": 75},
    ])
    + "\n```"
)


@pytest.fixture
def model(monkeypatch):
    """OpenAI client stand-in; set ``model.reply`` before calling."""
    client = MagicMock()

    def _reply(text):
        client.chat.completions.create.return_value.choices = [
            MagicMock(message=MagicMock(content=text))
        ]

    client.reply = _reply
    client.reply(TWO_CLUSTERS)
    monkeypatch.setattr(ai_clustering, "_client", client)
    return client


def prompt_of(client):
    return client.chat.completions.create.call_args.kwargs["messages"][0]["content"]


# ============================================================================
# ANALYSIS
# ============================================================================

class TestBuildAnalysisResponse:

    def test_completed(self, model):
        request = CrmAnalysisRequest(
            column_mapping={"Total Spend": "revenue"},
            analysis_options=AnalysisOptions(num_clusters=2),
        )
        response = build_analysis_response(CSV_EXPORT, request)
        assert response.status == "completed"
        assert response.error_message is None
        assert [c.name for c in response.clusters] == ["Big Spenders", "Everyone Else"]

    def test_sizes_cover_the_full_file(self, model, monkeypatch):
        monkeypatch.setattr(ai_clustering.settings, "PREVIEW_ROWS", 2)
        response = build_analysis_response(CSV_EXPORT, CrmAnalysisRequest())
        assert [c.size for c in response.clusters] == [3, 9]
        assert "Total rows: 12" in prompt_of(model)

    def test_submitted_mapping_is_forwarded(self, model):
        request = CrmAnalysisRequest(column_mapping={"Notes": ColumnType.SEGMENT})
        build_analysis_response(CSV_EXPORT, request)
        prompt = prompt_of(model)
        assert "- Notes (segment, high importance)" in prompt
        assert "- Email" not in prompt

    def test_detected_mapping_used_when_none_submitted(self, model):
        build_analysis_response(CSV_EXPORT, CrmAnalysisRequest())
        prompt = prompt_of(model)
        assert "- Customer ID (customer_id, low importance)" in prompt
        assert "- Email (email, low importance)" in prompt
        assert "- Total Spend (revenue, high importance)" in prompt
        assert "- Notes" not in prompt

    def test_options_forwarded(self, model):
        request = CrmAnalysisRequest(analysis_options=AnalysisOptions(num_clusters=7, focus_on="both"))
        build_analysis_response(CSV_EXPORT, request)
        prompt = prompt_of(model)
        assert "create 7 distinct customer clusters" in prompt
        assert "Both behavioral and demographic patterns" in prompt

    def test_unreadable_file_is_an_error_status(self, model):
        response = build_analysis_response(b"\x00\x01\x02", CrmAnalysisRequest())
        assert response.status == "error"
        assert "Unrecognised file format" in response.error_message
        assert response.clusters == []
        model.chat.completions.create.assert_not_called()

    def test_bad_model_reply_is_an_error_status(self, model):
        model.reply("Sorry, no clusters today.")
        response = build_analysis_response(CSV_EXPORT, CrmAnalysisRequest())
        assert response.status == "error"
        assert "No JSON" in response.error_message

    def test_response_serialises(self, model):
        payload = build_analysis_response(CSV_EXPORT, CrmAnalysisRequest()).model_dump(mode="json")
        assert payload["status"] == "completed"
        assert payload["clusters"][0]["id"] == "cluster_1"


# ============================================================================
# REFINEMENT
# ============================================================================

class TestApplyClusterRefinement:

    @pytest.fixture
    def current(self):
        return [
            CrmCluster(id="cluster_1", name="A", size=40, percentage=40),
            CrmCluster(id="cluster_2", name="B", size=60, percentage=60),
        ]

    def test_rename_request(self, model, current):
        model.reply(
            "```json\n"
            + json.dumps([
                {"id": "cluster_1", "name": "Champions", "percentage": 40},
                {"id": "cluster_2", "name": "B", "percentage": 60},
            ])
            + "\n```"
        )
        request = ClusterRefinementRequest(action="rename", cluster_ids=["cluster_1"], new_name="Champions")
        refined = apply_cluster_refinement(current, request)
        assert [c.name for c in refined] == ["Champions", "B"]
        assert [c.size for c in refined] == [40, 60]
        prompt = prompt_of(model)
        assert "Action: rename" in prompt
        assert '"newName": "Champions"' in prompt

    def test_split_request_forwards_criteria(self, model, current):
        request = ClusterRefinementRequest(
            action="split",
            cluster_ids=["cluster_2"],
            split_criteria={"by": "revenue"},
        )
        apply_cluster_refinement(current, request)
        assert '"by": "revenue"' in prompt_of(model)
