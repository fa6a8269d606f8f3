"""
AI Clustering Service: uses an OpenAI chat model to
1. Split CRM customers into behavioral clusters
2. Refine existing clusters (merge / split / rename) on user request
"""

import json
import logging
import re
from typing import Any, Mapping, Optional, Sequence

from openai import OpenAI, OpenAIError
from pydantic import ValidationError

from crm_enrichment.config import settings
from crm_enrichment.exceptions import ClusteringError, ClusteringResponseError
from crm_enrichment.schemas.crm import CrmCluster
from crm_enrichment.services.column_detector import get_column_importance
from crm_enrichment.services.mapping_editor import coerce_column_mapping

logger = logging.getLogger(__name__)

_client: Optional[OpenAI] = None

REFINEMENT_ACTIONS = ("merge", "split", "rename")

_FOCUS_DESCRIPTIONS = {
    "behavior": "Behavioral patterns (purchase frequency, recency, revenue)",
    "demographics": "Demographic characteristics (age, location, industry)",
    "both": "Both behavioral and demographic patterns",
}

_FENCED_JSON = re.compile(r"```json\n([\s\S]*?)\n```")
_BARE_ARRAY = re.compile(r"\[[\s\S]*\]")


def _get_client() -> OpenAI:
    global _client
    if _client is None:
        _client = OpenAI(api_key=settings.OPENAI_API_KEY or None)
    return _client


def _complete(prompt: str) -> str:
    try:
        response = _get_client().chat.completions.create(
            model=settings.OPENAI_MODEL,
            messages=[{"role": "user", "content": prompt}],
            temperature=settings.CLUSTERING_TEMPERATURE,
            max_tokens=settings.CLUSTERING_MAX_TOKENS,
        )
    except OpenAIError as e:
        logger.error("Clustering model request failed: %s", e)
        raise ClusteringError(f"Clustering model request failed: {e}") from e

    return response.choices[0].message.content or ""


def _round_half_up(value: float) -> int:
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)


def _parse_clustering_response(text: str, total_rows: int) -> list[CrmCluster]:
    """Pull the cluster array out of a model reply, fenced or bare."""
    match = _FENCED_JSON.search(text)
    raw = match.group(1) if match else None
    if raw is None:
        match = _BARE_ARRAY.search(text)
        raw = match.group(0) if match else None
    if raw is None:
        raise ClusteringResponseError("No JSON found in clustering response")

    try:
        items = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ClusteringResponseError(f"Failed to parse AI clustering results: {e}") from e
    if not isinstance(items, list):
        raise ClusteringResponseError("Clustering response is not a JSON array")

    clusters: list[CrmCluster] = []
    try:
        for index, item in enumerate(items):
            percentage = float(item.get("percentage") or 0)
            clusters.append(
                CrmCluster(
                    id=item.get("id") or f"cluster_{index + 1}",
                    name=item["name"],
                    size=_round_half_up(percentage / 100 * total_rows),
                    percentage=percentage,
                    behavioral_traits=item.get("behavioral_traits") or {},
                    demographic_traits=item.get("demographic_traits") or {},
                    reasoning=item.get("reasoning") or "",
                )
            )
    except (AttributeError, KeyError, TypeError, ValueError, ValidationError) as e:
        raise ClusteringResponseError(f"Malformed cluster in AI response: {e}") from e

    return clusters


def _build_clustering_prompt(
    rows: Sequence[Mapping[str, Any]],
    column_mapping: Mapping[str, Any],
    num_clusters: int,
    focus_on: str,
    total_rows: int,
) -> str:
    typed = coerce_column_mapping(column_mapping)
    columns_text = "\n".join(
        f"- {col} ({col_type.value}, {get_column_importance(col_type)} importance)"
        for col, col_type in typed.items()
    )
    preview_text = json.dumps(list(rows[: settings.CLUSTERING_PROMPT_ROWS]), default=str, indent=2)

    return f"""You are a CRM data analyst specializing in customer segmentation. Analyze the following CRM data and create {num_clusters} distinct customer clusters.

Column mapping:
{columns_text}

Sample data (first {settings.CLUSTERING_PROMPT_ROWS} rows):
```json
{preview_text}
```

Rows analysed: {len(rows)}
Total rows: {total_rows}

Focus: {_FOCUS_DESCRIPTIONS[focus_on]}

Instructions:
1. Identify {num_clusters} distinct customer segments
2. Focus on {focus_on} characteristics
3. For each cluster provide a descriptive name, key behavioral traits, demographic traits if available,
   the percentage of total customers (estimated from the sample) and a short reasoning

Return ONLY a JSON array in this exact format:
```json
[
  {{
    "id": "cluster_1",
    "name": "High-Value Loyalists",
    "percentage": 25,
    "behavioral_traits": {{
      "purchase_frequency": "high|medium|low",
      "avg_revenue": "number or range",
      "recency": "recent|moderate|inactive",
      "engagement_level": "high|medium|low"
    }},
    "demographic_traits": {{
      "primary_industry": "industry name or null",
      "typical_company_size": "size or null",
      "geographic_region": "region or null"
    }},
    "reasoning": "Brief explanation of what defines this cluster"
  }}
]
```"""


def generate_clusters(
    rows: Sequence[Mapping[str, Any]],
    column_mapping: Mapping[str, Any],
    num_clusters: int = 5,
    focus_on: str = "behavior",
) -> list[CrmCluster]:
    """
    Ask the model to segment CRM customers into behavioral clusters.

    Only the first ``CLUSTERING_SAMPLE_ROWS`` rows are sent; cluster sizes are
    scaled from the returned percentages to the full row count.
    """
    if focus_on not in _FOCUS_DESCRIPTIONS:
        raise ValueError(f"Unsupported focus '{focus_on}'")

    sample = list(rows[: settings.CLUSTERING_SAMPLE_ROWS])
    prompt = _build_clustering_prompt(sample, column_mapping, num_clusters, focus_on, len(rows))

    logger.info("Requesting %d clusters over %d rows (focus=%s)", num_clusters, len(rows), focus_on)
    clusters = _parse_clustering_response(_complete(prompt), len(rows))
    logger.info("Model returned %d clusters", len(clusters))
    return clusters


def refine_clusters(
    clusters: Sequence[CrmCluster],
    action: str,
    cluster_ids: Optional[Sequence[str]] = None,
    new_name: Optional[str] = None,
    split_criteria: Optional[Mapping[str, Any]] = None,
) -> list[CrmCluster]:
    """Apply a merge, split or rename to existing clusters through the model."""
    if action not in REFINEMENT_ACTIONS:
        raise ValueError(f"Unsupported refinement action '{action}'")

    current = [c.model_dump() for c in clusters]
    params = {
        "clusterIds": list(cluster_ids or []),
        "newName": new_name,
        "splitCriteria": dict(split_criteria) if split_criteria else None,
    }
    total_rows = sum(c.size for c in clusters)

    prompt = f"""You are refining customer clusters. Current clusters:

```json
{json.dumps(current, default=str, indent=2)}
```

Action: {action}
Parameters: {json.dumps(params, default=str, indent=2)}

Based on this action, update the clusters and return the refined cluster array in the same JSON format.
Return ONLY the JSON array, no additional text."""

    logger.info("Refining %d clusters with action=%s", len(clusters), action)
    return _parse_clustering_response(_complete(prompt), total_rows)
