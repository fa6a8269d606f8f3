"""Upload summary: parse a CRM export and propose a column mapping for it."""

import logging
from typing import Optional

from crm_enrichment.config import settings
from crm_enrichment.exceptions import InvalidUploadError
from crm_enrichment.schemas.crm import CrmUploadResponse
from crm_enrichment.services.column_detector import detect_column_mappings
from crm_enrichment.services.crm_parser import parse_crm_file, validate_upload

logger = logging.getLogger(__name__)


def build_upload_response(
    data: bytes,
    filename: str,
    file_size: Optional[int] = None,
) -> CrmUploadResponse:
    """
    Validate and read an uploaded file, then detect its column mapping.

    Only the first ``PREVIEW_ROWS`` rows are kept for the preview and the
    detector looks at the first 10 of those; ``row_count`` is the full size.
    """
    size = len(data) if file_size is None else file_size
    validation = validate_upload(filename, size)
    if not validation["valid"]:
        raise InvalidUploadError(validation["error"])

    parsed = parse_crm_file(data, max_rows=settings.PREVIEW_ROWS)
    mapping = detect_column_mappings(parsed.columns, parsed.rows)

    logger.info(
        "Parsed %s: %d rows, %d columns, %d mapped",
        filename,
        parsed.row_count,
        len(parsed.columns),
        len(mapping.detected),
    )

    return CrmUploadResponse(
        file_name=filename,
        file_type=parsed.file_type,
        row_count=parsed.row_count,
        column_count=len(parsed.columns),
        columns=parsed.columns,
        preview=parsed.rows,
        detected_mapping=mapping.detected,
        suggestions=mapping.suggestions,
        unmapped=mapping.unmapped,
    )
