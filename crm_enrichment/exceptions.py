"""Exceptions raised by the CRM enrichment services."""


class CrmEnrichmentError(Exception):
    """Base class for every error raised by this package."""

    pass


class InvalidUploadError(CrmEnrichmentError):
    """Raised when an uploaded file fails extension or size validation."""

    pass


class CrmFileParseError(CrmEnrichmentError):
    """Raised when a CRM export cannot be read into rows and columns."""

    pass


class InvalidColumnMappingError(CrmEnrichmentError):
    """Raised when a user-submitted column mapping names an unknown type."""

    pass


class ClusteringError(CrmEnrichmentError):
    """Raised when the clustering model cannot be used."""

    pass


class ClusteringResponseError(ClusteringError):
    """Raised when the model reply contains no usable cluster JSON."""

    pass
