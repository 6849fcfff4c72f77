"""
Error taxonomy for the catalog core.

Row-level errors (ImportValidationError, IdentityConflictError) are caught per
feed row and reported as data. InfrastructureError aborts the whole batch.
IndexDegradedError never leaves the search engine; it triggers the relational
fallback.
"""


class CatalogError(Exception):
    """Base class for catalog core errors."""


class ImportValidationError(CatalogError):
    """A feed row is missing required fields or carries invalid values."""


class IdentityConflictError(CatalogError):
    """An incoming identity key already belongs to a different product."""


class InfrastructureError(CatalogError):
    """Storage or a supplier feed is unreachable. The caller retries the batch."""


class IndexDegradedError(CatalogError):
    """The external search index failed or timed out."""
