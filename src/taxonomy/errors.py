"""
Taxonomy Repair Errors.

Audit failures abort the whole run; repair failures are local to one operation.
"""

from typing import Any


class TaxonomyRepairError(Exception):
    """Base class for all taxonomy audit and repair errors."""

    def __init__(self, message: str, target: Any = None):
        super().__init__(message)
        self.target = target


class IntegrityReadError(TaxonomyRepairError):
    """Raised when a table snapshot cannot be read from the store."""


class ConfigurationError(TaxonomyRepairError):
    """Raised when the registered taxonomy set (or other configuration) is unavailable."""


class NotFoundError(TaxonomyRepairError):
    """Raised when a repair target does not exist at execution time. Benign."""


class WriteError(TaxonomyRepairError):
    """Raised when the store rejects a mutation. The operation can be retried."""

    retryable = True


class TermInUseError(WriteError):
    """Raised when a term targeted for deletion gained a term taxonomy row."""

    retryable = False
