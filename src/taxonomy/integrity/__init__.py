"""
Taxonomy Integrity Management.

Provides referential integrity auditing and repair:
- Orphan term and term taxonomy detection
- Ghost relationship detection and removal
- Cached count verification and repair
- Report-only hierarchy, registration and duplicate checks
"""

from src.taxonomy.integrity.integrity_checker import (
    IntegrityIssue,
    IntegrityReport,
    IssueSeverity,
    IssueType,
    TaxonomyIntegrityChecker,
    TaxonomySnapshot,
    create_integrity_checker,
)
from src.taxonomy.integrity.integrity_repair import (
    RepairAction,
    RepairResult,
    TaxonomyIntegrityRepair,
    create_integrity_repair,
)

__all__ = [
    # Checker
    "TaxonomyIntegrityChecker",
    "TaxonomySnapshot",
    "IntegrityReport",
    "IntegrityIssue",
    "IssueType",
    "IssueSeverity",
    "create_integrity_checker",
    # Repair
    "TaxonomyIntegrityRepair",
    "RepairResult",
    "RepairAction",
    "create_integrity_repair",
]
