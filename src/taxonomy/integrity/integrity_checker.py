"""
Taxonomy Integrity Checker.

Audits referential integrity across the terms, term_taxonomy and
term_relationships tables:
- Orphan terms (no term taxonomy row)
- Orphan term taxonomy rows (missing term)
- Ghost relationships (missing term taxonomy row)
- Incorrect cached counts
- Broken parent chains
- Terms in unregistered taxonomies
- Duplicate names and slugs
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog

from src.config.settings import AuditSettings, get_settings
from src.taxonomy.errors import ConfigurationError, IntegrityReadError
from src.taxonomy.registry import SettingsTaxonomyProvider, TaxonomyProvider
from src.taxonomy.schema import (
    DuplicateGroup,
    IncorrectCount,
    Term,
    TermRelationship,
    TermTaxonomy,
)
from src.taxonomy.store import TaxonomyStore

logger = structlog.get_logger(__name__)


class IssueType(str, Enum):
    """Types of integrity issues, in report order."""

    ORPHAN_TERM = "orphan_term"
    ORPHAN_TERM_TAXONOMY = "orphan_term_taxonomy"
    GHOST_RELATIONSHIP = "ghost_relationship"
    INCORRECT_COUNT = "incorrect_count"
    BROKEN_PARENT = "broken_parent"
    UNKNOWN_TAXONOMY = "unknown_taxonomy"
    DUPLICATE_NAME = "duplicate_name"
    DUPLICATE_SLUG = "duplicate_slug"


class IssueSeverity(str, Enum):
    """Severity levels for issues."""

    ERROR = "error"       # Broken reference
    WARNING = "warning"   # Stale or unused data
    INFO = "info"         # Editorial confusion only


# Only these can be fixed without a judgment call
REPAIRABLE_ISSUES = frozenset({
    IssueType.ORPHAN_TERM,
    IssueType.GHOST_RELATIONSHIP,
    IssueType.INCORRECT_COUNT,
})

ISSUE_SEVERITY = {
    IssueType.ORPHAN_TERM: IssueSeverity.WARNING,
    IssueType.ORPHAN_TERM_TAXONOMY: IssueSeverity.ERROR,
    IssueType.GHOST_RELATIONSHIP: IssueSeverity.ERROR,
    IssueType.INCORRECT_COUNT: IssueSeverity.WARNING,
    IssueType.BROKEN_PARENT: IssueSeverity.ERROR,
    IssueType.UNKNOWN_TAXONOMY: IssueSeverity.WARNING,
    IssueType.DUPLICATE_NAME: IssueSeverity.INFO,
    IssueType.DUPLICATE_SLUG: IssueSeverity.INFO,
}


@dataclass
class IntegrityIssue:
    """A single flattened finding, for presentation layers."""

    issue_type: IssueType
    description: str
    term_id: int | None = None
    term_taxonomy_id: int | None = None
    object_id: int | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def severity(self) -> IssueSeverity:
        return ISSUE_SEVERITY[self.issue_type]

    @property
    def repairable(self) -> bool:
        return self.issue_type in REPAIRABLE_ISSUES

    def to_dict(self) -> dict[str, Any]:
        return {
            "issue_type": self.issue_type.value,
            "severity": self.severity.value,
            "repairable": self.repairable,
            "description": self.description,
            "term_id": self.term_id,
            "term_taxonomy_id": self.term_taxonomy_id,
            "object_id": self.object_id,
            "details": self.details,
        }


@dataclass
class IntegrityReport:
    """Report of one audit run. Every collection keeps table scan order."""

    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    # Snapshot sizes
    total_terms: int = 0
    total_term_taxonomies: int = 0
    total_relationships: int = 0

    orphan_terms: list[Term] = field(default_factory=list)
    orphan_term_taxonomies: list[TermTaxonomy] = field(default_factory=list)
    ghost_relationships: list[TermRelationship] = field(default_factory=list)
    incorrect_counts: list[IncorrectCount] = field(default_factory=list)
    broken_parents: list[TermTaxonomy] = field(default_factory=list)
    unknown_taxonomies: list[TermTaxonomy] = field(default_factory=list)
    duplicate_names: list[DuplicateGroup] = field(default_factory=list)
    duplicate_slugs: list[DuplicateGroup] = field(default_factory=list)

    duration_seconds: float = 0.0

    COLLECTIONS = (
        "orphan_terms",
        "orphan_term_taxonomies",
        "ghost_relationships",
        "incorrect_counts",
        "broken_parents",
        "unknown_taxonomies",
        "duplicate_names",
        "duplicate_slugs",
    )

    @property
    def is_healthy(self) -> bool:
        return not any(getattr(self, name) for name in self.COLLECTIONS)

    @property
    def issues_found(self) -> int:
        return sum(self.summary().values())

    def summary(self) -> dict[str, int]:
        """Number of findings per collection, in report order."""
        return {name: len(getattr(self, name)) for name in self.COLLECTIONS}

    def issues(self) -> list[IntegrityIssue]:
        """Flatten all collections into issues, in report order."""
        found: list[IntegrityIssue] = []

        for t in self.orphan_terms:
            found.append(IntegrityIssue(
                issue_type=IssueType.ORPHAN_TERM,
                description=f"Term '{t.name}' has no term taxonomy row",
                term_id=t.term_id,
                details={"slug": t.slug},
            ))

        for tx in self.orphan_term_taxonomies:
            found.append(IntegrityIssue(
                issue_type=IssueType.ORPHAN_TERM_TAXONOMY,
                description=f"Term taxonomy row points at missing term {tx.term_id}",
                term_id=tx.term_id,
                term_taxonomy_id=tx.term_taxonomy_id,
                details={"taxonomy": tx.taxonomy},
            ))

        for rel in self.ghost_relationships:
            found.append(IntegrityIssue(
                issue_type=IssueType.GHOST_RELATIONSHIP,
                description=f"Object {rel.object_id} points at missing term taxonomy row",
                term_taxonomy_id=rel.term_taxonomy_id,
                object_id=rel.object_id,
            ))

        for entry in self.incorrect_counts:
            found.append(IntegrityIssue(
                issue_type=IssueType.INCORRECT_COUNT,
                description=f"Stored count {entry.stored} but {entry.real} relationships exist",
                term_id=entry.term_taxonomy.term_id,
                term_taxonomy_id=entry.term_taxonomy_id,
                details={
                    "taxonomy": entry.term_taxonomy.taxonomy,
                    "stored": entry.stored,
                    "real": entry.real,
                },
            ))

        for tx in self.broken_parents:
            found.append(IntegrityIssue(
                issue_type=IssueType.BROKEN_PARENT,
                description=f"Parent {tx.parent} does not exist",
                term_id=tx.term_id,
                term_taxonomy_id=tx.term_taxonomy_id,
                details={"parent": tx.parent, "taxonomy": tx.taxonomy},
            ))

        for tx in self.unknown_taxonomies:
            found.append(IntegrityIssue(
                issue_type=IssueType.UNKNOWN_TAXONOMY,
                description=f"Taxonomy '{tx.taxonomy}' is not registered",
                term_id=tx.term_id,
                term_taxonomy_id=tx.term_taxonomy_id,
                details={"taxonomy": tx.taxonomy},
            ))

        for issue_type, groups in (
            (IssueType.DUPLICATE_NAME, self.duplicate_names),
            (IssueType.DUPLICATE_SLUG, self.duplicate_slugs),
        ):
            for group in groups:
                found.append(IntegrityIssue(
                    issue_type=issue_type,
                    description=f"'{group.key}' is shared by {len(group.terms)} terms",
                    details=group.to_dict(),
                ))

        return found

    def to_dict(self) -> dict[str, Any]:
        return {
            "checked_at": self.checked_at.isoformat(),
            "is_healthy": self.is_healthy,
            "totals": {
                "terms": self.total_terms,
                "term_taxonomies": self.total_term_taxonomies,
                "relationships": self.total_relationships,
            },
            "summary": self.summary(),
            "duration_seconds": round(self.duration_seconds, 2),
            "issues": [i.to_dict() for i in self.issues()],
        }


@dataclass
class TaxonomySnapshot:
    """Full contents of the three tables plus lookup indices."""

    terms: list[Term]
    term_taxonomies: list[TermTaxonomy]
    relationships: list[TermRelationship]

    terms_by_id: dict[int, Term] = field(init=False)
    term_taxonomies_by_id: dict[int, TermTaxonomy] = field(init=False)
    term_taxonomies_by_term: dict[int, list[TermTaxonomy]] = field(init=False)

    def __post_init__(self) -> None:
        self.terms_by_id = {t.term_id: t for t in self.terms}
        self.term_taxonomies_by_id = {tx.term_taxonomy_id: tx for tx in self.term_taxonomies}
        self.term_taxonomies_by_term = {}
        for tx in self.term_taxonomies:
            self.term_taxonomies_by_term.setdefault(tx.term_id, []).append(tx)


# =============================================================================
# Checks
# =============================================================================


def find_orphan_terms(snapshot: TaxonomySnapshot) -> list[Term]:
    """Terms with no term taxonomy row."""
    return [t for t in snapshot.terms if t.term_id not in snapshot.term_taxonomies_by_term]


def find_orphan_term_taxonomies(snapshot: TaxonomySnapshot) -> list[TermTaxonomy]:
    """Term taxonomy rows whose term is missing."""
    return [tx for tx in snapshot.term_taxonomies if tx.term_id not in snapshot.terms_by_id]


def find_ghost_relationships(snapshot: TaxonomySnapshot) -> list[TermRelationship]:
    """Relationships pointing at a missing term taxonomy row."""
    return [
        rel for rel in snapshot.relationships
        if rel.term_taxonomy_id not in snapshot.term_taxonomies_by_id
    ]


def find_broken_parents(snapshot: TaxonomySnapshot) -> list[TermTaxonomy]:
    """
    Term taxonomy rows whose parent has no term taxonomy row.

    The parent column holds a term_id, so it is looked up among term ids that
    own a term taxonomy row, not among term_taxonomy_ids.
    """
    return [
        tx for tx in snapshot.term_taxonomies
        if tx.parent and tx.parent not in snapshot.term_taxonomies_by_term
    ]


def find_unknown_taxonomies(
    snapshot: TaxonomySnapshot,
    registered: set[str],
) -> list[TermTaxonomy]:
    """Term taxonomy rows in a taxonomy nobody registers."""
    return [tx for tx in snapshot.term_taxonomies if tx.taxonomy not in registered]


def find_duplicates(terms: list[Term], attribute: str) -> list[DuplicateGroup]:
    """
    Group terms by the exact value of an attribute.

    Values are compared as raw strings; no trimming or case folding.

    Args:
        terms: Terms in table order
        attribute: "name" or "slug"

    Returns:
        Groups with two or more members, in first-seen key order
    """
    groups: dict[str, list[Term]] = {}
    for t in terms:
        groups.setdefault(getattr(t, attribute), []).append(t)

    return [
        DuplicateGroup(key=key, terms=members)
        for key, members in groups.items()
        if len(members) > 1
    ]


class TaxonomyIntegrityChecker:
    """
    Audits the taxonomy tables.

    The audit is read-only and all-or-nothing: if any table or the registered
    taxonomy set cannot be loaded, no report is produced.

    Usage:
        ```python
        checker = TaxonomyIntegrityChecker(store, StaticTaxonomyProvider(["category"]))

        report = await checker.check_all()

        if not report.is_healthy:
            for issue in report.issues():
                print(f"  - {issue.description}")
        ```
    """

    def __init__(
        self,
        store: TaxonomyStore | None = None,
        taxonomy_provider: TaxonomyProvider | None = None,
        settings: AuditSettings | None = None,
    ) -> None:
        if store is None:
            from src.taxonomy.sql_store import create_sql_store

            store = create_sql_store()
        self._store = store
        self._provider = taxonomy_provider or SettingsTaxonomyProvider()
        self._settings = settings or get_settings().audit

    async def check_all(self) -> IntegrityReport:
        """
        Run every check against a fresh snapshot.

        Returns:
            IntegrityReport with all eight collections

        Raises:
            IntegrityReadError: A table could not be read
            ConfigurationError: The registered taxonomy set is unavailable
        """
        start_time = datetime.now(timezone.utc)

        logger.info("Starting taxonomy integrity audit")

        snapshot = await self.load_snapshot()
        registered = await self.load_registered_taxonomies()

        report = IntegrityReport(
            checked_at=start_time,
            total_terms=len(snapshot.terms),
            total_term_taxonomies=len(snapshot.term_taxonomies),
            total_relationships=len(snapshot.relationships),
        )

        report.orphan_terms = find_orphan_terms(snapshot)
        report.orphan_term_taxonomies = find_orphan_term_taxonomies(snapshot)
        report.ghost_relationships = find_ghost_relationships(snapshot)
        report.incorrect_counts = await self.find_incorrect_counts(snapshot)
        report.broken_parents = find_broken_parents(snapshot)
        report.unknown_taxonomies = find_unknown_taxonomies(snapshot, registered)
        report.duplicate_names = find_duplicates(snapshot.terms, "name")
        report.duplicate_slugs = find_duplicates(snapshot.terms, "slug")

        report.duration_seconds = (datetime.now(timezone.utc) - start_time).total_seconds()

        logger.info(
            "Taxonomy integrity audit completed",
            is_healthy=report.is_healthy,
            duration_s=round(report.duration_seconds, 2),
            **report.summary(),
        )

        return report

    async def load_snapshot(self) -> TaxonomySnapshot:
        """Connect and fetch all three tables as one read."""
        try:
            await self._store.connect()
            rows = await self._store.fetch_snapshot()
        except IntegrityReadError as e:
            logger.error("Audit aborted: snapshot unavailable", error=str(e))
            raise
        except Exception as e:
            logger.error("Audit aborted: snapshot unavailable", error=str(e))
            raise IntegrityReadError("Could not load taxonomy snapshot") from e

        return TaxonomySnapshot(
            terms=rows.terms,
            term_taxonomies=rows.term_taxonomies,
            relationships=rows.relationships,
        )

    async def load_registered_taxonomies(self) -> set[str]:
        """Fetch the registered taxonomy names once for this run."""
        try:
            registered = await self._provider.get_registered_taxonomies()
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error("Audit aborted: registered taxonomies unavailable", error=str(e))
            raise ConfigurationError("Could not obtain registered taxonomies") from e

        if registered is None:
            logger.error("Audit aborted: registered taxonomies unavailable")
            raise ConfigurationError("Registered taxonomy provider returned nothing")

        return registered

    async def find_incorrect_counts(self, snapshot: TaxonomySnapshot) -> list[IncorrectCount]:
        """
        Compare every cached count with the real number of relationships.

        With live recounting enabled each row is counted against the store at
        the moment it is checked; otherwise the snapshot is counted.
        """
        snapshot_counts: Counter[int] = Counter()
        if not self._settings.live_recount:
            snapshot_counts.update(r.term_taxonomy_id for r in snapshot.relationships)

        incorrect: list[IncorrectCount] = []
        for tx in snapshot.term_taxonomies:
            if self._settings.live_recount:
                real = await self._count_live(tx.term_taxonomy_id)
            else:
                real = snapshot_counts[tx.term_taxonomy_id]

            if real != tx.count:
                incorrect.append(IncorrectCount(term_taxonomy=tx, stored=tx.count, real=real))

        return incorrect

    async def _count_live(self, term_taxonomy_id: int) -> int:
        try:
            return int(await self._store.count_relationships(term_taxonomy_id))
        except IntegrityReadError:
            raise
        except Exception as e:
            raise IntegrityReadError(
                "Could not count relationships", target=term_taxonomy_id
            ) from e


# Factory function
def create_integrity_checker(
    store: TaxonomyStore | None = None,
    taxonomy_provider: TaxonomyProvider | None = None,
) -> TaxonomyIntegrityChecker:
    """Create a taxonomy integrity checker."""
    return TaxonomyIntegrityChecker(store=store, taxonomy_provider=taxonomy_provider)
