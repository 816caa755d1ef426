"""
Taxonomy Store Interface.

Defines the contract between the audit/repair core and the host data layer,
plus an in-memory implementation used for fixtures and embedding.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from enum import Enum
from typing import NamedTuple

import structlog

from src.taxonomy.schema import Term, TermRelationship, TermTaxonomy

logger = structlog.get_logger(__name__)


class TermDeleteOutcome(str, Enum):
    """Outcome of a guarded orphan-term delete."""

    DELETED = "deleted"
    NOT_FOUND = "not_found"
    IN_USE = "in_use"  # A term taxonomy row references the term


class TableRows(NamedTuple):
    """Rows of all three taxonomy tables read as one snapshot."""

    terms: list[Term]
    term_taxonomies: list[TermTaxonomy]
    relationships: list[TermRelationship]


class TaxonomyStore(ABC):
    """
    Abstract access to the terms, term_taxonomy and term_relationships tables.

    Snapshot fetches return every row in table order, unfiltered. Write methods
    re-check their structural predicate against live state inside one
    transaction, so callers never depend on a previously loaded snapshot.

    Implementations raise IntegrityReadError for failed reads and WriteError
    for rejected mutations.
    """

    @abstractmethod
    async def fetch_terms(self) -> list[Term]:
        """Return every row of the terms table."""

    @abstractmethod
    async def fetch_term_taxonomies(self) -> list[TermTaxonomy]:
        """Return every row of the term_taxonomy table."""

    @abstractmethod
    async def fetch_relationships(self) -> list[TermRelationship]:
        """Return every row of the term_relationships table."""

    async def fetch_snapshot(self) -> TableRows:
        """
        Return every row of all three tables as one consistent read.

        Stores that can isolate the three reads (for example inside one
        database transaction) override this; the default reads them in turn.
        """
        return TableRows(
            terms=await self.fetch_terms(),
            term_taxonomies=await self.fetch_term_taxonomies(),
            relationships=await self.fetch_relationships(),
        )

    @abstractmethod
    async def count_relationships(self, term_taxonomy_id: int) -> int:
        """Return the live number of relationships referencing a term taxonomy row."""

    @abstractmethod
    async def delete_orphan_term(self, term_id: int) -> TermDeleteOutcome:
        """
        Delete a term only if no term taxonomy row references it.

        Args:
            term_id: Term to delete

        Returns:
            Outcome of the guarded delete
        """

    @abstractmethod
    async def delete_ghost_relationships(self, dry_run: bool = False) -> int:
        """
        Delete every relationship whose term taxonomy row is missing, atomically.

        Args:
            dry_run: Count matching rows without deleting

        Returns:
            Number of rows deleted (or that would be deleted)
        """

    @abstractmethod
    async def recount(self, term_taxonomy_id: int) -> tuple[int, int] | None:
        """
        Overwrite a cached count with the live relationship count.

        Returns:
            (old, new) counts, or None if the row does not exist
        """

    async def connect(self) -> None:
        """Open underlying resources. No-op by default."""

    async def close(self) -> None:
        """Release underlying resources. No-op by default."""


class InMemoryTaxonomyStore(TaxonomyStore):
    """
    Taxonomy store backed by Python lists.

    Every write replaces the affected table in one assignment, so a write is
    either fully applied or not applied at all.

    Usage:
        ```python
        store = InMemoryTaxonomyStore(
            terms=[Term(term_id=1, name="News", slug="news")],
        )
        checker = TaxonomyIntegrityChecker(store, StaticTaxonomyProvider(["category"]))
        report = await checker.check_all()
        ```
    """

    def __init__(
        self,
        terms: Iterable[Term] = (),
        term_taxonomies: Iterable[TermTaxonomy] = (),
        relationships: Iterable[TermRelationship] = (),
    ) -> None:
        self._terms: list[Term] = list(terms)
        self._term_taxonomies: list[TermTaxonomy] = list(term_taxonomies)
        self._relationships: list[TermRelationship] = list(relationships)

    # =========================================================================
    # Host-side mutation helpers
    # =========================================================================

    def add_term(self, term: Term) -> None:
        self._terms.append(term)

    def add_term_taxonomy(self, term_taxonomy: TermTaxonomy) -> None:
        self._term_taxonomies.append(term_taxonomy)

    def add_relationship(self, relationship: TermRelationship) -> None:
        self._relationships.append(relationship)

    # =========================================================================
    # Snapshot reads
    # =========================================================================

    async def fetch_terms(self) -> list[Term]:
        return list(self._terms)

    async def fetch_term_taxonomies(self) -> list[TermTaxonomy]:
        return list(self._term_taxonomies)

    async def fetch_relationships(self) -> list[TermRelationship]:
        return list(self._relationships)

    async def count_relationships(self, term_taxonomy_id: int) -> int:
        return sum(1 for r in self._relationships if r.term_taxonomy_id == term_taxonomy_id)

    # =========================================================================
    # Guarded writes
    # =========================================================================

    async def delete_orphan_term(self, term_id: int) -> TermDeleteOutcome:
        if not any(t.term_id == term_id for t in self._terms):
            return TermDeleteOutcome.NOT_FOUND
        if any(tx.term_id == term_id for tx in self._term_taxonomies):
            return TermDeleteOutcome.IN_USE

        self._terms = [t for t in self._terms if t.term_id != term_id]
        return TermDeleteOutcome.DELETED

    async def delete_ghost_relationships(self, dry_run: bool = False) -> int:
        known = {tx.term_taxonomy_id for tx in self._term_taxonomies}
        survivors = [r for r in self._relationships if r.term_taxonomy_id in known]
        deleted = len(self._relationships) - len(survivors)

        if not dry_run:
            self._relationships = survivors
        return deleted

    async def recount(self, term_taxonomy_id: int) -> tuple[int, int] | None:
        for index, tx in enumerate(self._term_taxonomies):
            if tx.term_taxonomy_id != term_taxonomy_id:
                continue
            real = await self.count_relationships(term_taxonomy_id)
            rows = list(self._term_taxonomies)
            rows[index] = tx.model_copy(update={"count": real})
            self._term_taxonomies = rows
            return tx.count, real
        return None
