"""
Taxonomy Integrity Repair.

Provides the three repairs that need no judgment call:
- Delete an orphan term
- Delete ghost relationships
- Recalculate a cached count

Each repair re-targets live storage by primary key or structural predicate;
none of them reads a previously computed report.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog

from src.taxonomy.errors import (
    NotFoundError,
    TaxonomyRepairError,
    TermInUseError,
    WriteError,
)
from src.taxonomy.store import TaxonomyStore, TermDeleteOutcome

logger = structlog.get_logger(__name__)


class RepairAction(str, Enum):
    """Types of repair actions."""

    DELETE_ORPHAN_TERM = "delete_orphan_term"
    DELETE_GHOST_RELATIONSHIPS = "delete_ghost_relationships"
    FIX_COUNT = "fix_count"


@dataclass
class RepairResult:
    """Result of a completed repair operation."""

    action: RepairAction
    target: int | None = None
    items_repaired: int = 0
    old_count: int | None = None
    new_count: int | None = None
    dry_run: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "target": self.target,
            "items_repaired": self.items_repaired,
            "old_count": self.old_count,
            "new_count": self.new_count,
            "dry_run": self.dry_run,
        }


class TaxonomyIntegrityRepair:
    """
    Repairs taxonomy integrity issues against live storage.

    Every operation is idempotent. Failures raise NotFoundError (nothing to
    do) or WriteError (store rejected the write; retryable).

    Usage:
        ```python
        repair = TaxonomyIntegrityRepair(store)

        await repair.fix_count(10)
        await repair.delete_orphan_term(42)

        # Preview, then sweep
        preview = await repair.delete_ghost_relationships(dry_run=True)
        result = await repair.delete_ghost_relationships()
        ```
    """

    def __init__(self, store: TaxonomyStore | None = None) -> None:
        if store is None:
            from src.taxonomy.sql_store import create_sql_store

            store = create_sql_store()
        self._store = store

    async def delete_orphan_term(self, term_id: int) -> RepairResult:
        """
        Delete a term that has no term taxonomy row.

        The "no term taxonomy row" check runs in the same transaction as the
        delete.

        Raises:
            NotFoundError: The term does not exist
            TermInUseError: A term taxonomy row references the term
            WriteError: The store rejected the delete
        """
        await self._connect(term_id)

        outcome = await self._write(
            self._store.delete_orphan_term(term_id),
            f"Could not delete term {term_id}",
            term_id,
        )

        if outcome == TermDeleteOutcome.NOT_FOUND:
            logger.info("Orphan term already gone", term_id=term_id)
            raise NotFoundError(f"Term {term_id} not found", target=term_id)

        if outcome == TermDeleteOutcome.IN_USE:
            logger.warning("Refusing to delete term with term taxonomy rows", term_id=term_id)
            raise TermInUseError(
                f"Term {term_id} is referenced by a term taxonomy row", target=term_id
            )

        logger.info("Orphan term deleted", term_id=term_id)
        return RepairResult(
            action=RepairAction.DELETE_ORPHAN_TERM,
            target=term_id,
            items_repaired=1,
        )

    async def delete_ghost_relationships(self, dry_run: bool = False) -> RepairResult:
        """
        Delete every relationship pointing at a missing term taxonomy row.

        Runs as one statement in one transaction; a failure leaves every ghost
        in place.

        Args:
            dry_run: Count without deleting

        Raises:
            WriteError: The store rejected the sweep
        """
        await self._connect()

        deleted = await self._write(
            self._store.delete_ghost_relationships(dry_run=dry_run),
            "Could not delete ghost relationships",
        )

        if dry_run:
            logger.info(f"[DRY RUN] Would delete {deleted} ghost relationships")
        else:
            logger.info("Ghost relationships deleted", count=deleted)

        return RepairResult(
            action=RepairAction.DELETE_GHOST_RELATIONSHIPS,
            items_repaired=deleted,
            dry_run=dry_run,
        )

    async def fix_count(self, term_taxonomy_id: int) -> RepairResult:
        """
        Overwrite a cached count with the live relationship count.

        Raises:
            NotFoundError: The term taxonomy row does not exist
            WriteError: The store rejected the update
        """
        await self._connect(term_taxonomy_id)

        counts = await self._write(
            self._store.recount(term_taxonomy_id),
            f"Could not update count for term taxonomy {term_taxonomy_id}",
            term_taxonomy_id,
        )

        if counts is None:
            logger.info("Term taxonomy row not found", term_taxonomy_id=term_taxonomy_id)
            raise NotFoundError(
                f"Term taxonomy {term_taxonomy_id} not found", target=term_taxonomy_id
            )

        old, new = counts
        logger.info(
            "Term count repaired",
            term_taxonomy_id=term_taxonomy_id,
            old=old,
            new=new,
        )
        return RepairResult(
            action=RepairAction.FIX_COUNT,
            target=term_taxonomy_id,
            items_repaired=int(old != new),
            old_count=old,
            new_count=new,
        )

    async def _connect(self, target: int | None = None) -> None:
        await self._write(self._store.connect(), "Could not connect to taxonomy store", target)

    @staticmethod
    async def _write(operation, message: str, target: int | None = None) -> Any:
        """Await a store write, translating foreign errors into WriteError."""
        try:
            return await operation
        except TaxonomyRepairError:
            raise
        except Exception as e:
            logger.error(message, target=target, error=str(e))
            raise WriteError(message, target=target) from e


# Factory function
def create_integrity_repair(store: TaxonomyStore | None = None) -> TaxonomyIntegrityRepair:
    """Create a taxonomy integrity repair instance."""
    return TaxonomyIntegrityRepair(store=store)
