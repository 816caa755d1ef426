"""
Unit Tests for SQL Taxonomy Store.

Runs the store against an in-memory SQLite database.
"""

import pytest
from sqlalchemy import event, text

from src.config.settings import DatabaseSettings
from src.taxonomy.errors import IntegrityReadError, TermInUseError, WriteError
from src.taxonomy.integrity.integrity_checker import TaxonomyIntegrityChecker
from src.taxonomy.integrity.integrity_repair import TaxonomyIntegrityRepair
from src.taxonomy.registry import StaticTaxonomyProvider
from src.taxonomy.schema import Term, TermRelationship, TermTaxonomy
from src.taxonomy.sql_store import SqlTaxonomyStore, build_tables
from src.taxonomy.store import TermDeleteOutcome


class TestTables:
    """Test cases for table definitions."""

    def test_prefix_applies_to_all_tables(self) -> None:
        tables = build_tables("wp_2_")

        assert tables.terms.name == "wp_2_terms"
        assert tables.term_taxonomy.name == "wp_2_term_taxonomy"
        assert tables.term_relationships.name == "wp_2_term_relationships"

    def test_invalid_prefix_rejected(self) -> None:
        with pytest.raises(ValueError):
            DatabaseSettings(table_prefix="wp_; DROP TABLE x")


class TestSqlTaxonomyStore:
    """Test cases for SqlTaxonomyStore."""

    # =========================================================================
    # Read Tests
    # =========================================================================

    @pytest.mark.asyncio
    async def test_fetch_round_trips_rows(self, sql_store: SqlTaxonomyStore, seed) -> None:
        terms = [Term(term_id=1, name="News", slug="news"), Term(term_id=2, name="Sport", slug="sport")]
        tts = [TermTaxonomy(term_taxonomy_id=10, term_id=1, taxonomy="category", parent=2, count=3)]
        rels = [TermRelationship(object_id=5, term_taxonomy_id=10, term_order=1)]
        await seed(sql_store, terms, tts, rels)

        assert await sql_store.fetch_terms() == terms
        assert await sql_store.fetch_term_taxonomies() == tts
        assert await sql_store.fetch_relationships() == rels

    @pytest.mark.asyncio
    async def test_snapshot_reads_all_tables_in_one_transaction(self, sql_store: SqlTaxonomyStore, seed) -> None:
        terms = [Term(term_id=1, name="News", slug="news")]
        tts = [TermTaxonomy(term_taxonomy_id=10, term_id=1, taxonomy="category", count=1)]
        rels = [TermRelationship(object_id=5, term_taxonomy_id=10)]
        await seed(sql_store, terms, tts, rels)

        begins: list[object] = []
        assert sql_store.engine is not None
        sync_engine = sql_store.engine.sync_engine

        def listener(conn) -> None:
            begins.append(conn)

        event.listen(sync_engine, "begin", listener)
        try:
            rows = await sql_store.fetch_snapshot()
        finally:
            event.remove(sync_engine, "begin", listener)

        assert len(begins) == 1
        assert rows.terms == terms
        assert rows.term_taxonomies == tts
        assert rows.relationships == rels

    @pytest.mark.asyncio
    async def test_snapshot_without_tables_is_read_error(self) -> None:
        store = SqlTaxonomyStore(settings=DatabaseSettings(url="sqlite+aiosqlite://"))
        try:
            with pytest.raises(IntegrityReadError) as exc_info:
                await store.fetch_snapshot()
        finally:
            await store.close()

        assert exc_info.value.target == "wp_terms"

    @pytest.mark.asyncio
    async def test_count_relationships(self, sql_store: SqlTaxonomyStore, seed) -> None:
        await seed(
            sql_store,
            relationships=[
                TermRelationship(object_id=1, term_taxonomy_id=10),
                TermRelationship(object_id=2, term_taxonomy_id=10),
                TermRelationship(object_id=2, term_taxonomy_id=11),
            ],
        )

        assert await sql_store.count_relationships(10) == 2
        assert await sql_store.count_relationships(99) == 0

    @pytest.mark.asyncio
    async def test_missing_tables_raise_read_error(self) -> None:
        store = SqlTaxonomyStore(settings=DatabaseSettings(url="sqlite+aiosqlite://"))
        try:
            with pytest.raises(IntegrityReadError) as exc_info:
                await store.fetch_terms()
        finally:
            await store.close()

        assert exc_info.value.target == "wp_terms"

    # =========================================================================
    # Write Tests
    # =========================================================================

    @pytest.mark.asyncio
    async def test_delete_orphan_term_outcomes(self, sql_store: SqlTaxonomyStore, seed) -> None:
        await seed(
            sql_store,
            terms=[Term(term_id=1, name="Used", slug="used"), Term(term_id=2, name="Orphan", slug="orphan")],
            term_taxonomies=[TermTaxonomy(term_taxonomy_id=10, term_id=1, taxonomy="category")],
        )

        assert await sql_store.delete_orphan_term(1) == TermDeleteOutcome.IN_USE
        assert await sql_store.delete_orphan_term(2) == TermDeleteOutcome.DELETED
        assert await sql_store.delete_orphan_term(2) == TermDeleteOutcome.NOT_FOUND
        assert [t.term_id for t in await sql_store.fetch_terms()] == [1]

    @pytest.mark.asyncio
    async def test_term_removed_during_delete_is_not_found(self, sql_store: SqlTaxonomyStore, seed) -> None:
        """A term removed by another writer after the existence check is not reported as in use."""
        await seed(sql_store, terms=[Term(term_id=2, name="Orphan", slug="orphan")])
        async with sql_store.transaction() as conn:
            # Removes the row ahead of the guarded delete, which then affects nothing
            await conn.execute(text(
                "CREATE TRIGGER concurrent_delete BEFORE DELETE ON wp_terms "
                "BEGIN DELETE FROM wp_terms WHERE term_id = OLD.term_id; SELECT RAISE(IGNORE); END"
            ))

        assert await sql_store.delete_orphan_term(2) == TermDeleteOutcome.NOT_FOUND
        assert await sql_store.fetch_terms() == []

    @pytest.mark.asyncio
    async def test_delete_rechecks_live_rows(self, sql_store: SqlTaxonomyStore, seed) -> None:
        """A term taxonomy row added after the audit blocks the delete."""
        await seed(sql_store, terms=[Term(term_id=3, name="Late", slug="late")])
        report = await TaxonomyIntegrityChecker(
            store=sql_store,
            taxonomy_provider=StaticTaxonomyProvider(["category"]),
        ).check_all()
        assert [t.term_id for t in report.orphan_terms] == [3]

        await seed(sql_store, term_taxonomies=[TermTaxonomy(term_taxonomy_id=30, term_id=3, taxonomy="category")])

        with pytest.raises(TermInUseError):
            await TaxonomyIntegrityRepair(sql_store).delete_orphan_term(3)
        assert len(await sql_store.fetch_terms()) == 1

    @pytest.mark.asyncio
    async def test_ghost_sweep(self, sql_store: SqlTaxonomyStore, seed) -> None:
        await seed(
            sql_store,
            term_taxonomies=[TermTaxonomy(term_taxonomy_id=10, term_id=1, taxonomy="category")],
            relationships=[
                TermRelationship(object_id=1, term_taxonomy_id=10),
                TermRelationship(object_id=2, term_taxonomy_id=66),
                TermRelationship(object_id=3, term_taxonomy_id=67),
            ],
        )

        assert await sql_store.delete_ghost_relationships(dry_run=True) == 2
        assert len(await sql_store.fetch_relationships()) == 3

        assert await sql_store.delete_ghost_relationships() == 2
        assert await sql_store.delete_ghost_relationships() == 0
        assert await sql_store.fetch_relationships() == [
            TermRelationship(object_id=1, term_taxonomy_id=10),
        ]

    @pytest.mark.asyncio
    async def test_failed_sweep_rolls_back(self, sql_store: SqlTaxonomyStore, seed) -> None:
        """If the store aborts mid-sweep, no ghost is deleted."""
        await seed(
            sql_store,
            relationships=[
                TermRelationship(object_id=98, term_taxonomy_id=500),
                TermRelationship(object_id=99, term_taxonomy_id=501),
            ],
        )
        async with sql_store.transaction() as conn:
            await conn.execute(text(
                "CREATE TRIGGER block_delete BEFORE DELETE ON wp_term_relationships "
                "WHEN OLD.object_id = 99 BEGIN SELECT RAISE(ABORT, 'row locked'); END"
            ))

        with pytest.raises(WriteError):
            await TaxonomyIntegrityRepair(sql_store).delete_ghost_relationships()

        assert len(await sql_store.fetch_relationships()) == 2

    @pytest.mark.asyncio
    async def test_recount(self, sql_store: SqlTaxonomyStore, seed) -> None:
        await seed(
            sql_store,
            term_taxonomies=[TermTaxonomy(term_taxonomy_id=10, term_id=1, taxonomy="category", count=5)],
            relationships=[TermRelationship(object_id=1, term_taxonomy_id=10)],
        )

        assert await sql_store.recount(10) == (5, 1)
        assert await sql_store.recount(10) == (1, 1)
        assert await sql_store.recount(11) is None
        assert (await sql_store.fetch_term_taxonomies())[0].count == 1

    @pytest.mark.asyncio
    async def test_recount_without_tables_is_write_error(self) -> None:
        store = SqlTaxonomyStore(settings=DatabaseSettings(url="sqlite+aiosqlite://"))
        try:
            with pytest.raises(WriteError):
                await store.recount(10)
        finally:
            await store.close()

    # =========================================================================
    # End-to-end
    # =========================================================================

    @pytest.mark.asyncio
    async def test_audit_then_repair(self, sql_store: SqlTaxonomyStore, seed) -> None:
        await seed(
            sql_store,
            terms=[
                Term(term_id=1, name="Red", slug="red"),
                Term(term_id=2, name="Red", slug="red-2"),
                Term(term_id=3, name="Blue", slug="blue"),
            ],
            term_taxonomies=[
                TermTaxonomy(term_taxonomy_id=10, term_id=1, taxonomy="category", count=5),
                TermTaxonomy(term_taxonomy_id=11, term_id=2, taxonomy="legacy_type", parent=40),
            ],
            relationships=[
                TermRelationship(object_id=1, term_taxonomy_id=10),
                TermRelationship(object_id=1, term_taxonomy_id=77),
            ],
        )
        checker = TaxonomyIntegrityChecker(
            store=sql_store,
            taxonomy_provider=StaticTaxonomyProvider(["category", "post_tag"]),
        )
        repair = TaxonomyIntegrityRepair(sql_store)

        report = await checker.check_all()

        assert [t.term_id for t in report.orphan_terms] == [3]
        assert len(report.ghost_relationships) == 1
        assert [(e.term_taxonomy_id, e.stored, e.real) for e in report.incorrect_counts] == [(10, 5, 1)]
        assert [tx.term_taxonomy_id for tx in report.broken_parents] == [11]
        assert [tx.term_taxonomy_id for tx in report.unknown_taxonomies] == [11]
        assert [g.term_ids for g in report.duplicate_names] == [[1, 2]]
        assert report.duplicate_slugs == []

        await repair.delete_orphan_term(3)
        await repair.delete_ghost_relationships()
        await repair.fix_count(10)

        after = await checker.check_all()
        assert after.orphan_terms == []
        assert after.ghost_relationships == []
        assert after.incorrect_counts == []
        # Report-only findings are untouched
        assert len(after.broken_parents) == 1
        assert len(after.unknown_taxonomies) == 1
        assert len(after.duplicate_names) == 1
