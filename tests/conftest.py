"""
Pytest Configuration and Shared Fixtures.

This module provides shared fixtures for testing the taxonomy audit and repair core.
"""

from collections.abc import AsyncGenerator, Iterable
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import insert

from src.config.settings import AuditSettings, DatabaseSettings, Settings, get_settings
from src.taxonomy.registry import StaticTaxonomyProvider
from src.taxonomy.schema import Term, TermRelationship, TermTaxonomy
from src.taxonomy.sql_store import SqlTaxonomyStore
from src.taxonomy.store import InMemoryTaxonomyStore, TableRows, TaxonomyStore


# =============================================================================
# Settings Fixtures
# =============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Provide test settings with mock values."""
    with patch.dict(
        "os.environ",
        {
            "DATABASE_URL": "sqlite+aiosqlite://",
            "DATABASE_TABLE_PREFIX": "wp_",
            "AUDIT_REGISTERED_TAXONOMIES": '["category", "post_tag"]',
        },
    ):
        # Clear cache and get fresh settings
        get_settings.cache_clear()
        settings = get_settings()
    get_settings.cache_clear()
    return settings


@pytest.fixture
def audit_settings() -> AuditSettings:
    """Audit settings with live recounting."""
    return AuditSettings(registered_taxonomies=["category", "post_tag"], live_recount=True)


@pytest.fixture
def taxonomy_provider() -> StaticTaxonomyProvider:
    """Provider registering only the two core content taxonomies."""
    return StaticTaxonomyProvider(["category", "post_tag"])


# =============================================================================
# Sample Data Fixtures
# =============================================================================


@pytest.fixture
def sample_terms() -> list[Term]:
    return [
        Term(term_id=1, name="News", slug="news"),
        Term(term_id=2, name="Sport", slug="sport"),
        Term(term_id=3, name="Unused", slug="unused"),
    ]


@pytest.fixture
def sample_term_taxonomies() -> list[TermTaxonomy]:
    return [
        TermTaxonomy(term_taxonomy_id=10, term_id=1, taxonomy="category", count=2),
        TermTaxonomy(term_taxonomy_id=11, term_id=2, taxonomy="category", parent=1, count=1),
        TermTaxonomy(term_taxonomy_id=12, term_id=2, taxonomy="post_tag", count=0),
    ]


@pytest.fixture
def sample_relationships() -> list[TermRelationship]:
    return [
        TermRelationship(object_id=100, term_taxonomy_id=10),
        TermRelationship(object_id=101, term_taxonomy_id=10),
        TermRelationship(object_id=101, term_taxonomy_id=11),
    ]


@pytest.fixture
def healthy_store(
    sample_terms: list[Term],
    sample_term_taxonomies: list[TermTaxonomy],
    sample_relationships: list[TermRelationship],
) -> InMemoryTaxonomyStore:
    """Store whose only finding is the unused term 3."""
    return InMemoryTaxonomyStore(
        terms=sample_terms,
        term_taxonomies=sample_term_taxonomies,
        relationships=sample_relationships,
    )


# =============================================================================
# Store Fixtures
# =============================================================================


@pytest.fixture
def mock_store() -> MagicMock:
    """Create a mock taxonomy store with empty tables."""
    store = MagicMock(spec=TaxonomyStore)

    store.connect = AsyncMock()
    store.close = AsyncMock()

    store.fetch_terms = AsyncMock(return_value=[])
    store.fetch_term_taxonomies = AsyncMock(return_value=[])
    store.fetch_relationships = AsyncMock(return_value=[])
    store.count_relationships = AsyncMock(return_value=0)

    async def fetch_snapshot() -> TableRows:
        return TableRows(
            terms=await store.fetch_terms(),
            term_taxonomies=await store.fetch_term_taxonomies(),
            relationships=await store.fetch_relationships(),
        )

    store.fetch_snapshot = AsyncMock(side_effect=fetch_snapshot)

    store.delete_orphan_term = AsyncMock()
    store.delete_ghost_relationships = AsyncMock(return_value=0)
    store.recount = AsyncMock(return_value=None)

    return store


@pytest.fixture
async def sql_store() -> AsyncGenerator[SqlTaxonomyStore, None]:
    """SQL store over a fresh in-memory SQLite database with the tables created."""
    store = SqlTaxonomyStore(
        settings=DatabaseSettings(url="sqlite+aiosqlite://", table_prefix="wp_"),
    )
    try:
        await store.connect()
        await store.create_schema()
        yield store
    finally:
        await store.close()


# =============================================================================
# Utility Functions
# =============================================================================


async def seed_sql_store(
    store: SqlTaxonomyStore,
    terms: Iterable[Term] = (),
    term_taxonomies: Iterable[TermTaxonomy] = (),
    relationships: Iterable[TermRelationship] = (),
) -> None:
    """Insert rows into the SQL store's tables."""
    tables = store.tables
    batches = [
        (tables.terms, [t.model_dump() for t in terms]),
        (tables.term_taxonomy, [tx.model_dump() for tx in term_taxonomies]),
        (tables.term_relationships, [r.model_dump() for r in relationships]),
    ]

    async with store.transaction() as conn:
        for table, rows in batches:
            if rows:
                await conn.execute(insert(table), rows)


@pytest.fixture
def seed():
    """Expose seed_sql_store to tests."""
    return seed_sql_store
