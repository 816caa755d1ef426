"""
SQL Taxonomy Store Module.

SQLAlchemy (asyncio) implementation of the taxonomy store over the WordPress
terms, term_taxonomy and term_relationships tables.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

import structlog
from pydantic import BaseModel
from sqlalchemy import (
    BigInteger,
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    delete,
    func,
    select,
    update,
)
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from src.config.settings import DatabaseSettings, get_settings
from src.taxonomy.errors import IntegrityReadError, WriteError
from src.taxonomy.schema import Term, TermRelationship, TermTaxonomy
from src.taxonomy.store import TableRows, TaxonomyStore, TermDeleteOutcome

logger = structlog.get_logger(__name__)

# BIGINT UNSIGNED ids in MySQL; SQLite only auto-assigns INTEGER primary keys
_Id = BigInteger().with_variant(Integer(), "sqlite")


@dataclass(frozen=True)
class TaxonomyTables:
    """The three taxonomy tables bound to one MetaData."""

    metadata: MetaData
    terms: Table
    term_taxonomy: Table
    term_relationships: Table


def build_tables(prefix: str = "wp_") -> TaxonomyTables:
    """
    Describe the taxonomy tables for a given table prefix.

    Args:
        prefix: Table name prefix (e.g. "wp_", "wp_2_" on multisite)

    Returns:
        TaxonomyTables bound to a fresh MetaData
    """
    metadata = MetaData()

    terms = Table(
        f"{prefix}terms",
        metadata,
        Column("term_id", _Id, primary_key=True, autoincrement=True),
        Column("name", String(200), nullable=False, default=""),
        Column("slug", String(200), nullable=False, default=""),
        Column("term_group", BigInteger, nullable=False, default=0),
    )

    term_taxonomy = Table(
        f"{prefix}term_taxonomy",
        metadata,
        Column("term_taxonomy_id", _Id, primary_key=True, autoincrement=True),
        Column("term_id", BigInteger, nullable=False, default=0),
        Column("taxonomy", String(32), nullable=False, default=""),
        Column("description", Text, nullable=False, default=""),
        Column("parent", BigInteger, nullable=False, default=0),
        Column("count", BigInteger, nullable=False, default=0),
    )

    term_relationships = Table(
        f"{prefix}term_relationships",
        metadata,
        Column("object_id", BigInteger, primary_key=True, default=0),
        Column("term_taxonomy_id", BigInteger, primary_key=True, default=0),
        Column("term_order", Integer, nullable=False, default=0),
    )

    return TaxonomyTables(
        metadata=metadata,
        terms=terms,
        term_taxonomy=term_taxonomy,
        term_relationships=term_relationships,
    )


def _is_memory_sqlite(url: str) -> bool:
    parsed = make_url(url)
    return parsed.get_backend_name() == "sqlite" and parsed.database in (None, "", ":memory:")


class SqlTaxonomyStore(TaxonomyStore):
    """
    Taxonomy store over a relational database.

    Reads run on a plain connection; every write runs in its own transaction
    with the structural predicate evaluated inside the write statement, so a
    failure rolls back and concurrent changes cannot be overwritten.

    Usage:
        ```python
        store = SqlTaxonomyStore()
        await store.connect()
        terms = await store.fetch_terms()
        deleted = await store.delete_ghost_relationships()
        await store.close()
        ```
    """

    def __init__(
        self,
        settings: DatabaseSettings | None = None,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._settings = settings or get_settings().database
        self._engine: AsyncEngine | None = engine
        self._tables = build_tables(self._settings.table_prefix)

    @property
    def tables(self) -> TaxonomyTables:
        return self._tables

    @property
    def engine(self) -> AsyncEngine | None:
        return self._engine

    async def connect(self) -> None:
        """Create the async engine."""
        if self._engine is not None:
            return

        options: dict[str, Any] = {"echo": self._settings.echo}
        if _is_memory_sqlite(self._settings.url):
            options["poolclass"] = StaticPool

        self._engine = create_async_engine(self._settings.url, **options)
        logger.info(
            "Connected to taxonomy store",
            url=self._engine.url.render_as_string(hide_password=True),
            table_prefix=self._settings.table_prefix,
        )

    async def close(self) -> None:
        """Dispose of the engine and its pooled connections."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            logger.info("Disconnected from taxonomy store")

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[AsyncConnection, None]:
        """Get a read connection."""
        if self._engine is None:
            await self.connect()

        assert self._engine is not None  # Type guard for mypy
        async with self._engine.connect() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[AsyncConnection, None]:
        """Get a connection inside a transaction; commits on exit, rolls back on error."""
        if self._engine is None:
            await self.connect()

        assert self._engine is not None  # Type guard for mypy
        async with self._engine.begin() as conn:
            yield conn

    async def create_schema(self) -> None:
        """Create the taxonomy tables if they do not exist."""
        async with self.transaction() as conn:
            await conn.run_sync(self._tables.metadata.create_all)

    # =========================================================================
    # Snapshot reads
    # =========================================================================

    @staticmethod
    async def _read_table(conn: AsyncConnection, table: Table, model: type[BaseModel]) -> list[Any]:
        try:
            result = await conn.execute(select(table))
            rows = result.mappings().all()
        except SQLAlchemyError as e:
            logger.error("Failed to read table", table=table.name, error=str(e))
            raise IntegrityReadError(f"Could not read table {table.name}", target=table.name) from e

        # NULL columns fall back to model defaults
        return [
            model.model_validate({k: v for k, v in row.items() if v is not None})
            for row in rows
        ]

    async def _fetch_all(self, table: Table, model: type[BaseModel]) -> list[Any]:
        try:
            async with self.connection() as conn:
                return await self._read_table(conn, table, model)
        except SQLAlchemyError as e:
            raise IntegrityReadError(f"Could not read table {table.name}", target=table.name) from e

    async def fetch_terms(self) -> list[Term]:
        return await self._fetch_all(self._tables.terms, Term)

    async def fetch_term_taxonomies(self) -> list[TermTaxonomy]:
        return await self._fetch_all(self._tables.term_taxonomy, TermTaxonomy)

    async def fetch_relationships(self) -> list[TermRelationship]:
        return await self._fetch_all(self._tables.term_relationships, TermRelationship)

    async def fetch_snapshot(self) -> TableRows:
        """Read all three tables on one connection inside one transaction."""
        tables = self._tables
        try:
            async with self.transaction() as conn:
                return TableRows(
                    terms=await self._read_table(conn, tables.terms, Term),
                    term_taxonomies=await self._read_table(conn, tables.term_taxonomy, TermTaxonomy),
                    relationships=await self._read_table(
                        conn, tables.term_relationships, TermRelationship
                    ),
                )
        except SQLAlchemyError as e:
            logger.error("Failed to read taxonomy snapshot", error=str(e))
            raise IntegrityReadError("Could not read taxonomy snapshot") from e

    def _count_query(self, term_taxonomy_id: int):
        rel = self._tables.term_relationships
        return (
            select(func.count())
            .select_from(rel)
            .where(rel.c.term_taxonomy_id == term_taxonomy_id)
        )

    async def count_relationships(self, term_taxonomy_id: int) -> int:
        try:
            async with self.connection() as conn:
                result = await conn.execute(self._count_query(term_taxonomy_id))
                return int(result.scalar_one())
        except SQLAlchemyError as e:
            raise IntegrityReadError(
                "Could not count relationships", target=term_taxonomy_id
            ) from e

    # =========================================================================
    # Guarded writes
    # =========================================================================

    async def delete_orphan_term(self, term_id: int) -> TermDeleteOutcome:
        terms = self._tables.terms
        tt = self._tables.term_taxonomy

        in_use = select(tt.c.term_taxonomy_id).where(tt.c.term_id == term_id).exists()
        exists = select(terms.c.term_id).where(terms.c.term_id == term_id)

        try:
            async with self.transaction() as conn:
                if (await conn.execute(exists)).first() is None:
                    return TermDeleteOutcome.NOT_FOUND

                result = await conn.execute(
                    delete(terms).where(terms.c.term_id == term_id).where(~in_use)
                )
                if result.rowcount > 0:
                    return TermDeleteOutcome.DELETED

                # Nothing deleted: either the guard held or the term vanished meanwhile
                if (await conn.execute(exists)).first() is None:
                    return TermDeleteOutcome.NOT_FOUND
                return TermDeleteOutcome.IN_USE
        except SQLAlchemyError as e:
            logger.error("Orphan term delete rejected", term_id=term_id, error=str(e))
            raise WriteError(f"Could not delete term {term_id}", target=term_id) from e

    def _ghost_predicate(self):
        tt = self._tables.term_taxonomy
        rel = self._tables.term_relationships
        return ~(
            select(tt.c.term_taxonomy_id)
            .where(tt.c.term_taxonomy_id == rel.c.term_taxonomy_id)
            .correlate(rel)
            .exists()
        )

    async def delete_ghost_relationships(self, dry_run: bool = False) -> int:
        rel = self._tables.term_relationships

        if dry_run:
            try:
                async with self.connection() as conn:
                    result = await conn.execute(
                        select(func.count()).select_from(rel).where(self._ghost_predicate())
                    )
                    return int(result.scalar_one())
            except SQLAlchemyError as e:
                raise IntegrityReadError("Could not count ghost relationships") from e

        try:
            async with self.transaction() as conn:
                result = await conn.execute(delete(rel).where(self._ghost_predicate()))
                return int(result.rowcount)
        except SQLAlchemyError as e:
            logger.error("Ghost relationship sweep rolled back", error=str(e))
            raise WriteError("Could not delete ghost relationships") from e

    async def recount(self, term_taxonomy_id: int) -> tuple[int, int] | None:
        tt = self._tables.term_taxonomy
        count_col = tt.c["count"]

        try:
            async with self.transaction() as conn:
                found = await conn.execute(
                    select(count_col).where(tt.c.term_taxonomy_id == term_taxonomy_id)
                )
                row = found.first()
                if row is None:
                    return None

                old = int(row[0])
                real = int((await conn.execute(self._count_query(term_taxonomy_id))).scalar_one())
                await conn.execute(
                    update(tt)
                    .where(tt.c.term_taxonomy_id == term_taxonomy_id)
                    .values({"count": real})
                )
                return old, real
        except SQLAlchemyError as e:
            logger.error("Count update rejected", term_taxonomy_id=term_taxonomy_id, error=str(e))
            raise WriteError(
                f"Could not update count for term taxonomy {term_taxonomy_id}",
                target=term_taxonomy_id,
            ) from e


# Factory function
def create_sql_store(settings: DatabaseSettings | None = None) -> SqlTaxonomyStore:
    """Create an SQL taxonomy store from settings."""
    return SqlTaxonomyStore(settings=settings)
