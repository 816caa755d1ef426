"""
Taxonomy Module.

Audit and repair of the terms, term_taxonomy and term_relationships tables.
"""

from src.taxonomy.commands import (
    CommandResult,
    CommandStatus,
    RepairCommand,
    TaxonomyCommandRouter,
    create_command_router,
)
from src.taxonomy.errors import (
    ConfigurationError,
    IntegrityReadError,
    NotFoundError,
    TaxonomyRepairError,
    TermInUseError,
    WriteError,
)
from src.taxonomy.registry import (
    CallableTaxonomyProvider,
    SettingsTaxonomyProvider,
    StaticTaxonomyProvider,
    TaxonomyProvider,
)
from src.taxonomy.schema import (
    DuplicateGroup,
    IncorrectCount,
    Term,
    TermRelationship,
    TermTaxonomy,
)
from src.taxonomy.sql_store import SqlTaxonomyStore, build_tables, create_sql_store
from src.taxonomy.store import (
    InMemoryTaxonomyStore,
    TableRows,
    TaxonomyStore,
    TermDeleteOutcome,
)

__all__ = [
    # Schema
    "Term",
    "TermTaxonomy",
    "TermRelationship",
    "IncorrectCount",
    "DuplicateGroup",
    # Errors
    "TaxonomyRepairError",
    "IntegrityReadError",
    "ConfigurationError",
    "NotFoundError",
    "WriteError",
    "TermInUseError",
    # Stores
    "TaxonomyStore",
    "TermDeleteOutcome",
    "TableRows",
    "InMemoryTaxonomyStore",
    "SqlTaxonomyStore",
    "build_tables",
    "create_sql_store",
    # Registry
    "TaxonomyProvider",
    "StaticTaxonomyProvider",
    "SettingsTaxonomyProvider",
    "CallableTaxonomyProvider",
    # Commands
    "TaxonomyCommandRouter",
    "RepairCommand",
    "CommandResult",
    "CommandStatus",
    "create_command_router",
]
