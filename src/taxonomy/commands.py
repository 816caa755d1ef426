"""
Taxonomy Command Router.

Transport-independent entry point for the admin actions. A presentation layer
(web handler, CLI, job) maps its request onto `execute(command, params)` and
renders the returned CommandResult.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from src.config.settings import Settings, get_settings
from src.observability.logging import LogContext, configure_from_settings
from src.taxonomy.errors import (
    ConfigurationError,
    IntegrityReadError,
    NotFoundError,
    WriteError,
)
from src.taxonomy.integrity.integrity_checker import IntegrityReport, TaxonomyIntegrityChecker
from src.taxonomy.integrity.integrity_repair import RepairResult, TaxonomyIntegrityRepair
from src.taxonomy.registry import SettingsTaxonomyProvider, TaxonomyProvider
from src.taxonomy.store import TaxonomyStore

logger = structlog.get_logger(__name__)


class RepairCommand(str, Enum):
    """Commands accepted by the router."""

    RUN_AUDIT = "run_audit"
    DELETE_ORPHAN = "delete_orphan"
    DELETE_GHOST_RELATIONSHIPS = "delete_ghost_relationships"
    FIX_COUNT = "fix_count"


class CommandStatus(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"  # Nothing to do
    FAILED = "failed"


@dataclass
class CommandResult:
    """Outcome of one routed command."""

    command: str
    status: CommandStatus
    report: IntegrityReport | None = None
    repair: RepairResult | None = None
    error: str | None = None
    error_type: str | None = None
    retryable: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status != CommandStatus.FAILED

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": self.command,
            "status": self.status.value,
            "success": self.success,
            "report": self.report.to_dict() if self.report else None,
            "repair": self.repair.to_dict() if self.repair else None,
            "error": self.error,
            "error_type": self.error_type,
            "retryable": self.retryable,
            "details": self.details,
        }


class InvalidParamsError(ValueError):
    """Raised when command parameters are missing or malformed."""


_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"", "0", "false", "no", "off"}


def _positive_int(params: dict[str, Any], name: str) -> int:
    value = params.get(name)
    # Query-string values arrive as text; only ASCII 0-9 are accepted
    if isinstance(value, str):
        text = value.strip()
        if text.isascii() and text.isdecimal():
            value = int(text)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidParamsError(f"'{name}' must be a positive integer")
    return value


def _flag(params: dict[str, Any], name: str) -> bool:
    value = params.get(name, False)
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_VALUES:
            return True
        if text in _FALSE_VALUES:
            return False
    raise InvalidParamsError(f"'{name}' must be a boolean")


class TaxonomyCommandRouter:
    """
    Stateless facade dispatching named commands to the checker and repairer.

    Every command builds its result from live storage; nothing is cached
    between calls.

    Usage:
        ```python
        router = TaxonomyCommandRouter(store, StaticTaxonomyProvider(["category"]))

        result = await router.execute("run_audit")
        result = await router.execute("fix_count", {"tt_id": 10})
        result = await router.execute("delete_orphan", {"term_id": 42})
        result = await router.execute("delete_ghost_relationships")
        ```
    """

    def __init__(
        self,
        store: TaxonomyStore,
        taxonomy_provider: TaxonomyProvider | None = None,
    ) -> None:
        self._store = store
        self._checker = TaxonomyIntegrityChecker(store=store, taxonomy_provider=taxonomy_provider)
        self._repair = TaxonomyIntegrityRepair(store=store)

    async def close(self) -> None:
        """Release the store's resources."""
        await self._store.close()

    async def execute(
        self,
        command: str | RepairCommand,
        params: dict[str, Any] | None = None,
    ) -> CommandResult:
        """
        Run one command.

        Args:
            command: Command name (see RepairCommand)
            params: term_id for delete_orphan, tt_id for fix_count,
                optional dry_run for delete_ghost_relationships

        Returns:
            CommandResult; errors are reported in the result, never raised
        """
        params = params or {}
        name = command.value if isinstance(command, RepairCommand) else str(command)

        try:
            resolved = RepairCommand(name)
        except ValueError:
            logger.warning("Unknown command", command=name)
            return CommandResult(
                command=name,
                status=CommandStatus.FAILED,
                error=f"Unknown command: {name}",
                error_type="unknown_command",
            )

        with LogContext(command=name):
            try:
                return await self._dispatch(resolved, params)
            except InvalidParamsError as e:
                return CommandResult(
                    command=name,
                    status=CommandStatus.FAILED,
                    error=str(e),
                    error_type="invalid_params",
                )
            except NotFoundError as e:
                return CommandResult(
                    command=name,
                    status=CommandStatus.NOT_FOUND,
                    error=str(e),
                    error_type="not_found",
                    details={"target": e.target},
                )
            except WriteError as e:
                logger.error("Repair failed", error=str(e))
                return CommandResult(
                    command=name,
                    status=CommandStatus.FAILED,
                    error=str(e),
                    error_type=type(e).__name__,
                    retryable=e.retryable,
                    details={"target": e.target},
                )
            except (IntegrityReadError, ConfigurationError) as e:
                logger.error("Audit failed", error=str(e))
                return CommandResult(
                    command=name,
                    status=CommandStatus.FAILED,
                    error=str(e),
                    error_type=type(e).__name__,
                    retryable=isinstance(e, IntegrityReadError),
                )

    async def _dispatch(self, command: RepairCommand, params: dict[str, Any]) -> CommandResult:
        if command == RepairCommand.RUN_AUDIT:
            report = await self._checker.check_all()
            return CommandResult(command=command.value, status=CommandStatus.OK, report=report)

        if command == RepairCommand.DELETE_ORPHAN:
            repair = await self._repair.delete_orphan_term(_positive_int(params, "term_id"))
        elif command == RepairCommand.FIX_COUNT:
            repair = await self._repair.fix_count(_positive_int(params, "tt_id"))
        else:
            repair = await self._repair.delete_ghost_relationships(
                dry_run=_flag(params, "dry_run")
            )

        return CommandResult(command=command.value, status=CommandStatus.OK, repair=repair)


# Factory function
def create_command_router(settings: Settings | None = None) -> TaxonomyCommandRouter:
    """
    Build a router over the configured SQL store and registered taxonomies.

    This is the host-facing entry point: it also configures logging from the
    same settings.

    Args:
        settings: Application settings (defaults to get_settings())

    Returns:
        TaxonomyCommandRouter ready to execute commands
    """
    from src.taxonomy.sql_store import create_sql_store

    settings = settings or get_settings()
    configure_from_settings(settings)

    logger.info(
        "Taxonomy command router created",
        app=settings.app_name,
        environment=settings.environment,
    )

    return TaxonomyCommandRouter(
        store=create_sql_store(settings.database),
        taxonomy_provider=SettingsTaxonomyProvider(settings.audit),
    )
