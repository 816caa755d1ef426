"""
Registered Taxonomy Providers.

The host environment owns the list of taxonomies that plugins and themes
currently register; the audit queries it once per run.
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable

import structlog

from src.config.settings import AuditSettings, get_settings

logger = structlog.get_logger(__name__)


class TaxonomyProvider(ABC):
    """Source of the currently registered taxonomy names."""

    @abstractmethod
    async def get_registered_taxonomies(self) -> set[str] | None:
        """
        Return the registered taxonomy names.

        Returns:
            Set of names, or None when the host cannot supply them
        """


class StaticTaxonomyProvider(TaxonomyProvider):
    """Provider returning a fixed set of names."""

    def __init__(self, taxonomies: Iterable[str]) -> None:
        self._taxonomies = frozenset(taxonomies)

    async def get_registered_taxonomies(self) -> set[str] | None:
        return set(self._taxonomies)


class SettingsTaxonomyProvider(TaxonomyProvider):
    """Provider reading AUDIT_REGISTERED_TAXONOMIES from settings on every call."""

    def __init__(self, settings: AuditSettings | None = None) -> None:
        self._settings = settings

    async def get_registered_taxonomies(self) -> set[str] | None:
        settings = self._settings or get_settings().audit
        if not settings.registered_taxonomies:
            # An empty list would flag every row as unregistered
            logger.warning("No registered taxonomies configured")
            return None
        return set(settings.registered_taxonomies)


class CallableTaxonomyProvider(TaxonomyProvider):
    """Provider delegating to a host coroutine (e.g. a call into the CMS)."""

    def __init__(self, fetch: Callable[[], Awaitable[Iterable[str] | None]]) -> None:
        self._fetch = fetch

    async def get_registered_taxonomies(self) -> set[str] | None:
        names = await self._fetch()
        return None if names is None else set(names)
