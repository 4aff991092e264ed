# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
dbrestore Adapter Registry - Immutable adapter lookup.

The registry is built once at startup and handed to the orchestrator's
constructor. Lookups are O(1); an unknown id is a configuration error
raised immediately.
"""

from types import MappingProxyType
from typing import Any, Iterable, List, Mapping

import structlog

from dbrestore.adapters.base import DatabaseAdapter, StorageAdapter
from dbrestore.config import AdapterKind
from dbrestore.errors import explain_adapter_not_registered
from dbrestore.exceptions import ConfigurationError

logger = structlog.get_logger()


class AdapterRegistry:
    """Read-only mapping from adapter id to implementation."""

    __slots__ = ("_adapters",)

    def __init__(self, adapters: Mapping[str, Any]):
        self._adapters: Mapping[str, Any] = MappingProxyType(dict(adapters))

    def __contains__(self, adapter_id: object) -> bool:
        return adapter_id in self._adapters

    def __len__(self) -> int:
        return len(self._adapters)

    def get(self, adapter_id: str) -> Any:
        """
        Return the adapter registered under adapter_id.

        Raises:
            ConfigurationError: If nothing is registered under that id
        """
        try:
            return self._adapters[adapter_id]
        except KeyError:
            raise ConfigurationError(
                explain_adapter_not_registered(adapter_id),
                details={"adapter_id": adapter_id},
            ) from None

    def get_storage(self, adapter_id: str) -> StorageAdapter:
        return self._get_kind(adapter_id, AdapterKind.STORAGE)

    def get_database(self, adapter_id: str) -> DatabaseAdapter:
        return self._get_kind(adapter_id, AdapterKind.DATABASE)

    def by_kind(self, kind: AdapterKind) -> List[Any]:
        return [a for a in self._adapters.values() if a.kind == kind]

    def ids(self) -> List[str]:
        return sorted(self._adapters)

    def _get_kind(self, adapter_id: str, kind: AdapterKind) -> Any:
        adapter = self.get(adapter_id)
        if adapter.kind != kind:
            raise ConfigurationError(
                f"Adapter '{adapter_id}' is a {adapter.kind.value} adapter, "
                f"expected {kind.value}",
                details={"adapter_id": adapter_id},
            )
        return adapter


def build_registry(adapters: Iterable[Any]) -> AdapterRegistry:
    """
    Build the registry from adapter instances.

    Raises:
        ConfigurationError: If two adapters share an id
    """
    table = {}
    for adapter in adapters:
        if adapter.id in table:
            raise ConfigurationError(
                f"Adapter id '{adapter.id}' registered twice",
                details={"adapter_id": adapter.id},
            )
        table[adapter.id] = adapter

    logger.info("adapter_registry_built", adapters=sorted(table))
    return AdapterRegistry(table)
