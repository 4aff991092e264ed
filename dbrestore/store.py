# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Configuration record access.

Adapter configurations and encryption profiles are persisted by external
configuration management. The orchestrator only reads them through the
ConfigStore protocol.
"""

from typing import Dict, Iterable, List, Protocol

from dbrestore.models import AdapterConfig, EncryptionProfile


class ConfigStore(Protocol):
    """Read-only view over configuration records."""

    async def get_adapter_config(self, config_id: str) -> AdapterConfig | None:
        ...

    async def get_encryption_profile(self, profile_id: str) -> EncryptionProfile | None:
        ...

    async def list_encryption_profiles(self) -> List[EncryptionProfile]:
        """All profiles, in a stable enumeration order."""
        ...


class InMemoryConfigStore:
    """ConfigStore backed by dictionaries; for embedding and tests."""

    def __init__(
        self,
        adapter_configs: Iterable[AdapterConfig] = (),
        profiles: Iterable[EncryptionProfile] = (),
    ):
        self._configs: Dict[str, AdapterConfig] = {c.id: c for c in adapter_configs}
        self._profiles: Dict[str, EncryptionProfile] = {p.id: p for p in profiles}

    def add_adapter_config(self, config: AdapterConfig) -> None:
        self._configs[config.id] = config

    def add_profile(self, profile: EncryptionProfile) -> None:
        self._profiles[profile.id] = profile

    def remove_profile(self, profile_id: str) -> None:
        self._profiles.pop(profile_id, None)

    async def get_adapter_config(self, config_id: str) -> AdapterConfig | None:
        return self._configs.get(config_id)

    async def get_encryption_profile(self, profile_id: str) -> EncryptionProfile | None:
        return self._profiles.get(profile_id)

    async def list_encryption_profiles(self) -> List[EncryptionProfile]:
        # Insertion order is the enumeration order
        return list(self._profiles.values())
