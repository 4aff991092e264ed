# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Test fixtures for dbrestore tests.

Provides a local storage root, fake database adapters, encrypted backup
builders and an initialized orchestrator.
"""

import gzip
import json
import os
import tempfile
from pathlib import Path
from typing import Generator, List

import brotli
import pytest
import pytest_asyncio
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from dbrestore.adapters.base import AdapterResult, Capability, ConnectionTestResult
from dbrestore.adapters.local import LocalStorageAdapter
from dbrestore.adapters.registry import build_registry
from dbrestore.config import AdapterKind, RestoreEngineConfig
from dbrestore.models import AdapterConfig, EncryptionProfile
from dbrestore.orchestrator import RestoreOrchestrator
from dbrestore.security.secrets import encrypt_secret
from dbrestore.store import InMemoryConfigStore

# Set test environment variables
os.environ["DBRESTORE_ADMIN_API_KEY"] = "test-api-key-12345"

SYSTEM_KEY_HEX = "00112233445566778899aabbccddeeff" * 2
SYSTEM_KEY = bytes.fromhex(SYSTEM_KEY_HEX)


# ============================================================================
# Fake adapters
# ============================================================================


class RecordingStorageAdapter(LocalStorageAdapter):
    """Local storage that records every download."""

    def __init__(self):
        self.downloads: List[str] = []

    async def download(self, config, remote_path, local_path, on_progress=None):
        self.downloads.append(remote_path)
        return await super().download(config, remote_path, local_path, on_progress)


class FakeDatabaseAdapter:
    """
    Database adapter that records calls instead of running engine tools.

    restore() keeps the bytes it was given so tests can assert on payloads.
    """

    kind = AdapterKind.DATABASE

    def __init__(
        self,
        adapter_id: str = "postgres",
        version: str | None = "16.2",
        edition: str | None = None,
        capabilities=frozenset(),
        restore_error: str | None = None,
        log_lines: tuple = (),
    ):
        self.id = adapter_id
        self.name = adapter_id.title()
        self.capabilities = frozenset(capabilities)
        self.version = version
        self.edition = edition
        self.restore_error = restore_error
        self.log_lines = log_lines
        self.restore_calls: List[dict] = []
        self.restored_payloads: List[bytes] = []
        self.prepare_calls: List[List[str]] = []
        self.database_calls: List[tuple] = []
        self.prepare_error: str | None = None

    async def dump(self, config, destination_path):
        return AdapterResult(success=False, error="not supported")

    async def test(self, config):
        return ConnectionTestResult(
            success=True, message="ok", version=self.version, edition=self.edition
        )

    async def restore(self, config, source_path, on_log=None, on_progress=None):
        self.restore_calls.append(dict(config))
        self.restored_payloads.append(Path(source_path).read_bytes())
        for line in self.log_lines:
            if on_log:
                on_log(line, None, None, None)
        if on_progress:
            on_progress(100)
        if self.restore_error:
            return AdapterResult(success=False, error=self.restore_error)
        return AdapterResult(success=True, logs=list(self.log_lines))

    async def prepare_restore(self, config, database_names):
        self.prepare_calls.append(list(database_names))
        if self.prepare_error:
            raise RuntimeError(self.prepare_error)

    async def restore_database(
        self, config, source_path, source_name, target_name, on_log=None
    ):
        self.database_calls.append(
            (source_name, target_name, Path(source_path).read_bytes())
        )
        return AdapterResult(success=True, logs=[f"restored {target_name}"])


# ============================================================================
# Backup builders
# ============================================================================


def make_profile(profile_id: str, key: bytes, name: str | None = None) -> EncryptionProfile:
    """Encryption profile whose stored secret wraps key under the system key."""
    return EncryptionProfile(
        id=profile_id,
        name=name or profile_id,
        secret_key=encrypt_secret(key.hex(), SYSTEM_KEY),
    )


def gcm_encrypt(key: bytes, data: bytes) -> tuple[bytes, bytes, bytes]:
    """Return (iv, auth_tag, ciphertext) for a single GCM stream."""
    iv = os.urandom(16)
    sealed = AESGCM(key).encrypt(iv, data, None)
    return iv, sealed[-16:], sealed[:-16]


def write_backup(
    root: Path,
    name: str,
    payload: bytes,
    *,
    compression: str = "NONE",
    key: bytes | None = None,
    profile_id: str | None = None,
    source_type: str | None = "postgres",
    engine_version: str | None = "16.2",
    engine_edition: str | None = None,
    sidecar: bool = True,
    include_iv: bool = True,
) -> Path:
    """
    Write an artifact (and its .meta.json sidecar) the way a backup job would.

    Returns:
        Path of the artifact
    """
    data = payload
    if compression == "GZIP":
        data = gzip.compress(data)
    elif compression == "BROTLI":
        data = brotli.compress(data)

    encryption = {"enabled": False}
    if key is not None:
        iv, tag, data = gcm_encrypt(key, data)
        encryption = {"enabled": True, "profileId": profile_id}
        if include_iv:
            encryption.update(iv=iv.hex(), authTag=tag.hex())

    artifact = root / name
    artifact.parent.mkdir(parents=True, exist_ok=True)
    artifact.write_bytes(data)

    if sidecar:
        meta = {
            "sourceType": source_type,
            "sourceName": "Primary",
            "jobName": "nightly",
            "engineVersion": engine_version,
            "engineEdition": engine_edition,
            "databases": {"count": 1},
            "compression": compression,
            "encryption": encryption,
            "locked": False,
        }
        (root / f"{name}.meta.json").write_text(json.dumps(meta))
    return artifact


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def storage_root(temp_dir: Path) -> Path:
    root = temp_dir / "storage"
    root.mkdir()
    return root


@pytest.fixture
def engine_config(temp_dir: Path) -> RestoreEngineConfig:
    """Engine config writing every flush immediately."""
    return RestoreEngineConfig(
        state_path=temp_dir / "state",
        scratch_dir=temp_dir / "scratch",
        system_key_hex=SYSTEM_KEY_HEX,
        flush_interval_seconds=0,
    )


@pytest.fixture
def storage_adapter() -> RecordingStorageAdapter:
    return RecordingStorageAdapter()


@pytest.fixture
def database_adapter() -> FakeDatabaseAdapter:
    return FakeDatabaseAdapter()


@pytest.fixture
def config_store(storage_root: Path) -> InMemoryConfigStore:
    """Store with one local storage config and one postgres target."""
    return InMemoryConfigStore(
        adapter_configs=[
            AdapterConfig(
                id="storage-1",
                kind=AdapterKind.STORAGE,
                adapter_id="local-filesystem",
                config={"base_path": str(storage_root)},
                name="Local backups",
            ),
            AdapterConfig(
                id="target-1",
                kind=AdapterKind.DATABASE,
                adapter_id="postgres",
                config={
                    "host": "localhost",
                    "user": "app",
                    "password": encrypt_secret("s3cret", SYSTEM_KEY),
                },
                name="Staging Postgres",
            ),
        ]
    )


@pytest_asyncio.fixture
async def orchestrator(
    engine_config: RestoreEngineConfig,
    config_store: InMemoryConfigStore,
    storage_adapter: RecordingStorageAdapter,
    database_adapter: FakeDatabaseAdapter,
):
    """Initialized orchestrator over the recording adapters."""
    registry = build_registry([storage_adapter, database_adapter])
    orch = RestoreOrchestrator(registry, config_store, engine_config)
    await orch.initialize()
    yield orch
    await orch.close()
