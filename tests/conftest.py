import pytest
from datetime import datetime, timedelta, timezone

from llkeys.vault import ConfigStore, CredentialStore, VaultConfig


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def vault_config(tmp_path):
    return VaultConfig.for_home(tmp_path)


@pytest.fixture
def config_store(vault_config):
    return ConfigStore(vault_config.config_path)


@pytest.fixture
def store(vault_config, config_store, clock):
    """A fresh store with a generated key valid for 30 minutes."""
    return CredentialStore(vault_config, config_store=config_store, clock=clock)


@pytest.fixture
def reopen(vault_config, config_store, clock):
    """Factory building a new store over the same files."""
    def _open():
        return CredentialStore(
            vault_config, config_store=config_store, clock=clock,
        )
    return _open
