from __future__ import annotations

from pathlib import Path

import pytest

from checkout_recovery.campaigns import RecoveryCampaign
from checkout_recovery.config_store import (
    ConfigStore,
    InMemoryConfigStore,
    RecoverySettings,
    SqlAlchemyConfigStore,
    StoreConfigProvider,
    create_config_store,
    merge_settings,
)


@pytest.fixture(params=["inmemory", "sqlite"])
def config_store(request: pytest.FixtureRequest, tmp_path: Path) -> ConfigStore:
    if request.param == "sqlite":
        return SqlAlchemyConfigStore(f"sqlite:///{tmp_path / 'config.db'}")
    return InMemoryConfigStore()


def _by_name(store: ConfigStore, name: str) -> RecoveryCampaign:
    return next(value for value in store.list_campaigns() if value.name == name)


def test_defaults_are_returned_before_any_write(config_store: ConfigStore) -> None:
    settings = config_store.read_settings()

    assert settings == RecoverySettings()
    assert settings.retry_minutes == (15, 360, 1440)
    assert settings.send_sms is False


def test_write_settings_merges_partial_changes(config_store: ConfigStore) -> None:
    updated = config_store.write_settings({"brand_name": "Acme", "retry_minutes": [5, 10]})

    assert updated.brand_name == "Acme"
    assert updated.retry_minutes == (5, 10)
    assert updated.support_email == "support@example.com"
    assert config_store.read_settings() == updated


def test_merge_settings_ignores_unknown_and_none_values() -> None:
    merged = merge_settings(RecoverySettings(), {"brand_name": None, "unknown": "x", "send_sms": True})

    assert merged.brand_name == "Retryly"
    assert merged.send_sms is True


def test_activating_a_campaign_pauses_the_previous_one(config_store: ConfigStore) -> None:
    vip = _by_name(config_store, "VIP Rescue")

    updated = config_store.set_campaign_status(vip.id, "ACTIVE")

    assert updated is not None and updated.status == "ACTIVE"
    assert _by_name(config_store, "Core Recovery").status == "PAUSED"
    active = config_store.get_active_campaign()
    assert active is not None and active.id == vip.id


def test_saving_an_active_campaign_keeps_a_single_active(config_store: ConfigStore) -> None:
    vip = _by_name(config_store, "VIP Rescue")

    config_store.save_campaign(RecoveryCampaign(**{**vip.__dict__, "status": "ACTIVE", "name": "VIP Rescue 2"}))

    statuses = [value.status for value in config_store.list_campaigns()]
    assert statuses.count("ACTIVE") == 1
    assert _by_name(config_store, "VIP Rescue 2").status == "ACTIVE"


def test_unknown_campaign_status_change_returns_none(config_store: ConfigStore) -> None:
    assert config_store.set_campaign_status("missing", "ACTIVE") is None


def test_reset_restores_defaults(config_store: ConfigStore) -> None:
    config_store.write_settings({"brand_name": "Acme"})
    config_store.set_campaign_status(_by_name(config_store, "VIP Rescue").id, "ACTIVE")

    config_store.reset()

    assert config_store.read_settings().brand_name == "Retryly"
    active = config_store.get_active_campaign()
    assert active is not None and active.name == "Core Recovery"


def test_provider_reads_retry_policy_fresh_from_settings() -> None:
    store = InMemoryConfigStore()
    provider = StoreConfigProvider(store)

    assert provider.retry_policy().minutes_after_failure == (15, 360, 1440)
    store.write_settings({"retry_minutes": [1, 2]})
    assert provider.retry_policy().max_attempts == 2


def test_provider_without_targeting_has_no_active_campaign() -> None:
    provider = StoreConfigProvider(InMemoryConfigStore(), campaign_targeting_enabled=False)

    assert provider.active_campaign() is None


def test_create_config_store_rejects_unknown_backend() -> None:
    with pytest.raises(RuntimeError, match="unsupported CONFIG_STORE_BACKEND"):
        create_config_store(backend="file", database_url="")
