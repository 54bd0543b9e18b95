"""Tests for SyncConfig building and layering."""
from unittest.mock import MagicMock

import pytest
from sqlalchemy.orm import Session

from models import SystemConfig
from services.sync_config import (
    SyncConfig,
    env_var_name,
    load_sync_config,
    options_from_env,
)


class TestDefaults:
    def test_documented_defaults(self):
        config = SyncConfig()
        assert config.stealth.enabled is True
        assert config.proxy.rotation_interval_minutes == 30
        assert config.proxy.min_success_rate == 0.70
        assert config.proxy.residential_only is True
        assert config.proxy.ban_cooldown_minutes == 60
        assert config.scraping.max_concurrency == 3
        assert config.scraping.request_delay.min_ms == 1000
        assert config.scraping.request_delay.max_ms == 5000
        assert config.retry.max_retries == 3
        assert config.retry.timeout_ms == 30000


class TestFromMapping:
    def test_string_values_are_coerced(self):
        config = SyncConfig.from_mapping({
            "stealth.enabled": "false",
            "proxy.rotationInterval": "45",
            "proxy.minSuccessRate": "0.8",
            "proxy.residentialOnly": "no",
            "proxy.banCooldown": "15",
            "scraping.maxConcurrency": "5",
            "scraping.requestDelay.min": "500",
            "scraping.requestDelay.max": "1500",
        })
        assert config.stealth.enabled is False
        assert config.proxy.rotation_interval_minutes == 45
        assert config.proxy.min_success_rate == 0.8
        assert config.proxy.residential_only is False
        assert config.proxy.ban_cooldown_minutes == 15
        assert config.scraping.max_concurrency == 5
        assert config.scraping.request_delay.min_ms == 500
        assert config.scraping.request_delay.max_ms == 1500

    def test_omitted_and_unknown_keys_keep_defaults(self):
        config = SyncConfig.from_mapping({"proxy.colour": "blue", "retry.maxRetries": None})
        assert config == SyncConfig()

    def test_base_is_layered(self):
        base = SyncConfig.from_mapping({"scraping.maxConcurrency": 2})
        config = SyncConfig.from_mapping({"retry.maxRetries": 5}, base=base)
        assert config.scraping.max_concurrency == 2
        assert config.retry.max_retries == 5

    @pytest.mark.parametrize("values", [
        {"scraping.requestDelay.min": 6000},
        {"scraping.maxConcurrency": 0},
        {"proxy.minSuccessRate": 1.5},
        {"proxy.rotationInterval": "soon"},
        {"stealth.enabled": "maybe"},
        {"proxy.banCooldown": -5},
    ])
    def test_invalid_values_raise(self, values):
        with pytest.raises(ValueError):
            SyncConfig.from_mapping(values)


class TestEnvironment:
    def test_env_var_names(self):
        assert env_var_name("proxy.minSuccessRate") == "CALENDAR_SYNC_PROXY_MIN_SUCCESS_RATE"
        assert env_var_name("scraping.requestDelay.min") == "CALENDAR_SYNC_SCRAPING_REQUEST_DELAY_MIN"
        assert env_var_name("stealth.customWebGL") == "CALENDAR_SYNC_STEALTH_CUSTOM_WEB_GL"
        assert env_var_name("calendar_sync.enabled") == "CALENDAR_SYNC_ENABLED"

    def test_options_from_env(self):
        environ = {"CALENDAR_SYNC_SCRAPING_MAX_CONCURRENCY": "4", "UNRELATED": "x"}
        assert options_from_env(environ) == {"scraping.maxConcurrency": "4"}


class TestLoadSyncConfig:
    def test_database_overrides_environment(self, session_factory):
        with session_factory() as db:
            db.add(SystemConfig(config_key="scraping.maxConcurrency", config_value="6"))
            db.add(SystemConfig(config_key="unrelated_setting", config_value="x"))
            db.commit()

            config = load_sync_config(db, environ={
                "CALENDAR_SYNC_SCRAPING_MAX_CONCURRENCY": "4",
                "CALENDAR_SYNC_PROXY_MIN_SUCCESS_RATE": "0.9",
            })

        assert config.scraping.max_concurrency == 6
        assert config.proxy.min_success_rate == 0.9

    def test_database_error_falls_back_to_environment(self):
        db = MagicMock(spec=Session)
        db.query.side_effect = RuntimeError("connection lost")

        config = load_sync_config(db, environ={"CALENDAR_SYNC_RETRY_MAX_RETRIES": "5"})

        assert config.retry.max_retries == 5

    def test_without_database(self):
        assert load_sync_config(environ={}) == SyncConfig()
