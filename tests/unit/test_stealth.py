"""Tests for per-identity stealth profiles."""
import random

from services.stealth import LAUNCH_ARGS, USER_AGENTS, build_stealth_profile
from services.sync_config import StealthConfig


def test_disabled_stealth_gives_no_profile():
    assert build_stealth_profile(StealthConfig(enabled=False)) is None


def test_profile_is_reproducible_with_seeded_rng():
    first = build_stealth_profile(StealthConfig(), rng=random.Random(7))
    second = build_stealth_profile(StealthConfig(), rng=random.Random(7))
    assert first == second
    assert first.user_agent in USER_AGENTS


def test_context_options_include_device_metrics():
    profile = build_stealth_profile(StealthConfig(), rng=random.Random(1))
    options = profile.context_options()
    assert options["user_agent"] == profile.user_agent
    assert options["viewport"] == profile.viewport
    assert options["locale"] == profile.locale
    assert options["timezone_id"] == profile.timezone_id


def test_device_metrics_can_be_left_alone():
    profile = build_stealth_profile(StealthConfig(mock_device_metrics=False), rng=random.Random(1))
    assert "viewport" not in profile.context_options()
    assert "hardwareConcurrency" not in profile.init_script()


def test_init_script_hides_automation_and_spoofs_webgl():
    profile = build_stealth_profile(StealthConfig(), rng=random.Random(3))
    script = profile.init_script()
    assert "'webdriver'" in script
    assert "window.chrome" in script
    assert "37445" in script and "37446" in script
    assert profile.webgl_renderer in script


def test_init_script_respects_toggles():
    config = StealthConfig(hide_webdriver=False, mock_chrome=False, custom_webgl=False, mock_device_metrics=False)
    profile = build_stealth_profile(config, rng=random.Random(3))
    assert profile.init_script() == ""


def test_launch_flags_disable_automation_marker():
    assert "--disable-blink-features=AutomationControlled" in LAUNCH_ARGS
