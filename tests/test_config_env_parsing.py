from __future__ import annotations

import pytest
from pydantic import ValidationError

from fidelity.config import DiscordConfig, FidelityConfig


@pytest.fixture(autouse=True)
def _no_yaml(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("FIDELITY_CONFIG_PATH", str(tmp_path / "missing.yaml"))


def test_defaults_leave_discord_unconfigured() -> None:
    config = FidelityConfig.load()

    assert config.discord.configured is False
    assert config.discord.max_reconnect_attempts == 5
    assert config.discord.reconnect_delay_s == 5.0
    assert config.discord.custom_point_options == [5, 10, 15, 20, 25, 30, 50, 100]


def test_discord_env_vars_are_read(monkeypatch) -> None:
    monkeypatch.setenv("FIDELITY_DISCORD_BOT_TOKEN", "abc")
    monkeypatch.setenv("FIDELITY_DISCORD_CHANNEL_ID", "1234567890")
    monkeypatch.setenv("FIDELITY_DISCORD_MAX_RECONNECT_ATTEMPTS", "3")

    config = FidelityConfig.load()

    assert config.discord.configured is True
    assert config.discord.channel_id == "1234567890"
    assert config.discord.max_reconnect_attempts == 3


def test_point_options_accept_plain_strings(monkeypatch) -> None:
    monkeypatch.setenv("FIDELITY_DISCORD_CUSTOM_POINT_OPTIONS", "5, 10,40")
    assert DiscordConfig().custom_point_options == [5, 10, 40]

    monkeypatch.setenv("FIDELITY_DISCORD_CUSTOM_POINT_OPTIONS", "[1, 2]")
    assert DiscordConfig().custom_point_options == [1, 2]


def test_point_options_must_be_positive(monkeypatch) -> None:
    monkeypatch.setenv("FIDELITY_DISCORD_CUSTOM_POINT_OPTIONS", "5,0")
    with pytest.raises(ValidationError):
        DiscordConfig()


def test_channel_id_must_be_numeric() -> None:
    with pytest.raises(ValidationError):
        DiscordConfig(channel_id="general")


def test_yaml_discord_section_is_loaded(monkeypatch, tmp_path) -> None:
    path = tmp_path / "fidelity.yaml"
    path.write_text(
        "port: 9000\n"
        "discord:\n"
        "  bot_token: yaml-token\n"
        "  channel_id: 42\n"
        "  receipt_points: 15\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("FIDELITY_CONFIG_PATH", str(path))

    config = FidelityConfig.load()

    assert config.port == 9000
    assert config.discord.bot_token == "yaml-token"
    assert config.discord.channel_id == "42"
    assert config.discord.receipt_points == 15
