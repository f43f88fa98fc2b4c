"""
Tests for configuration, the attach slot and the command line.
"""
from pathlib import Path

import pytest

from pollen_wall.attach import AttachController
from pollen_wall.config import APP_FOLDER_NAME, DEFAULT_POLLINATIONS_MULTIADDR, WatcherConfig
from pollen_wall.main import build_config, parse_args


class TestWatcherConfig:
    """Tests for defaults and environment overrides."""

    def test_defaults(self, monkeypatch):
        for name in ("POLLEN_WALL_ADDRESS", "POLLEN_WALL_HOME", "POLLEN_WALL_ATTACH", "LOG_LEVEL"):
            monkeypatch.delenv(name, raising=False)

        config = WatcherConfig.from_env()

        assert config.address == DEFAULT_POLLINATIONS_MULTIADDR
        assert config.home is None
        assert not config.attach
        assert config.ignore_done_after_apply

    def test_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("POLLEN_WALL_ADDRESS", "/ip4/127.0.0.1/tcp/5001")
        monkeypatch.setenv("POLLEN_WALL_HOME", str(tmp_path))
        monkeypatch.setenv("POLLEN_WALL_ATTACH", "yes")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        config = WatcherConfig.from_env()

        assert config.address == "/ip4/127.0.0.1/tcp/5001"
        assert config.app_folder == tmp_path / APP_FOLDER_NAME
        assert config.attach
        assert config.log_level == "DEBUG"


class TestCommandLine:
    """Tests for flag parsing."""

    def test_flags_override_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("POLLEN_WALL_ADDRESS", "/ip4/10.0.0.1/tcp/5001")
        args = parse_args(["--address", "/ip4/127.0.0.1/tcp/5005", "--home", str(tmp_path), "-a", "-c"])

        config = build_config(args)

        assert config.address == "/ip4/127.0.0.1/tcp/5005"
        assert config.home == Path(tmp_path)
        assert config.attach
        assert config.clean

    def test_no_flags(self, monkeypatch):
        monkeypatch.delenv("POLLEN_WALL_ATTACH", raising=False)
        config = build_config(parse_args([]))

        assert not config.attach
        assert not config.clean


class TestAttachController:
    """Tests for the single attach slot."""

    def test_disabled_never_blocks(self):
        attach = AttachController(enabled=False)

        assert not attach.try_attach("J1")
        assert not attach.blocks("J2")

    def test_first_pollen_is_attached(self):
        attach = AttachController(enabled=True)

        assert attach.try_attach("J1")
        assert not attach.try_attach("J2")
        assert attach.blocks("J2")
        assert not attach.blocks("J1")

    def test_release_only_by_holder(self):
        attach = AttachController(enabled=True)
        attach.try_attach("J1")

        attach.release("J2")
        assert attach.attached == "J1"

        attach.release("J1")
        assert attach.attached is None
        assert attach.try_attach("J2")
