#!/usr/bin/env python3
"""
Tests for configuration loading and logging feature control.
"""

from __future__ import annotations

import logging
import os

import pytest

from playground.chat.logging_utils import log_llm_reply, set_module_features, should_log_feature
from playground.config import Configuration
from playground.main import _configure_advanced_logging


def _write_override(tmp_path, text: str) -> str:
    path = tmp_path / "override.yaml"
    path.write_text(text)
    return str(path)


def test_packaged_defaults(proxy_env):
    config = Configuration()

    assert config.get_llm_config()["base_url"] == "http://localhost:8045"
    assert config.get_chat_defaults()["params"]["max_tokens"] == 16384
    assert config.get_image_retry_config() == {"max_attempts": 5, "delay_ms": 3000}
    assert config.get_image_config()["max_reference_images"] == 14
    assert config.get_history_config() == {"max_versions": 10}
    assert config.get_storage_config()["type"] == "sqlite"
    assert config.api_key == "test-key"


def test_override_file_is_deep_merged(proxy_env, tmp_path):
    path = _write_override(
        tmp_path,
        "llm:\n  base_url: https://proxy.example\nchat:\n  params:\n    temperature: 0.2\n",
    )

    config = Configuration(path)

    assert config.get_llm_config()["base_url"] == "https://proxy.example"
    assert config.get_llm_config()["chat_path"] == "/v1/chat/completions"
    params = config.get_chat_defaults()["params"]
    assert params["temperature"] == 0.2
    assert params["top_p"] == 1


def test_override_path_from_environment(proxy_env, tmp_path, monkeypatch):
    path = _write_override(tmp_path, "history:\n  max_versions: 6\n")
    monkeypatch.setenv("PLAYGROUND_CONFIG", path)

    assert Configuration().get_history_config()["max_versions"] == 6


def test_reload_notifies_subscribers(proxy_env, tmp_path):
    path = tmp_path / "override.yaml"
    path.write_text("storage:\n  type: memory\n")
    config = Configuration(str(path))
    changes: list[dict] = []
    config.subscribe_to_changes(changes.append)

    assert config.reload_config() is False

    path.write_text("storage:\n  type: sqlite\n")
    stat = path.stat()
    os.utime(path, (stat.st_atime, stat.st_mtime + 5))
    assert config.reload_config() is True
    assert changes[0]["storage"]["type"] == "sqlite"


def test_missing_api_key(monkeypatch):
    monkeypatch.delenv("PROXY_API_KEY", raising=False)
    monkeypatch.delenv("PLAYGROUND_CONFIG", raising=False)
    monkeypatch.setattr(Configuration, "load_env", staticmethod(lambda: None))

    with pytest.raises(ValueError, match="PROXY_API_KEY"):
        _ = Configuration().api_key


@pytest.mark.parametrize(
    ("override", "getter"),
    [
        ("history:\n  max_versions: 1\n", "get_history_config"),
        ("images:\n  retry:\n    max_attempts: 0\n", "get_image_retry_config"),
        ("llm:\n  connection_pool:\n    max_connections: 0\n", "get_connection_pool_config"),
        ("llm:\n  base_url: ''\n", "get_llm_config"),
    ],
)
def test_invalid_values_are_rejected(proxy_env, tmp_path, override, getter):
    config = Configuration(_write_override(tmp_path, override))

    with pytest.raises(ValueError):
        getattr(config, getter)()


def test_get_config_value_falls_back(proxy_env):
    config = Configuration()
    assert config.get_config_value(["llm", "improve_model"]) == "gemini-3-flash"
    assert config.get_config_value(["llm", "missing", "deeper"], "fallback") == "fallback"


def test_logging_config_sets_levels_and_features():
    _configure_advanced_logging(
        {
            "level": "WARNING",
            "modules": {
                "chat": {"level": "DEBUG", "enable_features": {"llm_replies": True}},
                "history": {"level": "ERROR"},
            },
        }
    )

    assert logging.getLogger("playground.chat").level == logging.DEBUG
    assert logging.getLogger("playground.history").level == logging.ERROR
    assert should_log_feature("chat", "llm_replies")
    assert not should_log_feature("chat", "stream_chunks")
    assert not should_log_feature("unknown", "llm_replies")

    set_module_features("chat", {})


def test_llm_reply_logging_is_feature_gated(caplog):
    caplog.set_level(logging.INFO, logger="playground.chat.logging_utils")

    set_module_features("chat", {"llm_replies": False})
    log_llm_reply({"content": "hidden", "model": "m"}, "Streaming response")
    assert "hidden" not in caplog.text

    set_module_features("chat", {"llm_replies": True})
    log_llm_reply(
        {"content": "x" * 600, "reasoning": "because", "model": "m", "chunks": 3, "finish_reason": "stop"},
        "Streaming response",
    )
    assert "Reasoning: because" in caplog.text
    assert "x" * 500 + "..." in caplog.text
    assert "Chunks: 3" in caplog.text
    assert "Finish: stop" in caplog.text

    set_module_features("chat", {})
