#!/usr/bin/env python3
"""
Tests for the YAML-driven logging setup and feature-controlled log helpers.
"""

import logging

import pytest

from src.chat.logging_utils import (
    clear_module_features,
    log_llm_reply,
    log_tool_execution_error,
    log_tool_results,
    set_module_features,
    should_log_feature,
)
from src.main import _configure_advanced_logging, _on_logging_config_change

LOGGER_NAMES = ["", "src.chat", "src.tools", "src.clients"]


@pytest.fixture(autouse=True)
def restore_logging():
    levels = {name: logging.getLogger(name).level for name in LOGGER_NAMES}
    yield
    for name, level in levels.items():
        logging.getLogger(name).setLevel(level)
    clear_module_features()


def test_module_levels_and_features_are_applied():
    _configure_advanced_logging(
        {
            "level": "WARNING",
            "modules": {
                "chat": {"level": "DEBUG", "enable_features": {"llm_replies": True}},
                "tools": {"level": "ERROR", "enable_features": {"tool_results": False}},
                "connection_pool": {"enable_features": {"http_requests": True}},
            },
        }
    )

    assert logging.getLogger().level == logging.WARNING
    assert logging.getLogger("src.chat").level == logging.DEBUG
    assert logging.getLogger("src.tools").level == logging.ERROR
    # No explicit level: the module default applies
    assert logging.getLogger("src.clients").level == logging.INFO

    assert should_log_feature("chat", "llm_replies")
    assert not should_log_feature("chat", "tool_execution")
    assert not should_log_feature("tools", "tool_results")
    assert should_log_feature("connection_pool", "http_requests")


def test_unknown_feature_defaults_to_off():
    assert not should_log_feature("chat", "llm_replies")
    assert not should_log_feature("nonexistent", "anything")


def test_live_reconfiguration():
    _on_logging_config_change({"logging": {"level": "ERROR", "modules": {"chat": {"enable_features": {"tool_execution": True}}}}})

    assert logging.getLogger().level == logging.ERROR
    assert should_log_feature("chat", "tool_execution")


def test_llm_reply_logging_respects_feature_flag(caplog):
    caplog.set_level(logging.INFO, logger="src.chat.logging_utils")
    chat_conf = {"logging": {"llm_reply": 5}}

    log_llm_reply("Hello there, new developer", ["readFile"], "gpt-4o", "step 1", chat_conf)
    assert "LLM Reply" not in caplog.text

    set_module_features("chat", {"llm_replies": True})
    log_llm_reply("Hello there, new developer", ["readFile"], "gpt-4o", "step 1", chat_conf)

    assert "LLM Reply (step 1)" in caplog.text
    assert "Content: Hello..." in caplog.text
    assert "[0] readFile" in caplog.text
    assert "Model: gpt-4o" in caplog.text


def test_tool_results_are_truncated(caplog):
    caplog.set_level(logging.INFO, logger="src.chat.logging_utils")
    set_module_features("tools", {"tool_results": True})

    log_tool_results("readFile", "x" * 50, "result", truncate_length=10)

    assert "← Tools[readFile]: results (result): xxxxxxxxxx..." in caplog.text


def test_tool_failures_are_always_logged(caplog):
    caplog.set_level(logging.INFO, logger="src.chat.logging_utils")

    log_tool_execution_error("pageHumanOnCall", "pager offline")

    assert "← Tools[pageHumanOnCall]: failed with error: pager offline" in caplog.text
