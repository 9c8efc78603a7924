"""
Chat Logging Utilities

Shared logging helpers with feature control. Feature flags come from the
``logging.modules.<name>.enable_features`` section of the configuration and
are installed by the application entry point.
"""

from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger(__name__)

_module_features: dict[str, dict[str, bool]] = {}


def set_module_features(module: str, features: dict[str, bool]) -> None:
    """Install the feature flags of one logging module (replaces previous flags)."""
    _module_features[module] = dict(features)


def clear_module_features() -> None:
    _module_features.clear()


def should_log_feature(module: str, feature: str) -> bool:
    """Check if a specific logging feature should be enabled."""
    return _module_features.get(module, {}).get(feature, False)


def _truncate(text: str, length: int) -> str:
    if len(text) > length:
        return text[:length] + "..."
    return text


def log_llm_reply(
    content: str | None,
    tool_names: list[str],
    model: str,
    context: str,
    chat_conf: dict[str, Any],
) -> None:
    """
    LLM reply logging with feature control and configuration-based truncation.

    Args:
        content: Text the model produced in this step
        tool_names: Names of the tools the model requested
        model: Model identifier
        context: Descriptive context for the log entry
        chat_conf: Chat service configuration containing logging settings
    """
    if not should_log_feature("chat", "llm_replies"):
        return

    truncate_length = chat_conf.get("logging", {}).get("llm_reply", 500)

    log_parts = [f"LLM Reply ({context}):"]
    if content:
        log_parts.append(f"Content: {_truncate(content, truncate_length)}")

    if tool_names:
        log_parts.append(f"Tool calls: {len(tool_names)}")
        for i, name in enumerate(tool_names):
            log_parts.append(f"  [{i}] {name}")

    log_parts.append(f"Model: {model}")
    logger.info(" | ".join(log_parts))


def log_tool_execution_start(tool_name: str, call_index: int = 0, total_calls: int = 1) -> None:
    if not should_log_feature("chat", "tool_execution"):
        return
    if total_calls > 1:
        logger.info(
            "→ Tools[%s]: executing tool call %d/%d",
            tool_name,
            call_index + 1,
            total_calls,
        )
    else:
        logger.info("→ Tools[%s]: executing tool", tool_name)


def log_tool_execution_success(tool_name: str, content_length: int) -> None:
    if should_log_feature("chat", "tool_execution"):
        logger.info("← Tools[%s]: success, content length: %d", tool_name, content_length)


def log_tool_execution_error(tool_name: str, error_msg: str) -> None:
    """Tool failures are always logged, regardless of feature flags."""
    logger.error("← Tools[%s]: failed with error: %s", tool_name, error_msg)


def log_tool_args_error(tool_name: str, error: Exception) -> None:
    logger.error("Malformed JSON arguments for %s: %s", tool_name, error)


def log_tool_approval_requested(tool_name: str, approval_id: str) -> None:
    logger.info("⏸️  Tools[%s]: awaiting human approval (%s)", tool_name, approval_id)


def log_tool_arguments(
    tool_name: str, arguments: dict[str, Any], context: str, truncate_length: int = 500
) -> None:
    """
    Log tool arguments before execution.

    Args:
        tool_name: Name of the tool being called
        arguments: Arguments dictionary being sent to the tool
        context: Descriptive context for the log entry
        truncate_length: Maximum length for argument logging
    """
    if not should_log_feature("tools", "tool_arguments"):
        logger.debug(f"Tool arguments logging disabled for {tool_name}")
        return

    logger.info(f"→ Tools[{tool_name}]: arguments ({context}): {_truncate(str(arguments), truncate_length)}")


def log_tool_results(tool_name: str, results: Any, context: str, truncate_length: int = 200) -> None:
    if not should_log_feature("tools", "tool_results"):
        return

    logger.info(f"← Tools[{tool_name}]: results ({context}): {_truncate(str(results), truncate_length)}")
