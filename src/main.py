"""
Main application entry point - HTTP/WebSocket interface with graceful shutdown handling.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys
from typing import Any

from src.chat import ChatOrchestrator
from src.chat.logging_utils import set_module_features
from src.clients import LLMClient
from src.config import Configuration
from src.http_server import run_http_server
from src.tools import build_default_registry

# Module-to-logger mapping for per-module levels
MODULE_LOGGER_MAP: dict[str, dict[str, Any]] = {
    "chat": {
        "loggers": ["src.chat"],
        "default_level": "INFO",
        "features": ["llm_replies", "tool_execution"],
    },
    "tools": {
        "loggers": ["src.tools"],
        "default_level": "INFO",
        "features": ["tool_arguments", "tool_results"],
    },
    "connection_pool": {
        "loggers": ["src.clients"],
        "default_level": "INFO",
        "features": ["http_requests"],
    },
}


def _configure_advanced_logging(logging_config: dict[str, Any]) -> None:
    """
    Logging configuration with hierarchical loggers and feature control.

    Levels are set on parent loggers so child modules inherit them; feature
    flags are handed to logging_utils for runtime checks.
    """
    level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }

    global_level = logging_config.get("level", "WARNING")
    logging.getLogger().setLevel(level_map.get(global_level, logging.WARNING))

    if "format" in logging_config:
        for handler in logging.getLogger().handlers:
            if isinstance(handler, logging.StreamHandler):
                handler.setFormatter(logging.Formatter(logging_config["format"]))

    modules_config = logging_config.get("modules", {})

    for module_name, module_config in modules_config.items():
        if not isinstance(module_config, dict):
            continue

        known = MODULE_LOGGER_MAP.get(module_name, {})
        module_level = module_config.get("level", known.get("default_level", global_level))
        level_value = level_map.get(module_level, logging.WARNING)

        for logger_name in known.get("loggers", []):
            logging.getLogger(logger_name).setLevel(level_value)

        set_module_features(module_name, module_config.get("enable_features", {}))


def _on_logging_config_change(new_config: dict[str, Any]) -> None:
    """
    Handle real-time logging configuration changes.

    Called whenever the runtime configuration file is modified, allowing
    logging to be reconfigured without a restart.
    """
    try:
        logging_config = new_config.get("logging", {})
        if logging_config:
            _configure_advanced_logging(logging_config)
            logging.info("🔄 Logging configuration updated in real-time")
    except Exception as e:
        # A bad runtime override must not take the server down
        logging.error(f"❌ Failed to update logging configuration: {e}")


# Configure logging for the application
logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")


async def main() -> None:
    """Main entry point - HTTP/WebSocket interface with graceful shutdown handling."""
    config = Configuration()

    _configure_advanced_logging(config.get_logging_config())
    config.subscribe_to_changes(_on_logging_config_change)

    tools = build_default_registry()
    logging.info(f"Registered {len(tools)} tools: {', '.join(tools.names)}")

    shutdown_event = asyncio.Event()

    def signal_handler() -> None:
        """Handle shutdown signals gracefully."""
        logging.info("Received shutdown signal, initiating graceful shutdown...")
        shutdown_event.set()

    if sys.platform != "win32":
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, signal_handler)

    async with LLMClient(config) as llm_client:
        orchestrator = ChatOrchestrator(llm_client, tools, config)
        try:
            await config.start_watching()

            server_task = asyncio.create_task(run_http_server(orchestrator, config))

            # Wait for either server completion or shutdown signal
            done, pending = await asyncio.wait(
                [server_task, asyncio.create_task(shutdown_event.wait())],
                return_when=asyncio.FIRST_COMPLETED,
            )

            for task in pending:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

            for task in done:
                if task == server_task:
                    exception = task.exception()
                    if exception is not None:
                        raise exception

        except KeyboardInterrupt:
            logging.info("Keyboard interrupt received, shutting down...")
        except Exception as e:
            logging.error(f"Application error: {e}")
            raise
        finally:
            await config.stop_watching()
            logging.info("Application shutdown complete")


def cli_main() -> None:
    """Synchronous CLI entrypoint that runs the async main."""
    asyncio.run(main())


if __name__ == "__main__":
    cli_main()
