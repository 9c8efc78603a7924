"""Shared test fixtures: a scripted completion client and an isolated configuration."""

from collections.abc import AsyncGenerator, Sequence
from typing import Any

import pytest
import yaml

from src.chat.errors import ProviderError
from src.config import Configuration


def text_step(*deltas: str) -> list[dict[str, Any]]:
    """Chunks of a model step that only streams text."""
    chunks: list[dict[str, Any]] = [{"choices": [{"delta": {"content": d}}]} for d in deltas]
    chunks.append({"choices": [{"delta": {}, "finish_reason": "stop"}]})
    return chunks


def tool_step(*calls: tuple[str, str], text: str | None = None) -> list[dict[str, Any]]:
    """
    Chunks of a model step requesting ``calls`` ((name, raw JSON arguments) pairs).

    Arguments are split across two deltas the way providers stream them; call
    ids are left for the streaming handler to generate.
    """
    chunks: list[dict[str, Any]] = []
    if text:
        chunks.append({"choices": [{"delta": {"content": text}}]})
    for index, (name, arguments) in enumerate(calls):
        half = len(arguments) // 2
        chunks.append(
            {
                "choices": [
                    {
                        "delta": {
                            "tool_calls": [
                                {"index": index, "type": "function", "function": {"name": name, "arguments": arguments[:half]}}
                            ]
                        }
                    }
                ]
            }
        )
        chunks.append({"choices": [{"delta": {"tool_calls": [{"index": index, "function": {"arguments": arguments[half:]}}]}}]})
    chunks.append({"choices": [{"delta": {}, "finish_reason": "tool_calls"}]})
    return chunks


class ScriptedModel:
    """
    Completion client replaying one scripted step per call.

    Once the script runs out, ``repeat`` (if given) is replayed forever.
    A step given as an exception instance is raised instead of streamed.
    """

    def __init__(self, *steps: list[dict[str, Any]] | Exception, repeat: list[dict[str, Any]] | None = None):
        self.steps = list(steps)
        self.repeat = repeat
        self.calls: list[dict[str, Any]] = []

    async def stream_completion(
        self,
        provider: str,
        model_id: str,
        messages: Sequence[Any],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncGenerator[dict[str, Any]]:
        self.calls.append({"provider": provider, "model_id": model_id, "messages": list(messages), "tools": tools})
        if self.steps:
            step = self.steps.pop(0)
        elif self.repeat is not None:
            step = self.repeat
        else:
            raise ProviderError(provider, "Script exhausted")

        if isinstance(step, Exception):
            raise step
        for chunk in step:
            yield chunk


def write_runtime_config(path, overrides: dict[str, Any]) -> str:
    path.write_text(yaml.safe_dump(overrides))
    return str(path)


@pytest.fixture
def configuration(tmp_path, monkeypatch) -> Configuration:
    """Default configuration isolated from any local runtime override, with provider keys set."""
    config = Configuration(runtime_config_path=str(tmp_path / "runtime_config.yaml"))
    monkeypatch.setenv("OPENAI_API_KEY", "test-openai-key")
    monkeypatch.setenv("GOOGLE_GENERATIVE_AI_API_KEY", "test-google-key")
    return config
