"""Clients package containing the LLM client and the model catalog."""

from __future__ import annotations

from .llm_client import CompletionClient, LLMClient
from .model_catalog import AVAILABLE_MODELS, DEFAULT_MODEL, SUPPORTED_PROVIDERS

__all__ = ["AVAILABLE_MODELS", "DEFAULT_MODEL", "SUPPORTED_PROVIDERS", "CompletionClient", "LLMClient"]
