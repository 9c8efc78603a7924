"""
Static model catalog.

The models offered for selection, grouped by provider. Model ids are passed
through to the provider untouched; the catalog is only used for listing and for
the closed set of supported providers.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

Provider = Literal["openai", "google"]

SUPPORTED_PROVIDERS: tuple[str, ...] = ("openai", "google")


class ModelConfig(BaseModel):
    id: str
    name: str
    provider: Provider
    description: str | None = None


AVAILABLE_MODELS: list[ModelConfig] = [
    # OpenAI models
    ModelConfig(id="gpt-4o", name="GPT-4o", provider="openai", description="Most capable OpenAI model"),
    ModelConfig(id="gpt-4o-mini", name="GPT-4o Mini", provider="openai", description="Fast and efficient"),
    # Google models
    ModelConfig(
        id="gemini-3-flash-preview",
        name="Gemini 3 Flash",
        provider="google",
        description="Fast multimodal model",
    ),
    ModelConfig(
        id="gemini-2.5-flash",
        name="Gemini 2.5 Flash",
        provider="google",
        description="Fast multimodal model",
    ),
]

DEFAULT_MODEL: ModelConfig = AVAILABLE_MODELS[0]


def get_model_by_id(model_id: str) -> ModelConfig | None:
    for model in AVAILABLE_MODELS:
        if model.id == model_id:
            return model
    return None


def get_models_by_provider(provider: str) -> list[ModelConfig]:
    return [m for m in AVAILABLE_MODELS if m.provider == provider]


def is_supported_provider(provider: str) -> bool:
    return provider in SUPPORTED_PROVIDERS
