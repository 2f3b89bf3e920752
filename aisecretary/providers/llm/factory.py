from __future__ import annotations

from aisecretary.core.config import get_settings
from aisecretary.core.errors import ProviderConfigError
from aisecretary.providers.llm.base import Classifier
from aisecretary.providers.llm.fake import FakeClassifier
from aisecretary.providers.llm.openai_chat import OpenAIClassifier


def get_classifier() -> Classifier:
    settings = get_settings()
    provider = (settings.llm_provider or "openai").lower()

    if provider == "fake":
        return FakeClassifier()
    if provider == "openai":
        return OpenAIClassifier()

    raise ProviderConfigError(f"Unsupported LLM provider: {provider}")
