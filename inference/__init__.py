"""Inference backends that turn a planning prompt into a plan document."""

from .base import LLMBackend
from .litellm import LiteLLMLLM
from .mock_router import MockRouterLLM

__all__ = ["LLMBackend", "LiteLLMLLM", "MockRouterLLM"]
