"""Inference backend interface used for plan acquisition."""

from __future__ import annotations

from abc import ABC, abstractmethod


class LLMBackend(ABC):
    """Turns a planning prompt into a plan document.

    Implementations are synchronous; the transport runs them off the event
    loop so a slow backend only delays the task it is planning.
    """

    @abstractmethod
    def generate(self, prompt: str, temperature: float = 0.0) -> str:
        """Return the raw plan text (JSON) for *prompt*."""
        ...
