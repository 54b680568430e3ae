from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol


@dataclass(frozen=True)
class AIAnalysis:
    summary: str | None = None
    tags: list[str] = field(default_factory=list)
    key_points: list[str] = field(default_factory=list)
    action_items: list[str] = field(default_factory=list)


class ContentAnalyzer(Protocol):
    def analyze(self, content: str) -> AIAnalysis: ...


class NullAnalyzer:
    """No analysis; captures are stored exactly as given."""

    def analyze(self, content: str) -> AIAnalysis:
        return AIAnalysis()
