"""Merge section syntheses until they fit one final completion request."""
from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence

from docrag.analyzer import ProgressCallback
from docrag.cancellation import CancellationToken
from docrag.client import CompletionService
from docrag.config import PipelineSettings
from docrag.errors import ConfigurationError, PipelineStageError
from docrag.models import ConsolidationResult, ProgressEvent
from docrag.telemetry import emit_phase_event

LOGGER = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n\n[...truncated...]"


def estimate_tokens(texts: Iterable[str], chars_per_token: int = 3) -> int:
    """Rough token estimate used for the consolidation budget."""

    return sum(len(text) for text in texts) // max(chars_per_token, 1)


def truncate_text(text: str, max_chars: int, marker: str = TRUNCATION_MARKER) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + marker


class HierarchicalConsolidator:
    """Reduce the working section list round by round.

    Each round merges groups of two (three when more than six sections
    remain) through ``synthesize_section``. The loop stops once at most two
    sections remain within the token threshold. Hitting the round ceiling, or
    being left with one oversized section, triggers a forced truncation
    instead of another round.
    """

    def __init__(self, client: CompletionService, settings: Optional[PipelineSettings] = None) -> None:
        self._client = client
        self._settings = settings or PipelineSettings()

    def estimate(self, sections: Sequence[str]) -> int:
        return estimate_tokens(sections, self._settings.chars_per_token)

    def fits_budget(self, sections: Sequence[str]) -> bool:
        return len(sections) <= 2 and self.estimate(sections) <= self._settings.consolidation_token_threshold

    async def pre_consolidate(self, sections: Sequence[str]) -> List[str]:
        """Run one consolidation round and return the shorter section list."""

        group_size = 3 if len(sections) > 6 else 2
        groups = [list(sections[start : start + group_size]) for start in range(0, len(sections), group_size)]
        merged: List[str] = []

        for index, group in enumerate(groups):
            if len(group) == 1:
                merged.append(group[0])
                continue
            texts = [truncate_text(text, self._settings.group_truncate_chars) for text in group]
            try:
                merged.append(await self._client.synthesize_section(texts, index, len(groups)))
            except ConfigurationError:
                raise
            except Exception as error:
                LOGGER.error("Consolidation of group %s/%s failed: %s", index + 1, len(groups), error)
                raise PipelineStageError(
                    "consolidation",
                    f"group {index + 1} of {len(groups)}: {error}",
                    cause=error,
                ) from error

        LOGGER.info("Pre-consolidated %s sections into %s", len(sections), len(merged))
        return merged

    async def consolidate(
        self,
        sections: Sequence[str],
        on_progress: Optional[ProgressCallback] = None,
        *,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ConsolidationResult:
        working = list(sections)
        rounds = 0
        max_rounds = self._settings.max_consolidation_rounds

        while not self.fits_budget(working):
            if rounds >= max_rounds or len(working) <= 1:
                return self._force_truncate(working, rounds)
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            if on_progress is not None:
                on_progress(
                    ProgressEvent(
                        current=rounds,
                        total=max_rounds,
                        status=f"Consolidating {len(working)} sections (round {rounds + 1} of at most {max_rounds})",
                        phase="consolidation",
                    )
                )
            working = await self.pre_consolidate(working)
            rounds += 1
            emit_phase_event(
                "consolidation.round",
                round=rounds,
                sections=len(working),
                estimated_tokens=self.estimate(working),
            )

        return ConsolidationResult(sections=working, rounds=rounds)

    def _force_truncate(self, working: List[str], rounds: int) -> ConsolidationResult:
        limit = self._settings.forced_truncate_chars
        LOGGER.warning(
            "Consolidation stopped after %s rounds with %s sections (~%s tokens); truncating each to %s chars",
            rounds,
            len(working),
            self.estimate(working),
            limit,
        )
        truncated = [truncate_text(text, limit) for text in working]
        return ConsolidationResult(sections=truncated, rounds=rounds, forced_truncation=True)


__all__ = [
    "HierarchicalConsolidator",
    "TRUNCATION_MARKER",
    "estimate_tokens",
    "truncate_text",
]
