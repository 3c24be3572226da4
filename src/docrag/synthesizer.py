"""Group chunk analyses into sections and synthesise each one remotely."""
from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from docrag.analyzer import ProgressCallback
from docrag.cancellation import CancellationToken
from docrag.client import CompletionService
from docrag.config import PipelineSettings
from docrag.errors import ConfigurationError, PipelineStageError
from docrag.models import ProgressEvent

LOGGER = logging.getLogger(__name__)

SECTIONS_PHASE = "sections"


def group_into_sections(analyses: Sequence[str], section_count: int = 3) -> List[List[str]]:
    """Split *analyses* into ``section_count`` contiguous, near-equal groups.

    Group sizes differ by at most one; fewer analyses than sections yields one
    group per analysis.
    """

    if section_count <= 0:
        raise ValueError("section_count must be a positive integer")
    total = len(analyses)
    if total == 0:
        return []

    count = min(section_count, total)
    base, remainder = divmod(total, count)
    groups: List[List[str]] = []
    start = 0
    for group_index in range(count):
        size = base + (1 if group_index < remainder else 0)
        groups.append(list(analyses[start : start + size]))
        start += size
    return groups


class SectionSynthesizer:
    """Synthesise section groups one at a time.

    Any remote failure aborts the run: a section merges context that cannot
    be replaced by a placeholder.
    """

    def __init__(self, client: CompletionService, settings: Optional[PipelineSettings] = None) -> None:
        self._client = client
        self._settings = settings or PipelineSettings()

    async def synthesize_sections(
        self,
        analyses: Sequence[str],
        on_progress: Optional[ProgressCallback] = None,
        *,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[str]:
        groups = group_into_sections(analyses, self._settings.section_count)
        syntheses: List[str] = []

        for index, group in enumerate(groups):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            if on_progress is not None:
                on_progress(
                    ProgressEvent(
                        current=index,
                        total=len(groups),
                        status=f"Synthesizing section {index + 1} of {len(groups)}",
                        phase="synthesis",
                    )
                )
            try:
                synthesis = await self._client.synthesize_section(group, index, len(groups))
            except ConfigurationError:
                raise
            except Exception as error:
                LOGGER.error("Section %s/%s synthesis failed: %s", index + 1, len(groups), error)
                raise PipelineStageError(
                    "synthesis",
                    f"section {index + 1} of {len(groups)}: {error}",
                    cause=error,
                ) from error
            syntheses.append(synthesis)

        LOGGER.info("Synthesized %s analyses into %s sections", len(analyses), len(syntheses))
        return syntheses


__all__ = ["SECTIONS_PHASE", "SectionSynthesizer", "group_into_sections"]
