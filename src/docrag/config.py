"""Runtime settings for the document pipeline."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path

LOGGER = logging.getLogger(__name__)

ENV_PREFIX = "DOCRAG_"

# (max total pages, pages per chunk); documents above the last bound use
# ``DEFAULT_PAGES_PER_CHUNK``.
DEFAULT_PAGE_STEPS: tuple[tuple[int, int], ...] = ((50, 15), (100, 20), (500, 25))
DEFAULT_PAGES_PER_CHUNK = 30


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_from_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        LOGGER.warning("Invalid integer for %s: %s; using default %s", name, value, default)
        return default


def _float_from_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        LOGGER.warning("Invalid float for %s: %s; using default %s", name, value, default)
        return default


def _str_from_env(name: str, default: str | None) -> str | None:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


@dataclass(slots=True)
class PipelineSettings:
    """Tunable constants for every pipeline phase.

    The consolidation numbers were picked empirically; they are kept as
    settings so they can be adjusted per deployment via ``DOCRAG_*``
    environment variables.
    """

    # chunking
    chars_per_page: int = 3500
    max_chunk_chars: int = 120_000
    overlap_ratio: float = 0.15
    page_steps: tuple[tuple[int, int], ...] = DEFAULT_PAGE_STEPS
    max_pages_per_chunk: int = DEFAULT_PAGES_PER_CHUNK

    # chunk analysis
    batch_size: int = 2
    max_attempts: int = 3
    initial_backoff_seconds: float = 2.0
    inter_batch_delay_seconds: float = 3.0

    # section synthesis / consolidation
    section_count: int = 3
    chars_per_token: int = 3
    consolidation_token_threshold: int = 8000
    max_consolidation_rounds: int = 5
    group_truncate_chars: int = 20_000
    forced_truncate_chars: int = 15_000

    # cache
    cache_ttl_seconds: float = 24 * 60 * 60
    cache_dir: Path = field(default_factory=lambda: Path(".docrag-cache"))

    # remote service
    remote_base_url: str | None = None
    remote_api_token: str | None = None
    request_timeout_seconds: float = 90.0
    detect_document_type: bool = False

    def pages_per_chunk(self, total_pages: int) -> int:
        for bound, pages in self.page_steps:
            if total_pages <= bound:
                return pages
        return self.max_pages_per_chunk

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        """Build settings from ``DOCRAG_*`` variables, keeping defaults for the rest."""

        defaults = cls()
        overrides: dict[str, object] = {}
        for item in fields(cls):
            if item.name == "page_steps":
                continue
            env_name = f"{ENV_PREFIX}{item.name.upper()}"
            current = getattr(defaults, item.name)
            if isinstance(current, bool):
                overrides[item.name] = _env_flag(env_name, current)
            elif isinstance(current, int):
                overrides[item.name] = _int_from_env(env_name, current)
            elif isinstance(current, float):
                overrides[item.name] = _float_from_env(env_name, current)
            elif isinstance(current, Path):
                raw = _str_from_env(env_name, None)
                overrides[item.name] = Path(raw) if raw else current
            else:
                overrides[item.name] = _str_from_env(env_name, current)
        return cls(**overrides)


__all__ = ["PipelineSettings"]
