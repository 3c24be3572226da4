"""Best-effort on-disk cache for intermediate pipeline results."""
from __future__ import annotations

import json
import logging
import re
import time
from pathlib import Path
from typing import Any, Callable, Final, Optional

from docrag.models import CacheEntry

LOGGER = logging.getLogger(__name__)

FINGERPRINT_SAMPLE_CHARS: Final[int] = 1000
DEFAULT_TTL_SECONDS: Final[float] = 24 * 60 * 60
_BASE36_DIGITS: Final[str] = "0123456789abcdefghijklmnopqrstuvwxyz"
_KEY_SAFE_CHARS_RE: Final[re.Pattern[str]] = re.compile(r"[^A-Za-z0-9_-]+")


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def fingerprint(content: str) -> str:
    """Return a cheap, deterministic identifier for *content*.

    The value combines the content length with a 32-bit rolling hash of the
    first 1000 characters. Collisions are possible and acceptable: the cache
    is an optimisation, never a source of truth.
    """

    rolling = 0
    for char in content[:FINGERPRINT_SAMPLE_CHARS]:
        rolling = (rolling * 31 + ord(char)) & 0xFFFFFFFF
    if rolling >= 0x80000000:
        rolling -= 0x100000000
    return f"{len(content)}-{_to_base36(abs(rolling))}"


class DocumentCache:
    """Store one phase snapshot per document fingerprint as a JSON file.

    Saving a new phase for a fingerprint overwrites the previous snapshot.
    Entries older than ``ttl_seconds`` are treated as missing.
    """

    def __init__(
        self,
        directory: Path | str,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.directory = Path(directory)
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def _path_for(self, fingerprint_value: str) -> Path:
        safe_key = _KEY_SAFE_CHARS_RE.sub("_", fingerprint_value) or "_"
        return self.directory / f"{safe_key}.json"

    def save(self, fingerprint_value: str, phase: str, data: Any) -> None:
        entry = CacheEntry(
            fingerprint=fingerprint_value,
            phase=phase,
            data=data,
            timestamp=self._clock(),
        )
        path = self._path_for(fingerprint_value)
        try:
            payload = json.dumps(
                {
                    "fingerprint": entry.fingerprint,
                    "phase": entry.phase,
                    "data": entry.data,
                    "timestamp": entry.timestamp,
                },
                ensure_ascii=False,
            )
            self.directory.mkdir(parents=True, exist_ok=True)
            path.write_text(payload, encoding="utf-8")
        except (OSError, TypeError, ValueError) as error:
            LOGGER.warning("Cache save failed for %s (%s): %s", fingerprint_value, phase, error)
            return
        LOGGER.debug("Cached phase %s for %s", phase, fingerprint_value)

    def load(self, fingerprint_value: str, phase: str) -> Optional[Any]:
        entry = self._read_entry(fingerprint_value)
        if entry is None or entry.phase != phase:
            return None
        age = self._clock() - entry.timestamp
        if age >= self.ttl_seconds:
            LOGGER.debug("Cache entry for %s expired %.0fs ago", fingerprint_value, age - self.ttl_seconds)
            return None
        return entry.data

    def clear(self, fingerprint_value: str) -> None:
        try:
            self._path_for(fingerprint_value).unlink(missing_ok=True)
        except OSError as error:
            LOGGER.warning("Cache clear failed for %s: %s", fingerprint_value, error)

    def _read_entry(self, fingerprint_value: str) -> Optional[CacheEntry]:
        path = self._path_for(fingerprint_value)
        if not path.exists():
            return None
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            entry = CacheEntry(
                fingerprint=str(raw["fingerprint"]),
                phase=str(raw["phase"]),
                data=raw["data"],
                timestamp=float(raw["timestamp"]),
            )
        except (OSError, ValueError, KeyError, TypeError) as error:
            LOGGER.warning("Cache load failed for %s: %s", fingerprint_value, error)
            return None
        if entry.fingerprint != fingerprint_value:
            return None
        return entry


__all__ = ["DEFAULT_TTL_SECONDS", "DocumentCache", "fingerprint"]
