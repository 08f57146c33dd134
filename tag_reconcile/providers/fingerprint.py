from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

import acoustid

from ..config import ProviderSettings
from ..models import (
    CandidateRelease,
    FingerprintParseError,
    SourceType,
    SourceUnavailable,
    ToolExecutionFailed,
    ToolNotFound,
    parse_int,
)

logger = logging.getLogger(__name__)

FPCALC_NAME = "fpcalc"
MAX_RESULTS = 5
MAX_RECORDINGS_PER_RESULT = 3
LOOKUP_META = "recordings releases"


class AcoustIdIdentifier:
    """Chromaprint fingerprinting plus AcoustID recording lookup."""

    source = SourceType.FINGERPRINT

    def __init__(
        self,
        settings: ProviderSettings,
        *,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
        which: Callable[[str], Optional[str]] = shutil.which,
    ) -> None:
        self.settings = settings
        self._runner = runner
        self._which = which

    def locate_tool(self) -> Path:
        configured = self.settings.fpcalc_path
        if configured is not None:
            if configured.exists():
                return configured
            raise ToolNotFound(f"fpcalc not found at {configured}")
        found = self._which(FPCALC_NAME)
        if not found:
            raise ToolNotFound("fpcalc is not installed or not on PATH")
        return Path(found)

    def extract_fingerprint(self, path: Path) -> tuple[int, str]:
        tool = self.locate_tool()
        try:
            proc = self._runner(
                [str(tool), str(path)],
                capture_output=True,
                text=True,
                timeout=self.settings.fpcalc_timeout_seconds,
            )
        except FileNotFoundError as exc:
            raise ToolNotFound(f"Unable to start {tool}: {exc}") from exc
        except subprocess.TimeoutExpired as exc:
            raise ToolExecutionFailed(f"fpcalc timed out on {path}") from exc
        except OSError as exc:
            raise ToolExecutionFailed(f"Unable to run fpcalc on {path}: {exc}") from exc
        if proc.returncode != 0:
            detail = (proc.stderr or "").strip() or "no output"
            raise ToolExecutionFailed(
                f"fpcalc exited with {proc.returncode} for {path}: {detail}",
                returncode=proc.returncode,
            )
        return parse_fpcalc_output(proc.stdout or "")

    def lookup(self, fingerprint: str, duration_seconds: int) -> list[CandidateRelease]:
        if not self.settings.acoustid_api_key:
            raise SourceUnavailable("AcoustID API key is not configured")
        try:
            response = acoustid.lookup(
                self.settings.acoustid_api_key,
                fingerprint,
                duration_seconds,
                meta=LOOKUP_META,
                timeout=self.settings.request_timeout_seconds,
            )
        except acoustid.AcoustidError as exc:
            raise SourceUnavailable(f"AcoustID lookup failed: {exc}") from exc
        try:
            return list(self._iter_candidates(response))
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Malformed AcoustID response: %s", exc)
            return []

    def _iter_candidates(self, response: dict[str, Any]) -> Iterable[CandidateRelease]:
        for match in (response.get("results") or [])[:MAX_RESULTS]:
            confidence = float(match.get("score", 0) or 0)
            for recording in (match.get("recordings") or [])[:MAX_RECORDINGS_PER_RESULT]:
                recording_id = recording.get("id")
                if not recording_id:
                    continue
                release = self._first_release(recording)
                yield CandidateRelease(
                    source=SourceType.FINGERPRINT,
                    external_id=recording_id,
                    artist=self._artist_names(recording.get("artists")),
                    title=release.get("title") or None,
                    date=self._release_date(release),
                    track_count=parse_int(release.get("track_count")) or 0,
                    recording_title=recording.get("title") or None,
                    confidence=confidence,
                )

    @staticmethod
    def _first_release(recording: dict[str, Any]) -> dict[str, Any]:
        for key in ("releases", "releasegroups"):
            entries = recording.get(key) or []
            if entries and isinstance(entries[0], dict):
                return entries[0]
        return {}

    @staticmethod
    def _artist_names(artists: Optional[list]) -> Optional[str]:
        names = [artist.get("name") for artist in artists or [] if isinstance(artist, dict) and artist.get("name")]
        return ", ".join(names) if names else None

    @staticmethod
    def _release_date(release: dict[str, Any]) -> Optional[str]:
        date = release.get("date")
        if isinstance(date, dict):
            year = parse_int(date.get("year"))
            return str(year) if year else None
        if isinstance(date, str) and date:
            return date
        return None


def parse_fpcalc_output(output: str) -> tuple[int, str]:
    """Parse ``FINGERPRINT=`` and ``DURATION=`` lines from fpcalc's plain output."""
    duration: Optional[int] = None
    fingerprint: Optional[str] = None
    for line in output.splitlines():
        key, sep, value = line.strip().partition("=")
        if not sep:
            continue
        if key == "FINGERPRINT":
            fingerprint = value.strip() or None
        elif key == "DURATION":
            try:
                duration = int(float(value.strip()))
            except ValueError as exc:
                raise FingerprintParseError(f"Invalid fpcalc duration: {value!r}") from exc
    if fingerprint is None or duration is None:
        raise FingerprintParseError("fpcalc output is missing FINGERPRINT or DURATION")
    return duration, fingerprint
