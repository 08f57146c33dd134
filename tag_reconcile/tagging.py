from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from mutagen import File as MutagenFile
from mutagen import MutagenError
from mutagen.flac import FLAC
from mutagen.id3 import COMM, ID3, ID3NoHeaderError, TALB, TCON, TDRC, TIT2, TPE1, TPE2, TRCK
from mutagen.mp4 import MP4
from mutagen.oggvorbis import OggVorbis

from .models import LocalTrack, ProcessingError, parse_int

logger = logging.getLogger(__name__)

VORBIS_KEYS = {
    "title": "TITLE",
    "artist": "ARTIST",
    "album": "ALBUM",
    "album_artist": "ALBUMARTIST",
    "genre": "GENRE",
    "comment": "COMMENT",
    "year": "DATE",
    "track_number": "TRACKNUMBER",
}

ID3_FRAMES = {
    "title": TIT2,
    "artist": TPE1,
    "album": TALB,
    "album_artist": TPE2,
    "genre": TCON,
    "year": TDRC,
    "track_number": TRCK,
}

MP4_KEYS = {
    "title": "\xa9nam",
    "artist": "\xa9ART",
    "album": "\xa9alb",
    "album_artist": "aART",
    "genre": "\xa9gen",
    "comment": "\xa9cmt",
    "year": "\xa9day",
}


@dataclass(slots=True)
class SaveResult:
    success: bool
    cover_art_saved: bool = False


class TagIO:
    """Reads and writes the reconciled fields across the common tagging formats."""

    SUPPORTED_EXTS = {".mp3", ".flac", ".m4a", ".ogg"}

    def load_tags(self, path: Path) -> LocalTrack:
        path = Path(path)
        ext = path.suffix.lower()
        if ext not in self.SUPPORTED_EXTS:
            raise ProcessingError(f"Unsupported file type: {path}")
        try:
            values = self._read_tags(path, ext)
            duration = self._read_duration(path)
        except MutagenError as exc:
            raise ProcessingError(f"Failed to read tags for {path}: {exc}") from exc
        return LocalTrack(
            path=path,
            title=values.get("title"),
            artist=values.get("artist"),
            album=values.get("album"),
            album_artist=values.get("album_artist"),
            genre=values.get("genre"),
            comment=values.get("comment"),
            year=self._parse_year(values.get("year")),
            track_number=parse_int(values.get("track_number")),
            duration_seconds=duration,
        )

    def save_tags(self, track: LocalTrack, replace_cover_art: bool = False) -> SaveResult:
        handlers = {
            ".mp3": self._apply_mp3,
            ".flac": self._apply_vorbis,
            ".ogg": self._apply_vorbis,
            ".m4a": self._apply_mp4,
        }
        handler = handlers.get(track.path.suffix.lower())
        if not handler:
            logger.warning("Skipping unsupported extension %s", track.path)
            return SaveResult(success=False)
        if replace_cover_art:
            logger.debug("Cover art replacement is not supported; leaving artwork of %s untouched", track.path)
        try:
            handler(track)
        except (MutagenError, OSError) as exc:
            logger.warning("Failed to save tags for %s: %s", track.path, exc)
            return SaveResult(success=False)
        logger.info("Saved tags for %s", track.path)
        return SaveResult(success=True, cover_art_saved=False)

    def _read_tags(self, path: Path, ext: str) -> Dict[str, Optional[str]]:
        if ext == ".mp3":
            try:
                tags = ID3(path)
            except ID3NoHeaderError:
                return {}
            values = {name: self._id3_text(tags, frame.__name__) for name, frame in ID3_FRAMES.items()}
            values["year"] = values.get("year") or self._id3_text(tags, "TYER")
            comments = tags.getall("COMM")
            values["comment"] = comments[0].text[0] if comments and comments[0].text else None
            return values
        if ext in (".flac", ".ogg"):
            audio = FLAC(path) if ext == ".flac" else OggVorbis(path)
            values = {name: audio.get(key, [None])[0] for name, key in VORBIS_KEYS.items()}
            values["year"] = values.get("year") or audio.get("YEAR", [None])[0]
            return values
        audio = MP4(path)
        values = {name: self._mp4_text(audio, key) for name, key in MP4_KEYS.items()}
        track_info = audio.get("trkn")
        if track_info and isinstance(track_info, list):
            first = track_info[0]
            if isinstance(first, (tuple, list)) and first:
                values["track_number"] = str(first[0])
        return values

    def _read_duration(self, path: Path) -> Optional[int]:
        audio = MutagenFile(path)
        if not audio or not getattr(audio, "info", None):
            return None
        length = getattr(audio.info, "length", None)
        return int(length) if length else None

    @staticmethod
    def _parse_year(value: Optional[str]) -> Optional[int]:
        if not value:
            return None
        digits = str(value).strip()[:4]
        return int(digits) if digits.isdigit() and int(digits) > 0 else None

    def _id3_text(self, tags: ID3, frame_id: str) -> Optional[str]:
        frame = tags.getall(frame_id)
        if not frame:
            return None
        return str(frame[0].text[0]) if frame[0].text else None

    def _mp4_text(self, audio: MP4, key: str) -> Optional[str]:
        value = audio.get(key)
        if not value:
            return None
        first = value[0]
        if isinstance(first, bytes):
            return first.decode("utf-8", errors="replace")
        return str(first)

    @staticmethod
    def _text_values(track: LocalTrack) -> Dict[str, Optional[str]]:
        values: Dict[str, Optional[str]] = {}
        for name in VORBIS_KEYS:
            value = getattr(track, name)
            if isinstance(value, int):
                value = str(value) if value > 0 else None
            elif isinstance(value, str):
                value = value.strip() or None
            values[name] = value
        return values

    def _apply_mp3(self, track: LocalTrack) -> None:
        try:
            tags = ID3(track.path)
        except ID3NoHeaderError:
            tags = ID3()
        values = self._text_values(track)
        for name, frame_cls in ID3_FRAMES.items():
            self._set_frame(tags, frame_cls, values[name])
        tags.delall("COMM")
        if values["comment"]:
            tags.add(COMM(encoding=3, lang="eng", desc="", text=values["comment"]))
        tags.save(track.path)

    def _apply_vorbis(self, track: LocalTrack) -> None:
        audio = FLAC(track.path) if track.path.suffix.lower() == ".flac" else OggVorbis(track.path)
        values = self._text_values(track)
        for name, key in VORBIS_KEYS.items():
            value = values[name]
            if value:
                audio[key] = value
            elif key in audio:
                del audio[key]
        audio.save()

    def _apply_mp4(self, track: LocalTrack) -> None:
        audio = MP4(track.path)
        values = self._text_values(track)
        for name, key in MP4_KEYS.items():
            if values[name]:
                audio[key] = [values[name]]
            elif key in audio:
                del audio[key]
        if track.track_number and track.track_number > 0:
            audio["trkn"] = [(track.track_number, 0)]
        elif "trkn" in audio:
            del audio["trkn"]
        audio.save()

    def _set_frame(self, tags: ID3, frame_cls, value: Optional[str]) -> None:
        if value:
            tags.setall(frame_cls.__name__, [frame_cls(encoding=3, text=value)])
        else:
            tags.delall(frame_cls.__name__)
