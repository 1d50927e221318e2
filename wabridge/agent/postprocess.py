"""Response post-processing: media tag extraction and chunking."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

MAX_CHUNK_CHARS = 4000
IMAGE_EXTENSIONS = frozenset({".png", ".jpg", ".jpeg", ".webp"})

# [IMAGE: /path/to/file.png] or [FILE: /path/to/file.png]
MEDIA_TAG_RE = re.compile(r"\[(IMAGE|FILE):\s*([^\]]+)\]", re.IGNORECASE)
_EXTRA_NEWLINES_RE = re.compile(r"\n{3,}")


@dataclass(frozen=True)
class MediaReference:
    """A validated local image referenced from engine output."""

    path: str
    extension: str

    @property
    def filename(self) -> str:
        return Path(self.path).name


@dataclass
class ProcessedResponse:
    text: str
    chunks: list[str] = field(default_factory=list)
    media: list[MediaReference] = field(default_factory=list)


def extract_media(text: str) -> tuple[str, list[MediaReference]]:
    """
    Remove media tags from text and collect the ones pointing at real images.

    Every tag is removed; only tags whose file has a supported image
    extension and exists are returned, in order of appearance.
    """
    media: list[MediaReference] = []
    for match in MEDIA_TAG_RE.finditer(text):
        raw_path = match.group(2).strip()
        ext = Path(raw_path).suffix.lower()
        if ext not in IMAGE_EXTENSIONS:
            logger.warning(f"Unsupported media type in tag, skipping: {raw_path}")
            continue
        path = Path(raw_path).expanduser()
        if not path.exists():
            logger.warning(f"Image file not found: {raw_path}")
            continue
        media.append(MediaReference(path=str(path), extension=ext))

    clean = MEDIA_TAG_RE.sub("", text)
    clean = _EXTRA_NEWLINES_RE.sub("\n\n", clean)
    return clean.strip(), media


def split_message(text: str, max_chars: int = MAX_CHUNK_CHARS) -> list[str]:
    """Split text into ordered chunks of at most max_chars; joining them restores text."""
    if not text:
        return []
    if max_chars <= 0:
        raise ValueError("max_chars must be positive")
    return [text[i:i + max_chars] for i in range(0, len(text), max_chars)]


def process_response(text: str, max_chars: int = MAX_CHUNK_CHARS) -> ProcessedResponse:
    clean, media = extract_media(text or "")
    return ProcessedResponse(text=clean, chunks=split_message(clean, max_chars), media=media)


def read_image(path: str) -> bytes:
    return Path(path).read_bytes()
