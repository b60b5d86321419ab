"""Keyword classification for free-text telemetry (keystrokes, SMS).

The engine is pure: it never touches the store, so it can be tested and
reused without any I/O. Devices may upload text either as plain "legacy"
strings or as base64-encoded gzip streams; compressed input is inflated
before scanning, and a failed inflate falls back to scanning the raw text.
"""
from __future__ import annotations

import base64
import binascii
import gzip
import logging
import re
import zlib
from dataclasses import dataclass
from enum import Enum
from typing import Literal

from kinwatch.core.config import Settings


logger = logging.getLogger(__name__)

_BASE64_PATTERN = re.compile(r"^[A-Za-z0-9+/=]+$")
_GZIP_MAGIC = "\x1f\x8b"
# Stored in place of text that arrived compressed so vault rows never duplicate blobs.
COMPRESSED_PLACEHOLDER = "[COMPRESSED_SAVED]"
COMPRESSED_PREVIEW = "[COMPRESSED]"


class Category(str, Enum):
    FINANCIAL = "financial"
    CREDENTIAL = "credential"
    DANGER = "danger"
    NONE = "none"


@dataclass(frozen=True)
class KeywordSets:
    financial: tuple[str, ...]
    credential: tuple[str, ...]
    danger: tuple[str, ...]

    @classmethod
    def from_settings(cls, settings: Settings) -> "KeywordSets":
        return cls(
            financial=tuple(k.lower() for k in settings.keywords_financial),
            credential=tuple(k.lower() for k in settings.keywords_credential),
            danger=tuple(k.lower() for k in settings.keywords_danger),
        )


# Built from field defaults, not the environment, so the pure API stays deterministic.
DEFAULT_KEYWORDS = KeywordSets(
    financial=tuple(Settings.model_fields["keywords_financial"].default),
    credential=tuple(Settings.model_fields["keywords_credential"].default),
    danger=tuple(Settings.model_fields["keywords_danger"].default),
)


@dataclass(frozen=True)
class DataFormat:
    is_compressed: bool
    format: Literal["compressed", "legacy"]


@dataclass(frozen=True)
class Verdict:
    category: Category
    # Lowercased text the keywords were matched against (inflated when compressed).
    scanned_text: str
    compressed: bool
    matched_keyword: str | None = None

    @property
    def stored_text(self) -> str:
        return COMPRESSED_PLACEHOLDER if self.compressed else self.scanned_text

    def preview(self, length: int) -> str:
        return COMPRESSED_PREVIEW if self.compressed else self.scanned_text[:length]


def detect_data_format(data: str | None) -> DataFormat:
    # Base64-shaped input with a length divisible by 4, or a raw gzip signature, counts as compressed.
    if not data:
        return DataFormat(is_compressed=False, format="legacy")
    is_base64 = bool(_BASE64_PATTERN.match(data)) and len(data) % 4 == 0
    return DataFormat(
        is_compressed=is_base64 or _GZIP_MAGIC in data,
        format="compressed" if is_base64 else "legacy",
    )


def decompress_text(data: str) -> str | None:
    """Inflate a base64 gzip payload (or a raw gzip string); None when it is not one."""
    try:
        if _GZIP_MAGIC in data and not _BASE64_PATTERN.match(data):
            raw = data.encode("latin-1")
        else:
            raw = base64.b64decode(data, validate=True)
        return gzip.decompress(raw).decode("utf-8")
    except (binascii.Error, ValueError, OSError, EOFError, zlib.error, UnicodeError) as exc:
        logger.debug("decompress_failed error=%s", exc.__class__.__name__)
        return None


def match_category(text: str, keywords: KeywordSets = DEFAULT_KEYWORDS) -> tuple[Category, str | None]:
    # Fixed precedence: financial, then credential, then danger; the first hit wins.
    for category, words in (
        (Category.FINANCIAL, keywords.financial),
        (Category.CREDENTIAL, keywords.credential),
        (Category.DANGER, keywords.danger),
    ):
        for word in words:
            if word in text:
                return category, word
    return Category.NONE, None


def classify(text: str | None, keywords: KeywordSets = DEFAULT_KEYWORDS) -> Verdict:
    if not text:
        return Verdict(category=Category.NONE, scanned_text="", compressed=False)
    data_format = detect_data_format(text)
    scanned = text
    if data_format.is_compressed:
        inflated = decompress_text(text)
        if inflated is not None:
            scanned = inflated
    scanned = scanned.lower()
    category, matched = match_category(scanned, keywords)
    return Verdict(
        category=category,
        scanned_text=scanned,
        compressed=data_format.is_compressed,
        matched_keyword=matched,
    )
