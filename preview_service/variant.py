"""Variant normalisation.

Upstream payloads describe the same track with different key names
(``audioUrl`` vs ``audio_url`` vs ``sourceAudioUrl`` ...). Each semantic
field is resolved from a static, ordered list of alternate keys; the first
non-empty value wins.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

__all__ = [
    "Variant",
    "FIELD_ALIASES",
    "DEFAULT_TITLE",
    "lookup_field",
    "normalize_variants",
    "split_eligible",
]

RawVariant = Mapping[str, Any]

DEFAULT_TITLE = "Untitled"

FIELD_ALIASES: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("index", ("index", "idx", "variantIndex", "variant_index")),
    ("title", ("title", "name", "songTitle", "song_title")),
    ("direct_audio_url", ("audioUrl", "audio_url", "sourceAudioUrl", "source_audio_url", "mp3Url", "mp3_url")),
    ("stream_url", ("streamUrl", "stream_url", "streamAudioUrl", "stream_audio_url", "sourceStreamAudioUrl", "hlsUrl")),
    ("cover_image_url", ("imageUrl", "image_url", "coverUrl", "cover_url", "sourceImageUrl", "cover")),
)
_ALIASES = dict(FIELD_ALIASES)


@dataclass(frozen=True)
class Variant:
    """One normalised track variant of a batch."""

    index: int
    title: str
    direct_audio_url: Optional[str] = None
    stream_url: Optional[str] = None
    cover_image_url: Optional[str] = None

    @property
    def is_eligible(self) -> bool:
        return bool(self.direct_audio_url or self.stream_url)

    @property
    def source_kind(self) -> Optional[str]:
        """``"audio"`` or ``"stream"``; the direct file wins when both are set."""
        if self.direct_audio_url:
            return "audio"
        if self.stream_url:
            return "stream"
        return None


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def lookup_field(raw: RawVariant, field_name: str) -> Any:
    """Return the first non-empty value among the field's alternate keys."""
    for key in _ALIASES[field_name]:
        value = raw.get(key)
        if not _is_empty(value):
            return value.strip() if isinstance(value, str) else value
    return None


def _coerce_index(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        index = int(value)
    except (TypeError, ValueError):
        return None
    return index if index >= 0 else None


def _optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _assign_indices(supplied: List[Optional[int]]) -> List[int]:
    claimed = set()
    indices: List[Optional[int]] = []
    for index in supplied:
        if index is not None and index not in claimed:
            claimed.add(index)
            indices.append(index)
        else:
            indices.append(None)

    reassigned = [position for position, index in enumerate(indices) if index is None]
    if reassigned and claimed:
        logger.warning("Variant indices missing or duplicated at positions %s, assigning free indices", reassigned)

    next_free = 0
    for position in reassigned:
        while next_free in claimed:
            next_free += 1
        indices[position] = next_free
        claimed.add(next_free)
    return indices  # type: ignore[return-value]


def normalize_variants(raw_variants: Sequence[RawVariant]) -> List[Variant]:
    """Normalise raw payload records into Variant records, order preserved.

    Every valid, non-negative supplied index is kept (the first record
    claiming a value keeps it). Records without one, and later records
    repeating a claimed value, take the lowest unused indices in input order.
    """
    records: List[Dict[str, Any]] = []
    for raw in raw_variants:
        raw = raw if isinstance(raw, Mapping) else {}
        records.append({name: lookup_field(raw, name) for name, _ in FIELD_ALIASES})

    indices = _assign_indices([_coerce_index(record["index"]) for record in records])

    variants = []
    for position, record in enumerate(records):
        index = indices[position]
        variants.append(Variant(
            index=index,
            title=_optional_str(record["title"]) or DEFAULT_TITLE,
            direct_audio_url=_optional_str(record["direct_audio_url"]),
            stream_url=_optional_str(record["stream_url"]),
            cover_image_url=_optional_str(record["cover_image_url"]),
        ))
    return variants


def split_eligible(variants: Iterable[Variant]) -> Tuple[List[Variant], List[Variant]]:
    """Partition variants into (eligible, invalid) and log the invalid ones."""
    eligible: List[Variant] = []
    invalid: List[Variant] = []
    for variant in variants:
        (eligible if variant.is_eligible else invalid).append(variant)
    if invalid:
        logger.warning(
            "Variants without audio or stream URL: %s",
            ", ".join(f"#{v.index} ({v.title})" for v in invalid),
        )
    return eligible, invalid
