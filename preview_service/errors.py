"""Preview pipeline error types."""

from __future__ import annotations

__all__ = [
    "PreviewError",
    "ValidationError",
    "InvalidVariant",
    "SourceFetchError",
    "NoRenditionsError",
    "InvalidRenditionError",
    "TranscodeError",
    "UploadError",
    "CallbackDeliveryError",
]


class PreviewError(RuntimeError):
    """Base class for every preview pipeline failure."""

    def summary(self) -> str:
        return f"{type(self).__name__}: {self}"


class ValidationError(PreviewError):
    """Batch request is malformed and never enters the pipeline."""


class InvalidVariant(PreviewError):
    """Variant carries neither a direct audio URL nor a stream URL."""


class SourceFetchError(PreviewError):
    """Remote playlist or audio file could not be fetched."""


class NoRenditionsError(PreviewError):
    """Master playlist lists no renditions."""


class InvalidRenditionError(PreviewError):
    """Selected rendition is not a media playlist."""


class TranscodeError(PreviewError):
    """ffmpeg failed or produced an incomplete artifact set."""


class UploadError(PreviewError):
    """Object store rejected an artifact upload."""


class CallbackDeliveryError(PreviewError):
    """Result callback could not be delivered."""
