"""
Audio preview service

Builds short HLS preview clips for batches of track variants and publishes
them to object storage.

Features:
- direct audio files and HLS streams (master playlists reduced to the median rendition)
- fixed-length clips with fade-out, segmented by ffmpeg
- bounded concurrency per batch and per upload
- per-variant failure isolation with a single result callback per batch
"""

from .config import PreviewConfig, get_preview_config
from .errors import (
    PreviewError,
    ValidationError,
    InvalidVariant,
    SourceFetchError,
    NoRenditionsError,
    InvalidRenditionError,
    TranscodeError,
    UploadError,
    CallbackDeliveryError,
)
from .variant import Variant, normalize_variants
from .playlist import PlaylistResolver
from .ffmpeg import FFmpegRunner
from .limiter import ConcurrencyLimiter
from .retry import RetryPolicy
from .uploader import PreviewUploader, S3ObjectStore
from .callback import ResultNotifier
from .task import BatchOutcome, BatchStatus, VariantResult
from .manager import PreviewManager, get_preview_manager, validate_request

__all__ = [
    'PreviewConfig',
    'get_preview_config',
    'PreviewError',
    'ValidationError',
    'InvalidVariant',
    'SourceFetchError',
    'NoRenditionsError',
    'InvalidRenditionError',
    'TranscodeError',
    'UploadError',
    'CallbackDeliveryError',
    'Variant',
    'normalize_variants',
    'PlaylistResolver',
    'FFmpegRunner',
    'ConcurrencyLimiter',
    'RetryPolicy',
    'PreviewUploader',
    'S3ObjectStore',
    'ResultNotifier',
    'BatchOutcome',
    'BatchStatus',
    'VariantResult',
    'PreviewManager',
    'get_preview_manager',
    'validate_request',
]
