"""
Preview service configuration

Defines preview, concurrency, object store and callback parameters with defaults.
"""

import os
import tempfile
from typing import Any, Dict, Optional
from dataclasses import dataclass

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)

# Environment variables that override values from config.json
ENV_OVERRIDES = {
    "R2_ENDPOINT_URL": "endpoint_url",
    "R2_ACCESS_KEY_ID": "access_key_id",
    "R2_SECRET_ACCESS_KEY": "secret_access_key",
    "R2_BUCKET": "bucket",
    "CALLBACK_URL": "callback_url",
    "CALLBACK_SECRET": "callback_secret",
}

SEGMENT_EXTENSIONS = ("ts", "aac")

CONTENT_TYPES = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".ts": "video/mp2t",
    ".aac": "audio/aac",
}


def _as_int(value: Any, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_float(value: Any, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


@dataclass
class PreviewConfig:
    """Preview configuration

    Read from the "preview" section of the application config, with
    deployment secrets taken from the environment.
    """

    # Working directories
    work_dir: str = tempfile.gettempdir()
    log_dir: Optional[str] = None

    # Clip parameters
    clip_duration: int = 30  # seconds of audio kept in the preview
    segment_duration: int = 10  # HLS target duration
    fade_out_duration: int = 5  # 0 disables the fade
    playlist_name: str = "demo.m3u8"
    segment_extension: str = "ts"

    # Encoder
    ffmpeg_path: str = "ffmpeg"
    audio_encoder: str = "aac"
    audio_bitrate: str = "128k"
    loglevel: str = "error"

    # Concurrency limits
    max_concurrent_variants: int = 2
    max_concurrent_uploads: int = 4
    # Per-variant limit applies within one batch; the host can run up to
    # max_concurrent_batches * max_concurrent_variants ffmpeg processes
    max_concurrent_batches: int = 4  # background batch executor size

    # Timeouts (seconds)
    request_timeout: int = 20
    callback_timeout: int = 10
    transcode_timeout: int = 300
    rw_timeout: int = 15
    fetch_deadline: int = 120  # whole playlist fetch or audio download

    # Source size caps (bytes)
    max_playlist_bytes: int = 2 * 1024 * 1024
    max_audio_bytes: int = 200 * 1024 * 1024

    # Retry policies
    transcode_retry_attempts: int = 2
    transcode_retry_delay: float = 2.0
    fetch_retry_attempts: int = 2
    fetch_retry_delay: float = 1.0

    user_agent: str = DEFAULT_USER_AGENT

    # Object store (Cloudflare R2 through the S3 API)
    bucket: str = ""
    endpoint_url: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    region: str = "auto"
    key_prefix: str = "previews"

    # Result callback
    callback_url: Optional[str] = None
    callback_secret: Optional[str] = None
    callback_secret_header: str = "X-Admin-Key"

    @classmethod
    def from_app_config(cls, app_config: Dict[str, Any], environ: Optional[Dict[str, str]] = None) -> 'PreviewConfig':
        """Build a PreviewConfig from the global config dictionary

        Args:
            app_config: global config dictionary
            environ: environment mapping, defaults to os.environ

        Returns:
            PreviewConfig instance
        """
        preview_config = dict((app_config or {}).get("preview", {}) or {})
        env = os.environ if environ is None else environ

        for env_name, field_name in ENV_OVERRIDES.items():
            if env.get(env_name):
                preview_config[field_name] = env[env_name]

        config = cls()

        # Plain strings
        for name in (
            "work_dir", "log_dir", "playlist_name", "ffmpeg_path", "audio_encoder",
            "audio_bitrate", "loglevel", "user_agent", "bucket", "endpoint_url",
            "access_key_id", "secret_access_key", "region", "key_prefix",
            "callback_url", "callback_secret", "callback_secret_header",
        ):
            if preview_config.get(name):
                setattr(config, name, str(preview_config[name]))

        if "segment_extension" in preview_config:
            extension = str(preview_config["segment_extension"] or "").lstrip(".").lower()
            if extension in SEGMENT_EXTENSIONS:
                config.segment_extension = extension

        # Clip parameters
        if "clip_duration" in preview_config:
            config.clip_duration = max(1, _as_int(preview_config["clip_duration"], 30))
        if "segment_duration" in preview_config:
            config.segment_duration = max(1, _as_int(preview_config["segment_duration"], 10))
        if "fade_out_duration" in preview_config:
            config.fade_out_duration = max(0, _as_int(preview_config["fade_out_duration"], 5))

        # Concurrency limits
        if "max_concurrent_variants" in preview_config:
            config.max_concurrent_variants = max(1, _as_int(preview_config["max_concurrent_variants"], 2))
        if "max_concurrent_uploads" in preview_config:
            config.max_concurrent_uploads = max(1, _as_int(preview_config["max_concurrent_uploads"], 4))
        if "max_concurrent_batches" in preview_config:
            config.max_concurrent_batches = max(1, _as_int(preview_config["max_concurrent_batches"], 4))

        # Timeouts
        if "request_timeout" in preview_config:
            config.request_timeout = _as_int(preview_config["request_timeout"], 20)
        if "callback_timeout" in preview_config:
            config.callback_timeout = _as_int(preview_config["callback_timeout"], 10)
        if "transcode_timeout" in preview_config:
            config.transcode_timeout = _as_int(preview_config["transcode_timeout"], 300)
        if "rw_timeout" in preview_config:
            config.rw_timeout = _as_int(preview_config["rw_timeout"], 15)
        if "fetch_deadline" in preview_config:
            config.fetch_deadline = max(1, _as_int(preview_config["fetch_deadline"], 120))

        # Size caps
        if "max_playlist_bytes" in preview_config:
            config.max_playlist_bytes = max(1024, _as_int(preview_config["max_playlist_bytes"], 2 * 1024 * 1024))
        if "max_audio_bytes" in preview_config:
            config.max_audio_bytes = max(1024, _as_int(preview_config["max_audio_bytes"], 200 * 1024 * 1024))

        # Retry policies
        if "transcode_retry_attempts" in preview_config:
            config.transcode_retry_attempts = max(1, _as_int(preview_config["transcode_retry_attempts"], 2))
        if "transcode_retry_delay" in preview_config:
            config.transcode_retry_delay = max(0.0, _as_float(preview_config["transcode_retry_delay"], 2.0))
        if "fetch_retry_attempts" in preview_config:
            config.fetch_retry_attempts = max(1, _as_int(preview_config["fetch_retry_attempts"], 2))
        if "fetch_retry_delay" in preview_config:
            config.fetch_retry_delay = max(0.0, _as_float(preview_config["fetch_retry_delay"], 1.0))

        return config

    def segment_content_type(self) -> str:
        """Content type of the configured segment container"""
        return CONTENT_TYPES["." + self.segment_extension]

    def get_output_prefix(self, task_id: str, index: int) -> str:
        """Object store key prefix for one variant's artifacts

        Args:
            task_id: batch identifier
            index: variant index

        Returns:
            key prefix, e.g. "previews/T1-0"
        """
        return f"{self.key_prefix}/{task_id}-{index}"

    def get_playlist_key(self, task_id: str, index: int) -> str:
        return f"{self.get_output_prefix(task_id, index)}/{self.playlist_name}"

    def get_segment_pattern(self, output_dir: str) -> str:
        """Segment filename pattern passed to ffmpeg

        Args:
            output_dir: variant working directory

        Returns:
            pattern such as "/tmp/preview-T1-0-x/segment%03d.ts"
        """
        return os.path.join(output_dir, f"segment%03d.{self.segment_extension}")


def get_preview_config(app_config: Dict[str, Any]) -> PreviewConfig:
    """Convenience wrapper around PreviewConfig.from_app_config

    Args:
        app_config: global config dictionary

    Returns:
        PreviewConfig instance
    """
    return PreviewConfig.from_app_config(app_config)
