"""
FFmpeg preview transcoder

Builds and runs the ffmpeg command that trims a source to the preview
duration and writes it as a segmented HLS audio stream.
"""

import os
import shutil
import subprocess
import time
import logging
from typing import List, Optional
from urllib.parse import urlparse

import requests

from .config import PreviewConfig
from .errors import SourceFetchError, TranscodeError
from .retry import RetryPolicy, NO_RETRY
from .task import PreviewArtifactSet, ResolvedSource, SourceKind

logger = logging.getLogger(__name__)

# Protocols a local playlist may reach while reading its remote segments
PLAYLIST_PROTOCOLS = "file,http,https,tcp,tls"

DOWNLOAD_CHUNK_SIZE = 64 * 1024
AUDIO_EXTENSIONS = {".mp3", ".m4a", ".aac", ".wav", ".ogg", ".opus", ".flac"}


class FFmpegRunner:
    """Preview transcoder

    Presents the same contract for downloaded audio files and resolved
    playlists: start at zero, keep clip_duration seconds, emit HLS.
    """

    def __init__(
        self,
        config: PreviewConfig,
        session: Optional[requests.Session] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        """Initialise the runner

        Args:
            config: preview configuration
            session: shared HTTP session used for direct audio downloads
            retry_policy: retry policy for the playlist-source path
        """
        self.config = config
        self.ffmpeg_path = config.ffmpeg_path
        self.session = session or requests.Session()
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=config.transcode_retry_attempts,
            delay=config.transcode_retry_delay,
        )

    # ------------------------------------------------------------------
    # Direct audio download
    # ------------------------------------------------------------------

    def download_audio(self, url: str, work_dir: str) -> ResolvedSource:
        """Download a direct audio file into the working directory

        Args:
            url: audio file URL
            work_dir: variant working directory

        Returns:
            ResolvedSource for the local file
        """
        extension = os.path.splitext(urlparse(url).path)[1].lower()
        if extension not in AUDIO_EXTENSIONS:
            extension = ".mp3"
        local_path = os.path.join(work_dir, f"source{extension}")
        max_bytes = self.config.max_audio_bytes
        deadline = self.config.fetch_deadline

        size = 0
        started = time.monotonic()
        try:
            with self.session.get(
                url,
                headers={"User-Agent": self.config.user_agent},
                stream=True,
                timeout=self.config.request_timeout,
            ) as response:
                response.raise_for_status()
                with open(local_path, "wb") as f:
                    for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                        if not chunk:
                            continue
                        size += len(chunk)
                        if size > max_bytes:
                            raise SourceFetchError(f"audio exceeds {max_bytes} bytes: {url}")
                        if time.monotonic() - started > deadline:
                            raise SourceFetchError(f"audio download exceeded {deadline}s: {url}")
                        f.write(chunk)
        except requests.RequestException as exc:
            raise SourceFetchError(f"failed to download audio {url}: {exc}") from exc

        if size == 0:
            raise SourceFetchError(f"downloaded audio is empty: {url}")

        logger.info(f"Downloaded {size} bytes from {url[:80]}")
        return ResolvedSource(kind=SourceKind.AUDIO, path=local_path, work_dir=work_dir, origin_url=url)

    # ------------------------------------------------------------------
    # Command construction
    # ------------------------------------------------------------------

    def build_command(self, source: ResolvedSource, output_dir: str) -> List[str]:
        """Build the ffmpeg command

        Args:
            source: resolved input
            output_dir: directory receiving the playlist and segments

        Returns:
            ffmpeg argument list
        """
        cmd = [
            self.ffmpeg_path,
            "-hide_banner",
            "-loglevel", self.config.loglevel,
            "-y",
        ]

        # The local playlist still points at remote segments
        if source.is_playlist:
            cmd.extend(["-protocol_whitelist", PLAYLIST_PROTOCOLS])
            cmd.extend(["-rw_timeout", str(self.config.rw_timeout * 1_000_000)])

        cmd.extend(["-ss", "0"])
        cmd.extend(["-i", source.path])
        cmd.extend(["-t", str(self.config.clip_duration)])

        # Audio only
        cmd.append("-vn")
        cmd.extend(["-c:a", self.config.audio_encoder])
        if self.config.audio_bitrate:
            cmd.extend(["-b:a", self.config.audio_bitrate])
        cmd.extend(self._get_fade_params())

        cmd.extend(self._get_hls_params(output_dir))
        return cmd

    def _get_fade_params(self) -> List[str]:
        fade = min(self.config.fade_out_duration, self.config.clip_duration)
        if fade <= 0:
            return []
        start = self.config.clip_duration - fade
        return ["-af", f"afade=t=out:st={start}:d={fade}"]

    def _get_hls_params(self, output_dir: str) -> List[str]:
        params = [
            "-f", "hls",
            "-hls_time", str(self.config.segment_duration),
            "-hls_playlist_type", "vod",
            "-hls_list_size", "0",
        ]
        if self.config.segment_extension == "ts":
            params.extend(["-hls_segment_type", "mpegts"])
        params.extend(["-hls_segment_filename", self.config.get_segment_pattern(output_dir)])
        params.append(os.path.join(output_dir, self.config.playlist_name))
        return params

    def get_command_line_string(self, command: List[str]) -> str:
        """Command line for logging, with long URLs shortened"""
        sanitized = []
        for arg in command:
            if arg.startswith(("http://", "https://")) and len(arg) > 100:
                sanitized.append(arg[:100] + "...")
            else:
                sanitized.append(arg)
        return " ".join(sanitized)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def run(self, command: List[str]) -> None:
        """Run ffmpeg to completion

        Args:
            command: ffmpeg argument list
        """
        logger.info(f"Starting FFmpeg: {self.get_command_line_string(command)}")
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.config.transcode_timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise TranscodeError(f"ffmpeg timed out after {self.config.transcode_timeout}s") from exc
        except FileNotFoundError as exc:
            raise TranscodeError(f"ffmpeg executable not found: {self.ffmpeg_path}") from exc

        if result.returncode != 0:
            message = (result.stderr or "").strip().splitlines()
            detail = " | ".join(message[-3:]) or "unknown ffmpeg error"
            raise TranscodeError(f"ffmpeg exited with code {result.returncode}: {detail}")

    def transcode(self, source: ResolvedSource, output_dir: str) -> PreviewArtifactSet:
        """Produce the preview artifact set for a resolved source

        Playlist sources are retried according to the retry policy; remote
        segment reads are the usual cause of failure on that path.

        Args:
            source: resolved input
            output_dir: directory receiving the playlist and segments

        Returns:
            PreviewArtifactSet
        """
        command = self.build_command(source, output_dir)

        def _attempt() -> PreviewArtifactSet:
            _reset_dir(output_dir)
            self.run(command)
            return collect_artifacts(output_dir, self.config.playlist_name)

        policy = self.retry_policy if source.kind is SourceKind.PLAYLIST else NO_RETRY
        return policy.call(_attempt, retry_on=(TranscodeError,), label=f"ffmpeg {source.origin_url[:80]}")


def _reset_dir(path: str) -> None:
    if os.path.isdir(path):
        shutil.rmtree(path)
    os.makedirs(path, exist_ok=True)


def collect_artifacts(output_dir: str, playlist_name: str) -> PreviewArtifactSet:
    """Gather ffmpeg output and check that the playlist is self-consistent

    Every segment referenced by the playlist must exist in output_dir.

    Args:
        output_dir: ffmpeg output directory
        playlist_name: playlist file name

    Returns:
        PreviewArtifactSet with segments in playlist order
    """
    playlist_path = os.path.join(output_dir, playlist_name)
    if not os.path.isfile(playlist_path):
        raise TranscodeError(f"ffmpeg produced no playlist {playlist_name}")

    with open(playlist_path, "r", encoding="utf-8") as f:
        references = [line.strip() for line in f if line.strip() and not line.startswith("#")]

    if not references:
        raise TranscodeError("ffmpeg playlist references no segments")

    segment_paths = []
    for reference in references:
        name = os.path.basename(urlparse(reference).path)
        path = os.path.join(output_dir, name)
        if not os.path.isfile(path):
            raise TranscodeError(f"playlist references missing segment {reference}")
        segment_paths.append(path)

    return PreviewArtifactSet(output_dir=output_dir, playlist_path=playlist_path, segment_paths=segment_paths)
