import os
import subprocess

import pytest

from preview_service import ffmpeg as ffmpeg_module
from preview_service.errors import SourceFetchError, TranscodeError
from preview_service.ffmpeg import FFmpegRunner, PLAYLIST_PROTOCOLS, collect_artifacts
from preview_service.task import ResolvedSource, SourceKind
from tests.fakes import EndlessResponse, FakeFFmpegRunner, FakeResponse, FakeSession


def _playlist_source(tmp_path) -> ResolvedSource:
    path = tmp_path / "source.m3u8"
    path.write_text("#EXTM3U\n")
    return ResolvedSource(kind=SourceKind.PLAYLIST, path=str(path), work_dir=str(tmp_path), origin_url="https://x/s.m3u8")


def _audio_source(tmp_path) -> ResolvedSource:
    path = tmp_path / "source.mp3"
    path.write_bytes(b"ID3")
    return ResolvedSource(kind=SourceKind.AUDIO, path=str(path), work_dir=str(tmp_path), origin_url="https://x/a.mp3")


def _value_after(command, flag):
    return command[command.index(flag) + 1]


def test_command_trims_and_segments(preview_config, tmp_path) -> None:
    runner = FFmpegRunner(preview_config)
    out_dir = str(tmp_path / "out")
    command = runner.build_command(_audio_source(tmp_path), out_dir)

    assert command[0] == "ffmpeg"
    assert _value_after(command, "-ss") == "0"
    assert _value_after(command, "-t") == "30"
    assert _value_after(command, "-hls_time") == "10"
    assert _value_after(command, "-f") == "hls"
    assert _value_after(command, "-hls_playlist_type") == "vod"
    assert _value_after(command, "-af") == "afade=t=out:st=25:d=5"
    assert _value_after(command, "-hls_segment_filename") == os.path.join(out_dir, "segment%03d.ts")
    assert command[-1] == os.path.join(out_dir, "demo.m3u8")
    assert "-protocol_whitelist" not in command


def test_playlist_source_gets_network_input_options(preview_config, tmp_path) -> None:
    command = FFmpegRunner(preview_config).build_command(_playlist_source(tmp_path), str(tmp_path / "out"))
    assert _value_after(command, "-protocol_whitelist") == PLAYLIST_PROTOCOLS
    assert _value_after(command, "-rw_timeout") == str(preview_config.rw_timeout * 1_000_000)
    assert command.index("-protocol_whitelist") < command.index("-i")


def test_fade_disabled_and_aac_segments(preview_config, tmp_path) -> None:
    preview_config.fade_out_duration = 0
    preview_config.segment_extension = "aac"
    command = FFmpegRunner(preview_config).build_command(_audio_source(tmp_path), str(tmp_path / "out"))
    assert "-af" not in command
    assert "-hls_segment_type" not in command
    assert _value_after(command, "-hls_segment_filename").endswith("segment%03d.aac")


def test_run_wraps_nonzero_exit(preview_config, monkeypatch) -> None:
    result = type("R", (), {"returncode": 1, "stderr": "line1\nInvalid data found when processing input\n"})
    monkeypatch.setattr(ffmpeg_module.subprocess, "run", lambda *a, **k: result)
    with pytest.raises(TranscodeError) as excinfo:
        FFmpegRunner(preview_config).run(["ffmpeg"])
    assert "Invalid data found" in str(excinfo.value)


def test_run_wraps_timeout(preview_config, monkeypatch) -> None:
    def boom(*args, **kwargs):
        raise subprocess.TimeoutExpired(cmd="ffmpeg", timeout=1)

    monkeypatch.setattr(ffmpeg_module.subprocess, "run", boom)
    with pytest.raises(TranscodeError):
        FFmpegRunner(preview_config).run(["ffmpeg"])


def test_playlist_transcode_retried_once(preview_config, tmp_path) -> None:
    runner = FakeFFmpegRunner(preview_config, failures=1)
    artifacts = runner.transcode(_playlist_source(tmp_path), str(tmp_path / "out"))
    assert len(runner.commands) == 2
    assert len(artifacts.segment_paths) == 3
    assert artifacts.playlist_name == "demo.m3u8"


def test_playlist_transcode_gives_up_after_retry(preview_config, tmp_path) -> None:
    runner = FakeFFmpegRunner(preview_config, failures=5)
    with pytest.raises(TranscodeError):
        runner.transcode(_playlist_source(tmp_path), str(tmp_path / "out"))
    assert len(runner.commands) == 2


def test_audio_transcode_not_retried(preview_config, tmp_path) -> None:
    runner = FakeFFmpegRunner(preview_config, failures=1)
    with pytest.raises(TranscodeError):
        runner.transcode(_audio_source(tmp_path), str(tmp_path / "out"))
    assert len(runner.commands) == 1


def test_download_audio_writes_file(preview_config, tmp_path) -> None:
    session = FakeSession({"https://x/song.m4a?sig=1": FakeResponse(content=b"a" * 5000)})
    source = FFmpegRunner(preview_config, session=session).download_audio("https://x/song.m4a?sig=1", str(tmp_path))
    assert source.kind is SourceKind.AUDIO
    assert source.path.endswith("source.m4a")
    assert os.path.getsize(source.path) == 5000
    call = session.gets[0]
    assert call["stream"] is True
    assert call["timeout"] == preview_config.request_timeout
    assert call["headers"]["User-Agent"] == preview_config.user_agent


def test_download_audio_failure(preview_config, tmp_path) -> None:
    session = FakeSession({"https://x/missing.mp3": FakeResponse(status_code=403)})
    with pytest.raises(SourceFetchError):
        FFmpegRunner(preview_config, session=session).download_audio("https://x/missing.mp3", str(tmp_path))


def test_collect_artifacts_requires_referenced_segments(tmp_path) -> None:
    (tmp_path / "demo.m3u8").write_text("#EXTM3U\n#EXTINF:10,\nsegment000.ts\n#EXTINF:10,\nsegment001.ts\n")
    (tmp_path / "segment000.ts").write_bytes(b"x")
    with pytest.raises(TranscodeError):
        collect_artifacts(str(tmp_path), "demo.m3u8")

    (tmp_path / "segment001.ts").write_bytes(b"x")
    artifacts = collect_artifacts(str(tmp_path), "demo.m3u8")
    assert [os.path.basename(p) for p in artifacts.segment_paths] == ["segment000.ts", "segment001.ts"]


def test_download_audio_endless_body_hits_size_cap(preview_config, tmp_path) -> None:
    preview_config.max_audio_bytes = 64 * 1024
    session = FakeSession({"https://x/live.mp3": EndlessResponse(headers={"Content-Type": "audio/mpeg"})})

    with pytest.raises(SourceFetchError, match="exceeds"):
        FFmpegRunner(preview_config, session=session).download_audio("https://x/live.mp3", str(tmp_path))
    assert os.path.getsize(tmp_path / "source.mp3") <= preview_config.max_audio_bytes


def test_download_audio_slow_body_hits_deadline(preview_config, tmp_path, monkeypatch) -> None:
    clock = iter(range(0, 10_000, 7))
    monkeypatch.setattr(ffmpeg_module.time, "monotonic", lambda: next(clock))
    preview_config.fetch_deadline = 20
    session = FakeSession({"https://x/slow.mp3": EndlessResponse(chunk=b"\xff" * 16)})

    with pytest.raises(SourceFetchError, match="exceeded 20s"):
        FFmpegRunner(preview_config, session=session).download_audio("https://x/slow.mp3", str(tmp_path))
