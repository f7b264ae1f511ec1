from preview_service.config import PreviewConfig


def test_defaults() -> None:
    config = PreviewConfig.from_app_config({}, environ={})
    assert config.clip_duration == 30
    assert config.segment_duration == 10
    assert config.max_concurrent_variants == 2
    assert config.max_concurrent_uploads == 4
    assert config.request_timeout == 20
    assert config.callback_timeout == 10
    assert config.segment_content_type() == "video/mp2t"


def test_file_values_and_env_overrides() -> None:
    app_config = {
        "preview": {
            "clip_duration": "45",
            "segment_duration": 6,
            "fade_out_duration": 0,
            "segment_extension": ".AAC",
            "max_concurrent_variants": 3,
            "bucket": "from-file",
            "transcode_retry_delay": "0.5",
        }
    }
    environ = {"R2_BUCKET": "from-env", "CALLBACK_URL": "https://cb.example/hook", "CALLBACK_SECRET": "k"}
    config = PreviewConfig.from_app_config(app_config, environ=environ)

    assert config.clip_duration == 45
    assert config.segment_duration == 6
    assert config.fade_out_duration == 0
    assert config.segment_extension == "aac"
    assert config.max_concurrent_variants == 3
    assert config.bucket == "from-env"
    assert config.callback_url == "https://cb.example/hook"
    assert config.callback_secret == "k"
    assert config.transcode_retry_delay == 0.5


def test_invalid_values_fall_back() -> None:
    config = PreviewConfig.from_app_config(
        {"preview": {"clip_duration": "abc", "max_concurrent_uploads": 0, "segment_extension": "mp4"}},
        environ={},
    )
    assert config.clip_duration == 30
    assert config.max_concurrent_uploads == 1
    assert config.segment_extension == "ts"


def test_key_layout() -> None:
    config = PreviewConfig()
    assert config.get_output_prefix("T1", 0) == "previews/T1-0"
    assert config.get_playlist_key("T1", 3) == "previews/T1-3/demo.m3u8"


def test_source_caps() -> None:
    config = PreviewConfig.from_app_config(
        {"preview": {"fetch_deadline": "45", "max_playlist_bytes": 10, "max_audio_bytes": "5000000"}},
        environ={},
    )
    assert config.fetch_deadline == 45
    assert config.max_playlist_bytes == 1024
    assert config.max_audio_bytes == 5_000_000
    assert PreviewConfig().max_playlist_bytes == 2 * 1024 * 1024
