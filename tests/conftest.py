from typing import Dict

import pytest

from preview_service.config import PreviewConfig
from tests.fakes import FakeResponse, HLS_HEADERS, MASTER_PLAYLIST, MEDIA_PLAYLIST, Route


@pytest.fixture
def preview_config(tmp_path) -> PreviewConfig:
    config = PreviewConfig()
    config.work_dir = str(tmp_path / "work")
    config.callback_url = "https://callback.example/preview"
    config.callback_secret = "s3cret"
    config.transcode_retry_delay = 0.0
    config.fetch_retry_delay = 0.0
    return config


@pytest.fixture
def hls_routes() -> Dict[str, Route]:
    return {
        "https://x/a.mp3": FakeResponse(content=b"ID3" + b"\x00" * 1024),
        "https://x/master.m3u8": FakeResponse(text=MASTER_PLAYLIST, headers=HLS_HEADERS),
        "https://x/mid/index.m3u8": FakeResponse(text=MEDIA_PLAYLIST, headers=HLS_HEADERS),
        "https://x/media.m3u8": FakeResponse(text=MEDIA_PLAYLIST, headers=HLS_HEADERS),
    }
