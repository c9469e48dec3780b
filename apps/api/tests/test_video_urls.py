import threading
from unittest.mock import patch

import pytest

from media.errors import InvalidVideoUrlError, MediaDownloadError
from media.video import canonical_watch_url, download_video, extract_video_id


@pytest.mark.parametrize(
    "url",
    [
        "https://youtu.be/abc123XYZ",
        "https://youtu.be/abc123XYZ?t=42",
        "https://www.youtube.com/watch?v=abc123XYZ",
        "https://m.youtube.com/watch?v=abc123XYZ&list=PL123",
        "youtube.com/watch?v=abc123XYZ",
        "https://www.youtube.com/shorts/abc123XYZ",
        "https://www.youtube.com/embed/abc123XYZ",
        "https://www.youtube.com/live/abc123XYZ",
    ],
)
def test_extract_video_id_supported_shapes(url):
    assert extract_video_id(url) == "abc123XYZ"


@pytest.mark.parametrize(
    "url",
    [
        "",
        "   ",
        "https://vimeo.com/123456789",
        "ftp://youtube.com/watch?v=abc123XYZ",
        "https://www.youtube.com/watch",
        "https://www.youtube.com/watch?v=bad id!",
        "https://www.youtube.com/channel/UC123456",
        "https://youtu.be/",
        "https://youtu.be/abc",
    ],
)
def test_extract_video_id_rejects_invalid_urls(url):
    with pytest.raises(InvalidVideoUrlError):
        extract_video_id(url)


def test_invalid_url_error_is_a_value_error():
    with pytest.raises(ValueError):
        extract_video_id("not a url at all")


def test_canonical_watch_url():
    assert canonical_watch_url("dQw4w9WgXcQ") == "https://www.youtube.com/watch?v=dQw4w9WgXcQ"


def test_download_stops_when_cancel_event_is_set(tmp_path):
    cancelled = threading.Event()
    with patch("media.video.yt_dlp.YoutubeDL") as ydl_cls:
        ydl_cls.return_value.__enter__.return_value.extract_info.return_value = {}
        with pytest.raises(MediaDownloadError):
            download_video("https://www.youtube.com/watch?v=abc123XYZ", str(tmp_path / "v.mp4"), 5, cancelled)

    hook = ydl_cls.call_args.args[0]["progress_hooks"][0]
    hook({"status": "downloading"})
    cancelled.set()
    with pytest.raises(MediaDownloadError, match="cancelled"):
        hook({"status": "downloading"})
