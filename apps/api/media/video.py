import os
import glob
import logging
import re
import threading
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qs, urlparse

import yt_dlp
import ffmpeg

from media.errors import InvalidVideoUrlError, MediaDownloadError

logger = logging.getLogger(__name__)

YOUTUBE_HOSTS = {"youtube.com", "www.youtube.com", "m.youtube.com", "music.youtube.com"}
SHORT_LINK_HOSTS = {"youtu.be", "www.youtu.be"}
VIDEO_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{6,20}$")
PATH_ID_PREFIXES = ("shorts", "embed", "live", "v")


@dataclass(frozen=True)
class DownloadedMedia:
    path: str
    title: Optional[str] = None
    duration_seconds: Optional[int] = None


def extract_video_id(url: str) -> str:
    """
    Return the YouTube video id from a watch, short-link, shorts or embed URL.

    Raises InvalidVideoUrlError before any network access when the URL does
    not match a supported shape.
    """
    raw = (url or "").strip()
    if not raw:
        raise InvalidVideoUrlError("A YouTube URL is required.")
    if "://" not in raw:
        raw = f"https://{raw}"

    parsed = urlparse(raw)
    if parsed.scheme not in {"http", "https"}:
        raise InvalidVideoUrlError("URL must use http or https.")
    host = (parsed.hostname or "").lower()
    segments = [part for part in parsed.path.split("/") if part]

    candidate = ""
    if host in SHORT_LINK_HOSTS:
        candidate = segments[0] if segments else ""
    elif host in YOUTUBE_HOSTS:
        if segments[:1] == ["watch"]:
            candidate = (parse_qs(parsed.query).get("v") or [""])[0]
        elif len(segments) >= 2 and segments[0] in PATH_ID_PREFIXES:
            candidate = segments[1]
    else:
        raise InvalidVideoUrlError(f"Unsupported video host: {host or 'missing'}.")

    if not VIDEO_ID_PATTERN.match(candidate):
        raise InvalidVideoUrlError("Could not find a valid YouTube video id in the URL.")
    return candidate


def canonical_watch_url(video_id: str) -> str:
    return f"https://www.youtube.com/watch?v={video_id}"


def download_video(
    url: str,
    output_path: str,
    socket_timeout: float = 60.0,
    cancel_event: Optional[threading.Event] = None,
) -> DownloadedMedia:
    """
    Download video from URL using yt-dlp.
    Returns the downloaded file path together with title/duration metadata.
    Setting ``cancel_event`` stops the transfer at the next progress update.
    """

    def _stop_when_cancelled(_status: dict) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise MediaDownloadError("download cancelled")

    # Lowest video quality is enough; only the audio track is used downstream.
    ydl_opts = {
        'format': 'bestaudio[ext=m4a]/worst[ext=mp4]/worst',
        'outtmpl': output_path,
        'quiet': True,
        'no_warnings': True,
        'overwrites': True,
        'noplaylist': True,
        'socket_timeout': socket_timeout,
        'progress_hooks': [_stop_when_cancelled],
    }

    try:
        with yt_dlp.YoutubeDL(ydl_opts) as ydl:
            info = ydl.extract_info(url, download=True) or {}
    except Exception as e:
        logger.error(f"Error downloading video: {e}")
        raise MediaDownloadError(str(e)) from e

    title = info.get("title") or None
    duration = info.get("duration")
    duration_seconds = int(duration) if isinstance(duration, (int, float)) and duration > 0 else None

    if os.path.exists(output_path):
        return DownloadedMedia(output_path, title, duration_seconds)

    # yt-dlp may append its own extension to the template
    base_name = os.path.splitext(output_path)[0]
    matches = glob.glob(f"{base_name}*")
    if matches:
        return DownloadedMedia(matches[0], title, duration_seconds)

    raise MediaDownloadError("Video not found after download")


def get_video_duration_seconds(video_path: str) -> Optional[int]:
    """
    Probe media metadata and return duration in whole seconds.
    """
    try:
        probe = ffmpeg.probe(video_path)
        fmt = probe.get("format", {})
        duration = float(fmt.get("duration", 0.0) or 0.0)
        if duration <= 0:
            for stream in probe.get("streams", []):
                duration = float(stream.get("duration", 0.0) or 0.0)
                if duration > 0:
                    break
        rounded = int(round(duration))
        return rounded if rounded > 0 else None
    except Exception as e:
        logger.warning(f"Could not probe media duration for {video_path}: {e}")
        return None
