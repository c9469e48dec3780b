import logging
import os
import subprocess
import tempfile
from typing import Optional

import ffmpeg

from media.errors import AudioExtractionError

logger = logging.getLogger(__name__)

SAMPLE_RATE_HZ = 16000


def _run_ffmpeg(input_path: str, output_path: str, timeout: float) -> None:
    # ffmpeg -i input -vn -ac 1 -ar 16000 -acodec pcm_s16le -f wav output.wav
    stream = (
        ffmpeg
        .input(input_path)
        .output(output_path, vn=None, ac=1, ar=SAMPLE_RATE_HZ, acodec='pcm_s16le', format='wav')
        .overwrite_output()
    )
    try:
        process = stream.run_async(pipe_stdout=True, pipe_stderr=True, quiet=True)
    except FileNotFoundError as e:
        raise AudioExtractionError("ffmpeg executable not found") from e

    try:
        _, stderr = process.communicate(timeout=timeout)
    except subprocess.TimeoutExpired as e:
        process.kill()
        process.communicate()
        raise AudioExtractionError(f"ffmpeg timed out after {timeout:.0f}s") from e

    if process.returncode != 0:
        detail = (stderr or b"").decode(errors="replace").strip().splitlines()
        message = detail[-1] if detail else f"exit code {process.returncode}"
        logger.error(f"Error extracting audio: {message}")
        raise AudioExtractionError(f"ffmpeg failed: {message}")


def extract_audio_file(input_path: str, work_dir: Optional[str] = None, timeout: float = 600.0) -> bytes:
    """
    Convert a media file on disk to mono 16kHz PCM WAV and return the audio bytes.
    The intermediate WAV lives in a scoped temp directory that is always removed.
    """
    with tempfile.TemporaryDirectory(prefix="audio_", dir=work_dir) as scratch:
        output_path = os.path.join(scratch, "audio.wav")
        _run_ffmpeg(input_path, output_path, timeout)
        if not os.path.exists(output_path) or os.path.getsize(output_path) == 0:
            raise AudioExtractionError("ffmpeg produced no audio output")
        with open(output_path, "rb") as audio_file:
            return audio_file.read()


def extract_audio(media_bytes: bytes, work_dir: Optional[str] = None, timeout: float = 600.0) -> bytes:
    """
    Extract a speech-ready audio track from in-memory media bytes.
    Input and output are written to a scoped temp directory removed on every exit path.
    """
    if not media_bytes:
        raise AudioExtractionError("No media bytes to extract audio from")
    with tempfile.TemporaryDirectory(prefix="media_", dir=work_dir) as scratch:
        input_path = os.path.join(scratch, "input.media")
        with open(input_path, "wb") as media_file:
            media_file.write(media_bytes)
        return extract_audio_file(input_path, work_dir=scratch, timeout=timeout)
