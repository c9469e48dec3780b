import os
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from media.audio import _run_ffmpeg, extract_audio, extract_audio_file
from media.errors import AudioExtractionError


def _fake_ffmpeg_writing(payload: bytes):
    def _run(input_path, output_path, timeout):
        assert os.path.exists(input_path)
        with open(output_path, "wb") as handle:
            handle.write(payload)

    return _run


def _ffmpeg_with_process(process):
    fake = MagicMock()
    fake.input.return_value.output.return_value.overwrite_output.return_value.run_async.return_value = process
    return fake


def test_extract_audio_file_returns_wav_and_cleans_scratch(tmp_path):
    source = tmp_path / "source.mp4"
    source.write_bytes(b"video")
    scratch_root = tmp_path / "job"
    scratch_root.mkdir()

    with patch("media.audio._run_ffmpeg", side_effect=_fake_ffmpeg_writing(b"RIFF-wav")):
        audio = extract_audio_file(str(source), work_dir=str(scratch_root), timeout=5)

    assert audio == b"RIFF-wav"
    assert os.listdir(scratch_root) == []


def test_extract_audio_file_failure_still_cleans_scratch(tmp_path):
    source = tmp_path / "source.mp4"
    source.write_bytes(b"video")
    scratch_root = tmp_path / "job"
    scratch_root.mkdir()

    with patch("media.audio._run_ffmpeg", side_effect=AudioExtractionError("ffmpeg failed: bad input")):
        with pytest.raises(AudioExtractionError):
            extract_audio_file(str(source), work_dir=str(scratch_root), timeout=5)

    assert os.listdir(scratch_root) == []


def test_extract_audio_file_rejects_empty_output(tmp_path):
    source = tmp_path / "source.mp4"
    source.write_bytes(b"video")

    with patch("media.audio._run_ffmpeg", side_effect=_fake_ffmpeg_writing(b"")):
        with pytest.raises(AudioExtractionError, match="no audio"):
            extract_audio_file(str(source), work_dir=str(tmp_path), timeout=5)


def test_extract_audio_from_bytes_removes_temp_input(tmp_path):
    with patch("media.audio._run_ffmpeg", side_effect=_fake_ffmpeg_writing(b"RIFF-wav")):
        audio = extract_audio(b"media-bytes", work_dir=str(tmp_path), timeout=5)

    assert audio == b"RIFF-wav"
    assert os.listdir(tmp_path) == []


def test_extract_audio_requires_bytes():
    with pytest.raises(AudioExtractionError):
        extract_audio(b"")


def test_run_ffmpeg_kills_process_on_timeout(tmp_path):
    process = MagicMock()
    process.communicate.side_effect = [subprocess.TimeoutExpired("ffmpeg", 1), (b"", b"")]

    with patch("media.audio.ffmpeg", _ffmpeg_with_process(process)):
        with pytest.raises(AudioExtractionError, match="timed out"):
            _run_ffmpeg("in.mp4", str(tmp_path / "out.wav"), timeout=1)

    process.kill.assert_called_once()


def test_run_ffmpeg_reports_last_stderr_line(tmp_path):
    process = MagicMock()
    process.communicate.return_value = (b"", b"header\nInvalid data found when processing input\n")
    process.returncode = 1

    with patch("media.audio.ffmpeg", _ffmpeg_with_process(process)):
        with pytest.raises(AudioExtractionError, match="Invalid data found"):
            _run_ffmpeg("in.mp4", str(tmp_path / "out.wav"), timeout=30)


def test_run_ffmpeg_requests_mono_16khz_pcm(tmp_path):
    process = MagicMock()
    process.communicate.return_value = (b"", b"")
    process.returncode = 0
    fake = _ffmpeg_with_process(process)

    with patch("media.audio.ffmpeg", fake):
        _run_ffmpeg("in.mp4", str(tmp_path / "out.wav"), timeout=30)

    kwargs = fake.input.return_value.output.call_args.kwargs
    assert kwargs["ac"] == 1
    assert kwargs["ar"] == 16000
    assert kwargs["acodec"] == "pcm_s16le"
