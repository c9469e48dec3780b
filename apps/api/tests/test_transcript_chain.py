import os
import time
from unittest.mock import patch

import httpx
import pytest

from media.errors import AudioExtractionError, MediaDownloadError, TranscriptionError, TranscriptUnavailableError
from media.speech import SpeechToTextProvider
from media.video import DownloadedMedia
from services.transcript import (
    DownloadAndTranscribeStrategy,
    HostedTranscriptStrategy,
    TemplateTranscriptStrategy,
    TranscriptContext,
    TranscriptResult,
    TranscriptStrategy,
    UploadedMediaStrategy,
    acquire_transcript,
    template_subject,
    template_transcript,
)


class _Provider(SpeechToTextProvider):
    name = "fake"

    def __init__(self, text="", error=None):
        self.text = text
        self.error = error
        self.audio = None

    async def transcribe(self, audio: bytes) -> str:
        self.audio = audio
        if self.error:
            raise self.error
        return self.text


class _Fixed(TranscriptStrategy):
    def __init__(self, name, text="", error=None, fatal=()):
        self.name = name
        self.source = name
        self.text = text
        self.error = error
        self.fatal_errors = fatal
        self.calls = 0

    async def fetch(self, ctx):
        self.calls += 1
        if self.error:
            raise self.error
        return TranscriptResult(text=self.text, source=self.source)


def _ctx(tmp_path, **kwargs) -> TranscriptContext:
    return TranscriptContext(work_dir=str(tmp_path), seed=kwargs.pop("seed", "seed-1"), **kwargs)


@pytest.mark.asyncio
async def test_first_successful_strategy_wins(tmp_path):
    first = _Fixed("first", text="from first")
    second = _Fixed("second", text="from second")

    result = await acquire_transcript([first, second], _ctx(tmp_path))

    assert result.text == "from first"
    assert second.calls == 0
    assert [(a.strategy, a.ok) for a in result.attempts] == [("first", True)]


@pytest.mark.asyncio
async def test_failures_and_empty_text_fall_through(tmp_path):
    strategies = [
        _Fixed("broken", error=RuntimeError("boom")),
        _Fixed("blank", text="   "),
        _Fixed("good", text="finally"),
    ]

    result = await acquire_transcript(strategies, _ctx(tmp_path))

    assert result.source == "good"
    assert [(a.strategy, a.ok, a.error) for a in result.attempts] == [
        ("broken", False, "boom"),
        ("blank", False, "empty transcript"),
        ("good", True, None),
    ]


@pytest.mark.asyncio
async def test_fatal_error_stops_the_chain(tmp_path):
    fatal = _Fixed("stt", error=TranscriptionError("provider said no"), fatal=(TranscriptionError,))
    template = _Fixed("template", text="never used")

    with pytest.raises(TranscriptionError, match="provider said no"):
        await acquire_transcript([fatal, template], _ctx(tmp_path))
    assert template.calls == 0


@pytest.mark.asyncio
async def test_exhausted_chain_raises_unavailable(tmp_path):
    with pytest.raises(TranscriptUnavailableError, match="no transcript strategy succeeded"):
        await acquire_transcript([_Fixed("only", error=RuntimeError("nope"))], _ctx(tmp_path))


def test_template_transcript_is_deterministic_per_seed():
    assert template_transcript("abc123XYZ") == template_transcript("abc123XYZ")
    assert template_subject("abc123XYZ") in template_transcript("abc123XYZ")
    subjects = {template_subject(f"video-{i}") for i in range(40)}
    assert len(subjects) > 1


@pytest.mark.asyncio
async def test_template_strategy_never_fails(tmp_path):
    result = await TemplateTranscriptStrategy().fetch(_ctx(tmp_path, seed="xyz"))
    assert result.source == "template"
    assert result.title is None
    assert result.text == template_transcript("xyz")


@pytest.mark.asyncio
async def test_hosted_transcript_joins_segments(tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["x-api-key"] == "transcript-key"
        assert request.url.params["videoId"] == "abc123XYZ"
        return httpx.Response(
            200,
            json={"title": "Intro to Cells", "content": [{"text": "Cells divide."}, {"text": "Mitosis has phases."}]},
        )

    strategy = HostedTranscriptStrategy(
        "transcript-key",
        "https://transcripts.test/v1/youtube/transcript",
        transport=httpx.MockTransport(handler),
    )
    result = await strategy.fetch(_ctx(tmp_path, video_id="abc123XYZ"))

    assert result.text == "Cells divide. Mitosis has phases."
    assert result.title == "Intro to Cells"
    assert result.source == "transcript_api"


@pytest.mark.asyncio
async def test_hosted_transcript_accepts_plain_text(tmp_path):
    strategy = HostedTranscriptStrategy(
        "transcript-key",
        "https://transcripts.test/v1/youtube/transcript",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"content": "Just text."})),
    )
    result = await strategy.fetch(_ctx(tmp_path, video_id="abc123XYZ"))
    assert result.text == "Just text."
    assert result.title is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(404, json={"error": "not found"}),
        httpx.Response(200, json={"content": []}),
        httpx.Response(200, json=["unexpected"]),
    ],
)
async def test_hosted_transcript_failures_are_unavailable(tmp_path, response):
    strategy = HostedTranscriptStrategy(
        "transcript-key",
        "https://transcripts.test/v1/youtube/transcript",
        transport=httpx.MockTransport(lambda request: response),
    )
    with pytest.raises(TranscriptUnavailableError):
        await strategy.fetch(_ctx(tmp_path, video_id="abc123XYZ"))


@pytest.mark.asyncio
async def test_hosted_transcript_without_key_is_skipped(tmp_path):
    strategy = HostedTranscriptStrategy(None, "https://transcripts.test/v1/youtube/transcript")
    with pytest.raises(TranscriptUnavailableError, match="not configured"):
        await strategy.fetch(_ctx(tmp_path, video_id="abc123XYZ"))


@pytest.mark.asyncio
async def test_download_and_transcribe_reports_progress(tmp_path):
    progress = []

    async def report(value):
        progress.append(value)

    def fake_download(url, output_path, socket_timeout, cancel_event=None):
        assert url == "https://www.youtube.com/watch?v=abc123XYZ"
        return DownloadedMedia(output_path, title="Real Title", duration_seconds=300)

    provider = _Provider(text="Spoken words.")
    strategy = DownloadAndTranscribeStrategy(provider, extraction_timeout=5, download_timeout=5)
    with (
        patch("services.transcript.download_video", side_effect=fake_download),
        patch("services.transcript.extract_audio_file", return_value=b"wav"),
    ):
        result = await strategy.fetch(_ctx(tmp_path, video_id="abc123XYZ", report_progress=report))

    assert result.text == "Spoken words."
    assert result.title == "Real Title"
    assert result.duration_seconds == 300
    assert provider.audio == b"wav"
    assert progress == [25, 35]


@pytest.mark.asyncio
async def test_download_strategy_requires_provider(tmp_path):
    strategy = DownloadAndTranscribeStrategy(None)
    with patch("services.transcript.download_video") as download:
        with pytest.raises(TranscriptUnavailableError):
            await strategy.fetch(_ctx(tmp_path, video_id="abc123XYZ"))
    download.assert_not_called()


@pytest.mark.asyncio
async def test_url_chain_falls_through_provider_errors_to_template(tmp_path):
    strategies = [
        HostedTranscriptStrategy(None, "https://transcripts.test"),
        DownloadAndTranscribeStrategy(_Provider(error=TranscriptionError("provider down"))),
        TemplateTranscriptStrategy(),
    ]
    with (
        patch("services.transcript.download_video", return_value=DownloadedMedia(str(tmp_path / "v.mp4"))),
        patch("services.transcript.extract_audio_file", return_value=b"wav"),
    ):
        result = await acquire_transcript(strategies, _ctx(tmp_path, seed="abc123XYZ", video_id="abc123XYZ"))

    assert result.source == "template"
    assert [a.strategy for a in result.attempts] == ["hosted_transcript", "download_and_transcribe", "template"]


@pytest.mark.asyncio
async def test_upload_chain_extraction_failure_falls_back_to_template(tmp_path):
    media = tmp_path / "upload.mp4"
    media.write_bytes(b"video")
    strategies = [UploadedMediaStrategy(_Provider(text="unused")), TemplateTranscriptStrategy()]

    with (
        patch("services.transcript.get_video_duration_seconds", return_value=None),
        patch("services.transcript.extract_audio_file", side_effect=AudioExtractionError("no audio stream")),
    ):
        result = await acquire_transcript(strategies, _ctx(tmp_path, media_path=str(media)))

    assert result.source == "template"
    assert result.attempts[0].error == "no audio stream"


@pytest.mark.asyncio
async def test_upload_chain_provider_error_is_fatal(tmp_path):
    media = tmp_path / "upload.mp4"
    media.write_bytes(b"video")
    strategies = [
        UploadedMediaStrategy(_Provider(error=TranscriptionError("quota exceeded"))),
        TemplateTranscriptStrategy(),
    ]

    with (
        patch("services.transcript.get_video_duration_seconds", return_value=None),
        patch("services.transcript.extract_audio_file", return_value=b"wav"),
    ):
        with pytest.raises(TranscriptionError, match="quota exceeded"):
            await acquire_transcript(strategies, _ctx(tmp_path, media_path=str(media)))


@pytest.mark.asyncio
async def test_download_timeout_waits_for_the_download_thread(tmp_path):
    seen = {}

    def slow_download(url, output_path, socket_timeout, cancel_event=None):
        seen["cancel_requested"] = cancel_event.wait(2)
        time.sleep(0.2)
        with open(output_path + ".part", "wb") as partial:
            partial.write(b"partial")
        raise MediaDownloadError("download cancelled")

    strategy = DownloadAndTranscribeStrategy(_Provider(text="unused"), download_timeout=0.1)
    with patch("services.transcript.download_video", side_effect=slow_download):
        with pytest.raises(MediaDownloadError, match="timed out"):
            await strategy.fetch(_ctx(tmp_path, video_id="abc123XYZ"))

    assert seen["cancel_requested"] is True
    assert os.listdir(tmp_path) == ["source.mp4.part"]
