"""Tests for voice transcription: soft failures and scratch cleanup."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from nanoclaw.transcription import VOICE_PLACEHOLDER, format_voice_content, transcribe_voice
from nanoclaw.utils import CommandResult

OK = CommandResult(returncode=0, stdout="", stderr="")


async def _download(dest: Path) -> None:
    dest.write_bytes(b"OggS fake audio")


@pytest.fixture
def scratch(tmp_path: Path) -> Path:
    # conftest points scratch_dir here
    return tmp_path / "scratch"


def _fake_run_command(transcript: str | None, *, whisper: CommandResult = OK):
    """ffmpeg writes the wav; whisper writes ``<wav>.txt`` then returns *whisper*."""

    async def run(*args: str, timeout_seconds: float, stdin_data=None) -> CommandResult:
        if args[0] == "ffmpeg":
            Path(args[-1]).write_bytes(b"RIFF fake wav")
            return OK
        wav = Path(args[args.index("--output-file") + 1])
        if transcript is not None:
            Path(f"{wav}.txt").write_text(transcript)
        return whisper

    return run


def _files(scratch: Path) -> list[str]:
    return sorted(p.name for p in scratch.iterdir()) if scratch.exists() else []


class TestFormatVoiceContent:
    def test_with_transcript(self):
        assert format_voice_content("hello") == "[voice message] hello"

    def test_without_transcript(self):
        assert format_voice_content(None) == VOICE_PLACEHOLDER
        assert format_voice_content("") == VOICE_PLACEHOLDER


class TestTranscribeVoice:
    async def test_success_returns_trimmed_text_and_cleans_up(self, scratch: Path):
        with (
            patch("nanoclaw.transcription.run_command", _fake_run_command("  hi there \n")),
            patch("nanoclaw.transcription.shutil.which", return_value="/usr/bin/whisper-cpp"),
        ):
            assert await transcribe_voice("file1", _download) == "hi there"

        assert _files(scratch) == []

    async def test_prefers_first_binary(self, scratch: Path):
        calls: list[str] = []
        inner = _fake_run_command("text")

        async def run(*args: str, **kwargs) -> CommandResult:
            calls.append(args[0])
            return await inner(*args, **kwargs)

        with (
            patch("nanoclaw.transcription.run_command", run),
            patch(
                "nanoclaw.transcription.shutil.which",
                side_effect=lambda name: None if name == "whisper-cpp" else f"/bin/{name}",
            ),
        ):
            await transcribe_voice("file1", _download)

        assert calls == ["ffmpeg", "whisper"]

    async def test_uses_model_path(self, scratch: Path, monkeypatch):
        monkeypatch.delenv("WHISPER_MODEL", raising=False)
        captured: list[tuple[str, ...]] = []
        inner = _fake_run_command("text")

        async def run(*args: str, **kwargs) -> CommandResult:
            captured.append(args)
            return await inner(*args, **kwargs)

        with (
            patch("nanoclaw.transcription.run_command", run),
            patch("nanoclaw.transcription.shutil.which", return_value="/bin/whisper-cpp"),
        ):
            await transcribe_voice("file1", _download)

        whisper_args = captured[1]
        assert whisper_args[whisper_args.index("-m") + 1] == (
            "/usr/share/whisper.cpp/models/ggml-base.bin"
        )

    async def test_download_failure_returns_none(self, scratch: Path):
        download = AsyncMock(side_effect=RuntimeError("network"))
        assert await transcribe_voice("file1", download) is None
        assert _files(scratch) == []

    async def test_ffmpeg_failure_returns_none_and_cleans_up(self, scratch: Path):
        failed = CommandResult(returncode=1, stdout="", stderr="bad input")
        with patch("nanoclaw.transcription.run_command", AsyncMock(return_value=failed)):
            assert await transcribe_voice("file1", _download) is None
        assert _files(scratch) == []

    async def test_ffmpeg_timeout_returns_none(self, scratch: Path):
        timed_out = CommandResult(returncode=None, stdout="", stderr="", timed_out=True)
        with patch("nanoclaw.transcription.run_command", AsyncMock(return_value=timed_out)):
            assert await transcribe_voice("file1", _download) is None

    async def test_no_whisper_binary_returns_none(self, scratch: Path):
        with (
            patch("nanoclaw.transcription.run_command", _fake_run_command("text")),
            patch("nanoclaw.transcription.shutil.which", return_value=None),
        ):
            assert await transcribe_voice("file1", _download) is None
        assert _files(scratch) == []

    async def test_whisper_failure_removes_transcript_file(self, scratch: Path):
        failed = CommandResult(returncode=1, stdout="", stderr="crash")
        with (
            patch(
                "nanoclaw.transcription.run_command",
                _fake_run_command("partial", whisper=failed),
            ),
            patch("nanoclaw.transcription.shutil.which", return_value="/bin/whisper-cpp"),
        ):
            assert await transcribe_voice("file1", _download) is None
        assert _files(scratch) == []

    async def test_missing_transcript_returns_none(self, scratch: Path):
        with (
            patch("nanoclaw.transcription.run_command", _fake_run_command(None)),
            patch("nanoclaw.transcription.shutil.which", return_value="/bin/whisper-cpp"),
        ):
            assert await transcribe_voice("file1", _download) is None

    async def test_empty_transcript_returns_none(self, scratch: Path):
        with (
            patch("nanoclaw.transcription.run_command", _fake_run_command("   ")),
            patch("nanoclaw.transcription.shutil.which", return_value="/bin/whisper-cpp"),
        ):
            assert await transcribe_voice("file1", _download) is None
        assert _files(scratch) == []
