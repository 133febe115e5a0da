"""Voice message transcription via ffmpeg + whisper.cpp.

Every step is best-effort: a missing tool, a timeout or a bad clip yields
``None`` and the caller stores a placeholder instead. Scratch files are
removed on every exit path.
"""

from __future__ import annotations

import contextlib
import shutil
from collections.abc import Awaitable, Callable
from pathlib import Path

from nanoclaw.config import get_settings
from nanoclaw.logger import logger
from nanoclaw.utils import run_command

VOICE_PLACEHOLDER = "[voice message - transcription unavailable]"


def format_voice_content(text: str | None) -> str:
    """Message content stored for a voice clip."""
    if text:
        return f"[voice message] {text}"
    return VOICE_PLACEHOLDER


def _find_whisper_binary(candidates: list[str]) -> str | None:
    for name in candidates:
        if shutil.which(name):
            return name
    return None


async def transcribe_voice(
    file_id: str,
    download: Callable[[Path], Awaitable[None]],
) -> str | None:
    """Download a voice clip and return its transcript, or None.

    *download* writes the clip to the given path and may raise; any
    failure is logged and swallowed.
    """
    s = get_settings()
    scratch = s.scratch_dir
    ogg_path = scratch / f"{file_id}.ogg"
    wav_path = scratch / f"{file_id}.wav"
    txt_path = scratch / f"{file_id}.wav.txt"

    try:
        scratch.mkdir(parents=True, exist_ok=True)
        await download(ogg_path)

        converted = await run_command(
            "ffmpeg",
            "-y",
            "-i",
            str(ogg_path),
            "-ar",
            "16000",
            "-ac",
            "1",
            str(wav_path),
            timeout_seconds=s.transcription.convert_timeout,
        )
        if not converted.ok:
            logger.warning(
                "ffmpeg failed to convert voice message",
                file_id=file_id,
                timed_out=converted.timed_out,
                err=converted.start_error or converted.stderr[-500:],
            )
            return None

        whisper_bin = _find_whisper_binary(s.transcription.binaries)
        if whisper_bin is None:
            logger.warning(
                "whisper.cpp not found, skipping transcription",
                candidates=s.transcription.binaries,
            )
            return None

        result = await run_command(
            whisper_bin,
            "-m",
            s.whisper_model_path,
            "-f",
            str(wav_path),
            "--output-txt",
            "--output-file",
            str(wav_path),
            timeout_seconds=s.transcription.transcribe_timeout,
        )
        if not result.ok:
            logger.warning(
                "whisper.cpp transcription failed",
                file_id=file_id,
                timed_out=result.timed_out,
                err=result.start_error or result.stderr[-500:],
            )
            return None

        if not txt_path.exists():
            return None
        text = txt_path.read_text(encoding="utf-8", errors="replace").strip()
        return text or None
    except Exception as exc:
        logger.error("Voice transcription error", file_id=file_id, err=str(exc))
        return None
    finally:
        for path in (ogg_path, wav_path, txt_path):
            with contextlib.suppress(OSError):
                path.unlink(missing_ok=True)
