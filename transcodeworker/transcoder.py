"""Running ffmpeg for a transcoding job."""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path

from transcodeworker.options import TranscodeOptions

logger = logging.getLogger(__name__)

_CRF_CODECS = ("libx264", "libx265")


class TranscodeError(Exception):
    """ffmpeg failed, or the output location could not be prepared."""

    def __init__(self, message: str, returncode: int | None = None) -> None:
        super().__init__(message)
        self.returncode = returncode


def build_ffmpeg_command(
    input_path: str | os.PathLike[str],
    output_path: str | os.PathLike[str],
    options: TranscodeOptions,
) -> list[str]:
    """Return the ffmpeg argument list; raise ValueError if no quality setting applies."""
    cmd = ["ffmpeg", "-y", "-i", os.fspath(input_path), "-c:v", options.video_codec]

    if options.crf is not None:
        if options.video_codec in _CRF_CODECS:
            cmd += ["-crf", str(options.crf)]
            if options.video_bitrate is not None:
                logger.warning(
                    "CRF value (%s) is set, video_bitrate (%s) will likely be ignored by "
                    "ffmpeg for quality targeting, unless used as -maxrate.",
                    options.crf,
                    options.video_bitrate,
                )
        else:
            logger.warning(
                "CRF is specified but video codec %s might not support it. "
                "Falling back to video_bitrate if available.",
                options.video_codec,
            )
            if options.video_bitrate is None:
                raise ValueError(
                    f"CRF not supported for {options.video_codec} and no video_bitrate provided."
                )
            cmd += ["-b:v", options.video_bitrate]
    elif options.video_bitrate is not None:
        cmd += ["-b:v", options.video_bitrate]
    else:
        raise ValueError(
            "Video quality setting missing: Neither CRF nor video_bitrate provided."
        )

    cmd += ["-preset", options.preset, "-vf", f"scale={options.output_resolution}"]
    if options.video_codec == "libx264":
        cmd += ["-pix_fmt", "yuv420p"]
    cmd += ["-c:a", options.audio_codec, "-b:a", options.audio_bitrate, os.fspath(output_path)]
    return cmd


def transcode_video(
    input_path: str | os.PathLike[str],
    output_path: str | os.PathLike[str],
    options: TranscodeOptions,
) -> None:
    """Transcode input_path into output_path with ffmpeg."""
    source = Path(input_path)
    target = Path(output_path)
    if not source.exists():
        message = f"Input file not found: {source}"
        logger.error(message)
        raise FileNotFoundError(message)

    logger.info("Starting transcoding: %s -> %s", source, target)
    logger.debug("Transcoding options: %r", options)

    parent = target.parent
    if not parent.exists():
        try:
            parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            message = f"Failed to create output directory {parent}: {exc}"
            logger.error(message)
            raise TranscodeError(message) from exc
        logger.info("Created output directory: %s", parent)

    cmd = build_ffmpeg_command(source, target, options)
    logger.debug("Executing FFMPEG command: %r", cmd)

    try:
        result = subprocess.run(cmd, check=False)
    except OSError as exc:
        logger.error("Failed to execute ffmpeg: %s", exc)
        raise

    if result.returncode != 0:
        message = (
            f"ffmpeg command failed with status: {result.returncode}. "
            "Check ffmpeg output above for details."
        )
        logger.error(message)
        raise TranscodeError(message, result.returncode)
    logger.info("Transcoding successful: %s -> %s", source, target)