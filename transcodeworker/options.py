"""Transcoding options carried by a job."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any

_REQUIRED_STRING_FIELDS = (
    "output_resolution",
    "video_codec",
    "preset",
    "audio_codec",
    "audio_bitrate",
)


def _require_str(data: Mapping[str, Any], name: str) -> str:
    if name not in data:
        raise ValueError(f"missing field `{name}`")
    value = data[name]
    if not isinstance(value, str):
        raise ValueError(f"invalid type for field `{name}`: expected a string")
    return value


def _optional_str(data: Mapping[str, Any], name: str) -> str | None:
    value = data.get(name)
    if value is None or isinstance(value, str):
        return value
    raise ValueError(f"invalid type for field `{name}`: expected a string or null")


def _optional_u8(data: Mapping[str, Any], name: str) -> int | None:
    value = data.get(name)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"invalid type for field `{name}`: expected an integer or null")
    if not 0 <= value <= 255:
        raise ValueError(f"invalid value for field `{name}`: {value} is not in 0..=255")
    return value


@dataclass
class TranscodeOptions:
    """Settings passed to ffmpeg for one transcoding job."""

    output_resolution: str = "640x360"
    video_codec: str = "libx264"
    video_bitrate: str | None = "500k"
    crf: int | None = None
    preset: str = "medium"
    audio_codec: str = "aac"
    audio_bitrate: str = "96k"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TranscodeOptions:
        """Build options from a mapping; string fields are required, optional ones may be absent."""
        if not isinstance(data, Mapping):
            raise ValueError("invalid type: expected an object")
        values: dict[str, Any] = {name: _require_str(data, name) for name in _REQUIRED_STRING_FIELDS}
        values["video_bitrate"] = _optional_str(data, "video_bitrate")
        values["crf"] = _optional_u8(data, "crf")
        return cls(**values)

    @classmethod
    def from_json(cls, text: str | bytes) -> TranscodeOptions:
        """Parse options from a JSON document."""
        return cls.from_dict(json.loads(text))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))