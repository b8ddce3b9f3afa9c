"""Jobs read from the transcoding stream."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from transcodeworker.options import TranscodeOptions

TRANSCODING_JOB_STREAM_KEY = "transcoding_jobs"
JOB_CONSUMER_GROUP = "video_workers_group"


class JobParseError(ValueError):
    """A stream message could not be turned into a job."""


@dataclass
class JobPayload:
    job_id: str
    input_bucket: str
    input_object_key: str
    output_bucket: str
    output_object_key: str
    options: TranscodeOptions


@dataclass
class Job:
    message_id: str
    payload: JobPayload


def _to_str(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8")
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    raise ValueError(f"cannot convert {type(value).__name__} to a string")


def _field(fields: Mapping[str, Any], name: str, label: str | None = None) -> str:
    try:
        raw = fields[name]
    except KeyError:
        raise JobParseError(f"Missing {name} field") from None
    try:
        return _to_str(raw)
    except ValueError as exc:
        raise JobParseError(f"Failed to parse {label or name}: {exc}") from exc


def parse_job_from_map(message_id: str | bytes, fields: Mapping[Any, Any]) -> Job:
    """Build a job from the field map of one stream entry."""
    normalized = {
        (key.decode("utf-8", errors="replace") if isinstance(key, (bytes, bytearray)) else key): value
        for key, value in fields.items()
    }

    job_id = _field(normalized, "job_id")
    options_json = _field(normalized, "options_json", "options_json string")
    try:
        options = TranscodeOptions.from_json(options_json)
    except ValueError as exc:
        raise JobParseError(
            f"Failed to deserialize TranscodeOptions from JSON: {exc}"
        ) from exc

    payload = JobPayload(
        job_id=job_id,
        input_bucket=_field(normalized, "input_bucket"),
        input_object_key=_field(normalized, "input_object_key"),
        output_bucket=_field(normalized, "output_bucket"),
        output_object_key=_field(normalized, "output_object_key"),
        options=options,
    )
    return Job(message_id=_to_str(message_id), payload=payload)