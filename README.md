# transcodeworker

A worker that transcodes video. It reads jobs from a Redis or Valkey stream
through a consumer group. For each job it downloads the input from
S3-compatible storage such as MinIO, runs `ffmpeg`, uploads the result and
acknowledges the message.

## Requirements

- Python 3.10 or later
- `ffmpeg` on the `PATH`
- A Redis or Valkey server
- An S3-compatible object store

## Installation

```sh
pip install .
```

To run the test suite, install the test extra:

```sh
pip install ".[test]"
pytest
```

## Running the worker

```sh
transcodeworker
```

The worker joins the consumer group `video_workers_group` on the stream
`transcoding_jobs`. If the group does not exist, the worker creates it, and
the stream with it, starting from id `0`. Its consumer name is
`worker-<hostname>-<uuid>`. It reads one entry at a time and blocks for up to
5 seconds on each read. If a read fails, it waits one second and tries again.
Press Ctrl-C to stop it.

The command exits with status 1 if the Valkey URL is invalid or the consumer
group cannot be created.

### Configuration

| Variable | Default | Meaning |
|---|---|---|
| `VALKEY_URL` | `redis://127.0.0.1:6379` | Redis/Valkey connection URL |
| `MINIO_ENDPOINT_URL` | `http://localhost:9000` | S3 endpoint (path-style addressing) |
| `MINIO_AWS_REGION` | `us-east-1` | Region used to sign requests |
| `AWS_ACCESS_KEY_ID`, `AWS_SECRET_ACCESS_KEY` | none | Storage credentials; without both, requests are sent unsigned |
| `AWS_SESSION_TOKEN` | none | Sent as `x-amz-security-token` when set |

## Job messages

Each stream entry must contain these fields:

- `job_id`
- `input_bucket`, `input_object_key`
- `output_bucket`, `output_object_key`
- `options_json`: a JSON object holding the `TranscodeOptions` fields

```json
{
  "output_resolution": "640x360",
  "video_codec": "libx264",
  "video_bitrate": "500k",
  "crf": null,
  "preset": "medium",
  "audio_codec": "aac",
  "audio_bitrate": "96k"
}
```

The string fields are required. `video_bitrate` and `crf` may be left out or
set to `null`. `crf` must be an integer from 0 to 255.

If `crf` is set and the codec is `libx264` or `libx265`, `ffmpeg` runs with
`-crf`. Otherwise `video_bitrate` is passed as `-b:v`, and a job that has
neither setting fails. With `libx264` the output uses `-pix_fmt yuv420p`.

The worker downloads the input to `temp_downloads/<job_id>_<name>` and writes
the output to `temp_outputs/<job_id>_<name>`. It removes both files after a
successful upload.

A job that fails is logged and is not acknowledged, so it stays in the
consumer group's pending list. A message that cannot be parsed is logged and
skipped, and it is not acknowledged either.

## Library use

```python
from pathlib import Path

from transcodeworker.options import TranscodeOptions
from transcodeworker.transcoder import build_ffmpeg_command, transcode_video

opts = TranscodeOptions(crf=23, video_bitrate=None)
print(build_ffmpeg_command(Path("in.mp4"), Path("out.mp4"), opts))
transcode_video(Path("in.mp4"), Path("out.mp4"), opts)
```

`transcode_video` raises these errors:

- `FileNotFoundError` if the input file is missing.
- `ValueError` from `build_ffmpeg_command` if no quality setting applies.
- `OSError` if `ffmpeg` cannot be started.
- `TranscodeError` if the output directory cannot be created or if `ffmpeg`
  exits with a non-zero status. For a non-zero exit, the status is kept in
  `returncode`.

The other modules:

- `transcodeworker.job`: `parse_job_from_map` turns a stream entry into a
  `Job` holding a `JobPayload`. It raises `JobParseError` if the entry cannot
  be parsed.
- `transcodeworker.s3`: `S3Client` is a small path-style client that signs
  requests with Signature Version 4 and offers `get_object` and `put_object`.
  `new_s3_client` builds a client from the environment. `download_file` and
  `upload_file` move whole files and raise `S3Error` on failure.
- `transcodeworker.streams`: `ensure_consumer_group_exists` and
  `get_consumer_hostname`.
- `transcodeworker.worker`: `process_single_job` raises `JobProcessingError`
  on failure. `jobs_processing_loop` runs the loop, and `main` is the entry
  point.

## What this package does not do

This package only consumes jobs. It has no API or command for submitting jobs
or uploading source videos. Something else must add entries to the
`transcoding_jobs` stream and put the inputs into the object store. Failed
jobs are not retried or moved to a dead-letter queue. They stay pending until
they are handled some other way.