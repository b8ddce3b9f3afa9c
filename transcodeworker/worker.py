"""The transcoding worker: read jobs from a stream, transcode and store results."""

from __future__ import annotations

import argparse
import logging
import os
import time
import uuid
from collections.abc import Iterator
from pathlib import Path, PurePosixPath
from typing import Any

import redis

from transcodeworker.job import (
    JOB_CONSUMER_GROUP,
    TRANSCODING_JOB_STREAM_KEY,
    Job,
    JobParseError,
    parse_job_from_map,
)
from transcodeworker.s3 import S3Error, download_file, new_s3_client, upload_file
from transcodeworker.streams import ensure_consumer_group_exists, get_consumer_hostname
from transcodeworker.transcoder import TranscodeError, transcode_video

logger = logging.getLogger(__name__)

VALKEY_URL_ENV_VAR = "VALKEY_URL"
DEFAULT_VALKEY_URL = "redis://127.0.0.1:6379"
WORKER_LOOP_DELAY_SECONDS = 1.0
STREAM_BLOCK_TIMEOUT_MS = 5000
TEMP_DOWNLOAD_DIR = "temp_downloads"
TEMP_OUTPUT_DIR = "temp_outputs"


class JobProcessingError(Exception):
    """A job could not be downloaded, transcoded, uploaded or cleaned up."""


def _fail(message: str, cause: BaseException) -> JobProcessingError:
    logger.error(message)
    error = JobProcessingError(message)
    error.__cause__ = cause
    return error


def process_single_job(s3_client: Any, job: Job) -> None:
    """Download the input, transcode it, upload the output and remove temp files."""
    payload = job.payload
    job_id = payload.job_id
    logger.info(
        "[Job %s] Processing. Input: s3://%s/%s, Output: s3://%s/%s",
        job_id,
        payload.input_bucket,
        payload.input_object_key,
        payload.output_bucket,
        payload.output_object_key,
    )
    logger.debug("[Job %s] Options: %r", job_id, payload.options)

    input_name = PurePosixPath(payload.input_object_key).name
    output_name = PurePosixPath(payload.output_object_key).name
    local_input = Path(TEMP_DOWNLOAD_DIR) / f"{job_id}_{input_name}"
    local_output = Path(TEMP_OUTPUT_DIR) / f"{job_id}_{output_name}"

    for directory, label in ((TEMP_DOWNLOAD_DIR, "download"), (TEMP_OUTPUT_DIR, "output")):
        try:
            Path(directory).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise _fail(f"[Job {job_id}] Failed to create temp {label} dir: {exc}", exc)

    logger.info(
        "[Job %s] Downloading from s3://%s/%s to %s",
        job_id,
        payload.input_bucket,
        payload.input_object_key,
        local_input,
    )
    try:
        download_file(s3_client, payload.input_bucket, payload.input_object_key, local_input)
    except S3Error as exc:
        raise _fail(f"[Job {job_id}] S3 Download failed: {exc}", exc)

    logger.info("[Job %s] Starting transcoding from %s to %s", job_id, local_input, local_output)
    try:
        transcode_video(local_input, local_output, payload.options)
    except (TranscodeError, ValueError, OSError) as exc:
        raise _fail(f"[Job {job_id}] Transcoding failed: {exc}", exc)
    except Exception as exc:
        raise _fail(f"[Job {job_id}] Transcoding task failed: {exc}", exc)
    logger.info("[Job %s] Transcoding successful.", job_id)

    logger.info(
        "[Job %s] Uploading %s to s3://%s/%s",
        job_id,
        local_output,
        payload.output_bucket,
        payload.output_object_key,
    )
    try:
        upload_file(s3_client, payload.output_bucket, payload.output_object_key, local_output)
    except S3Error as exc:
        raise _fail(f"[Job {job_id}] S3 Upload failed: {exc}", exc)

    logger.debug("[Job %s] Cleaning up temporary files: %s, %s", job_id, local_input, local_output)
    for path, label in ((local_input, "input"), (local_output, "output")):
        try:
            path.unlink()
        except OSError as exc:
            raise _fail(f"[Job {job_id}] Failed to delete temp {label} file {path}: {exc}", exc)
    logger.info("[Job %s] Successfully processed and cleaned up.", job_id)


def _stream_entries(reply: Any) -> Iterator[tuple[Any, Any]]:
    items = reply.items() if isinstance(reply, dict) else reply
    for _stream, messages in items:
        for message_id, fields in messages or ():
            yield message_id, fields or {}


def _handle_message(
    valkey_con: Any, s3_client: Any, stream_key: str, group_name: str, message_id: Any, fields: Any
) -> None:
    try:
        job = parse_job_from_map(message_id, fields)
    except JobParseError as exc:
        logger.error("Failed to parse job (Valkey ID: %s): %s. Skipping.", message_id, exc)
        return

    job_id = job.payload.job_id
    try:
        process_single_job(s3_client, job)
    except JobProcessingError as exc:
        logger.error(
            "[Job %s] Failed to process: %s. Valkey message %s will NOT be ACKed.",
            job_id,
            exc,
            job.message_id,
        )
        return

    logger.info("[Job %s] Successfully processed.", job_id)
    try:
        acked = valkey_con.xack(stream_key, group_name, job.message_id)
    except redis.RedisError as exc:
        logger.error("[Job %s] Failed to ACK Valkey message_id %s: %s", job_id, job.message_id, exc)
        return
    if acked and acked > 0:
        logger.info("[Job %s] Successfully ACKed Valkey message_id: %s", job_id, job.message_id)
    else:
        logger.warning(
            "[Job %s] ACK command for Valkey message_id %s returned 0 or unexpected count.",
            job_id,
            job.message_id,
        )


def jobs_processing_loop(
    valkey_con: Any, s3_client: Any, stream_key: str, group_name: str, consumer_name: str
) -> None:
    """Read and process jobs one at a time, forever; successful jobs are acknowledged."""
    logger.info(
        "Worker '%s' starting to process jobs from stream '%s', group '%s'",
        consumer_name,
        stream_key,
        group_name,
    )
    while True:
        try:
            reply = valkey_con.xreadgroup(
                group_name,
                consumer_name,
                {stream_key: ">"},
                count=1,
                block=STREAM_BLOCK_TIMEOUT_MS,
            )
        except redis.RedisError as exc:
            logger.error(
                "Error reading from Valkey stream '%s': %s. Retrying after delay.", stream_key, exc
            )
            time.sleep(WORKER_LOOP_DELAY_SECONDS)
            continue

        if not reply:
            logger.debug(
                "No messages received for consumer '%s' within timeout, re-checking.",
                consumer_name,
            )
            continue

        for message_id, fields in _stream_entries(reply):
            _handle_message(valkey_con, s3_client, stream_key, group_name, message_id, fields)


def main(argv: list[str] | None = None) -> int:
    """Run the worker until interrupted; return the process exit status."""
    parser = argparse.ArgumentParser(
        prog="transcodeworker",
        description="Consume transcoding jobs from a Valkey stream and run ffmpeg on them.",
    )
    parser.parse_args(argv)
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    valkey_url = os.environ.get(VALKEY_URL_ENV_VAR, DEFAULT_VALKEY_URL)
    consumer_name = f"worker-{get_consumer_hostname()}-{uuid.uuid4()}"
    logger.info("Starting worker with consumer name: %s", consumer_name)

    s3_client = new_s3_client()
    logger.info("S3 client initialized.")

    logger.info("Connecting to Valkey at: %s", valkey_url)
    try:
        valkey = redis.Redis.from_url(valkey_url)
    except ValueError as exc:
        logger.error("Invalid Valkey URL %s: %s", valkey_url, exc)
        return 1

    try:
        try:
            ensure_consumer_group_exists(valkey, TRANSCODING_JOB_STREAM_KEY, JOB_CONSUMER_GROUP)
        except redis.RedisError as exc:
            logger.error("Could not ensure consumer group exists: %s. Exiting.", exc)
            return 1
        logger.info("Successfully connected to Valkey.")

        try:
            jobs_processing_loop(
                valkey, s3_client, TRANSCODING_JOB_STREAM_KEY, JOB_CONSUMER_GROUP, consumer_name
            )
            logger.error("Job processing loop exited unexpectedly.")
        except KeyboardInterrupt:
            logger.info("CTRL-C received, shutting down worker '%s'.", consumer_name)
    finally:
        valkey.close()

    logger.info("Worker %s finished.", consumer_name)
    return 0