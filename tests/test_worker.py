import subprocess
from pathlib import Path
from unittest import mock

import pytest
import redis

from transcodeworker.job import Job, JobPayload
from transcodeworker.options import TranscodeOptions
from transcodeworker.s3 import S3Error
from transcodeworker.worker import (
    TEMP_DOWNLOAD_DIR,
    TEMP_OUTPUT_DIR,
    JobProcessingError,
    jobs_processing_loop,
    main,
    process_single_job,
)


class FakeS3:
    def __init__(self, objects=None, fail_get=False, fail_put=False):
        self.objects = dict(objects or {})
        self.fail_get = fail_get
        self.fail_put = fail_put
        self.uploads = {}

    def get_object(self, bucket, key):
        if self.fail_get or (bucket, key) not in self.objects:
            raise S3Error("HTTP 404: NoSuchKey")
        return iter([self.objects[(bucket, key)]])

    def put_object(self, bucket, key, body):
        if self.fail_put:
            raise S3Error("HTTP 403: AccessDenied")
        self.uploads[(bucket, key)] = body.read() if hasattr(body, "read") else bytes(body)


class FakeFfmpeg:
    def __init__(self, returncode=0):
        self.returncode = returncode
        self.inputs = []

    def __call__(self, cmd, check=False):
        self.inputs.append(Path(cmd[cmd.index("-i") + 1]).read_bytes())
        if self.returncode == 0:
            Path(cmd[-1]).write_bytes(b"transcoded:" + self.inputs[-1])
        return subprocess.CompletedProcess(cmd, self.returncode)


class StopLoop(Exception):
    pass


class FakeValkey:
    def __init__(self, replies):
        self.replies = list(replies)
        self.acked = []

    def xreadgroup(self, groupname, consumername, streams, count=None, block=None):
        if not self.replies:
            raise StopLoop()
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def xack(self, name, groupname, *ids):
        self.acked.extend(ids)
        return len(ids)


def make_job(job_id="job-1", options=None):
    return Job(
        message_id="1-0",
        payload=JobPayload(
            job_id=job_id,
            input_bucket="uploads",
            input_object_key="raw/clip.mp4",
            output_bucket="results",
            output_object_key="done/clip_360.mp4",
            options=options or TranscodeOptions(),
        ),
    )


def stream_fields(job_id, options_json=None):
    return {
        b"job_id": job_id.encode(),
        b"options_json": (options_json or TranscodeOptions().to_json()).encode(),
        b"input_bucket": b"uploads",
        b"input_object_key": b"raw/clip.mp4",
        b"output_bucket": b"results",
        b"output_object_key": b"done/clip_360.mp4",
    }


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return tmp_path


def test_process_single_job_success(workdir, monkeypatch):
    ffmpeg = FakeFfmpeg()
    monkeypatch.setattr(subprocess, "run", ffmpeg)
    s3 = FakeS3({("uploads", "raw/clip.mp4"): b"source"})
    process_single_job(s3, make_job())
    assert ffmpeg.inputs == [b"source"]
    assert s3.uploads == {("results", "done/clip_360.mp4"): b"transcoded:source"}
    assert list((workdir / TEMP_DOWNLOAD_DIR).iterdir()) == []
    assert list((workdir / TEMP_OUTPUT_DIR).iterdir()) == []


def test_process_single_job_download_failure(workdir):
    with pytest.raises(JobProcessingError, match=r"\[Job job-1\] S3 Download failed"):
        process_single_job(FakeS3(fail_get=True), make_job())


def test_process_single_job_ffmpeg_failure_does_not_upload(workdir, monkeypatch):
    monkeypatch.setattr(subprocess, "run", FakeFfmpeg(returncode=1))
    s3 = FakeS3({("uploads", "raw/clip.mp4"): b"source"})
    with pytest.raises(JobProcessingError, match="Transcoding failed"):
        process_single_job(s3, make_job())
    assert s3.uploads == {}


def test_process_single_job_missing_quality_setting(workdir, monkeypatch):
    ffmpeg = FakeFfmpeg()
    monkeypatch.setattr(subprocess, "run", ffmpeg)
    s3 = FakeS3({("uploads", "raw/clip.mp4"): b"source"})
    options = TranscodeOptions(video_bitrate=None, crf=None)
    with pytest.raises(JobProcessingError, match="Neither CRF nor video_bitrate provided"):
        process_single_job(s3, make_job(options=options))
    assert ffmpeg.inputs == []


def test_process_single_job_upload_failure_keeps_files(workdir, monkeypatch):
    monkeypatch.setattr(subprocess, "run", FakeFfmpeg())
    s3 = FakeS3({("uploads", "raw/clip.mp4"): b"source"}, fail_put=True)
    with pytest.raises(JobProcessingError, match="S3 Upload failed"):
        process_single_job(s3, make_job())
    assert (workdir / TEMP_DOWNLOAD_DIR / "job-1_clip.mp4").read_bytes() == b"source"


def test_loop_acks_successful_jobs_only(workdir, monkeypatch):
    monkeypatch.setattr(subprocess, "run", FakeFfmpeg())
    s3 = FakeS3({("uploads", "raw/clip.mp4"): b"source"})
    bad_options = TranscodeOptions(video_bitrate=None).to_json()
    replies = [
        None,
        [[b"transcoding_jobs", [(b"1-0", stream_fields("good"))]]],
        [[b"transcoding_jobs", [(b"2-0", {b"job_id": b"broken"})]]],
        [[b"transcoding_jobs", [(b"3-0", stream_fields("bad", bad_options))]]],
        {b"transcoding_jobs": [[b"4-0", stream_fields("good-again")]]},
    ]
    valkey = FakeValkey(replies)
    with pytest.raises(StopLoop):
        jobs_processing_loop(valkey, s3, "transcoding_jobs", "video_workers_group", "worker-a")
    assert valkey.acked == ["1-0", "4-0"]
    assert len(s3.uploads) == 1


def test_loop_retries_after_read_error(workdir):
    valkey = FakeValkey([redis.ConnectionError("down"), []])
    with mock.patch("time.sleep") as sleep:
        with pytest.raises(StopLoop):
            jobs_processing_loop(valkey, FakeS3(), "transcoding_jobs", "g", "c")
    assert sleep.call_count == 1
    assert valkey.replies == []


def test_main_exits_when_valkey_unreachable(monkeypatch):
    monkeypatch.setenv("VALKEY_URL", "redis://127.0.0.1:1/0")
    assert main([]) == 1


def test_main_rejects_invalid_url(monkeypatch):
    monkeypatch.setenv("VALKEY_URL", "notascheme://nowhere")
    assert main([]) == 1