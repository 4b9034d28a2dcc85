"""
Tests for stream/upload delivery and the GCS uploader.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from functools import partial
from unittest.mock import MagicMock

import pytest
from starlette.requests import ClientDisconnect

from conftest import FakeUploader
from ytaudio.delivery import CleanupFileResponse, stream_artifact, upload_artifact
from ytaudio.exceptions import UploadError
from ytaudio.models import AudioFormat
from ytaudio.uploader import SIGNED_URL_TTL, GCSUploader, build_uploader
from ytaudio.config import Settings
from ytaudio.storage import ScratchStorage


@pytest.fixture
def artifact(tmp_path):
    path = tmp_path / "abc.mp3"
    path.write_bytes(b"ID3" + b"\x00" * 4096)
    return path


def http_scope(spec_version="2.4"):
    return {
        "type": "http",
        "asgi": {"version": "3.0", "spec_version": spec_version},
        "method": "GET",
        "path": "/extract",
        "headers": [],
        "query_string": b"",
    }


async def receive():
    # client stays connected
    await asyncio.Event().wait()


async def receive_disconnect():
    return {"type": "http.disconnect"}


@pytest.mark.asyncio
async def test_stream_cleanup_after_completion(artifact):
    sent = []

    async def send(message):
        sent.append(message)

    response = stream_artifact(artifact, AudioFormat.MP3, cleanup=artifact.unlink)
    await response(http_scope(), receive, send)

    start = sent[0]
    headers = dict(start["headers"])
    assert start["status"] == 200
    assert headers[b"content-type"] == b"audio/mpeg"
    assert headers[b"content-disposition"] == b'attachment; filename="abc.mp3"'
    assert b"".join(m.get("body", b"") for m in sent[1:]).startswith(b"ID3")
    assert not artifact.exists()


@pytest.mark.asyncio
async def test_stream_cleanup_after_client_abort(artifact):
    async def send(message):
        if message["type"] == "http.response.body":
            raise OSError("client went away")

    calls = []
    response = CleanupFileResponse(artifact, cleanup=lambda: calls.append(artifact.unlink()))

    with pytest.raises((OSError, ClientDisconnect)):
        await response(http_scope(), receive, send)

    assert len(calls) == 1
    assert not artifact.exists()


@pytest.mark.asyncio
async def test_stream_cleanup_after_disconnect_message(artifact):
    sent = []

    async def send(message):
        sent.append(message["type"])

    calls = []
    response = CleanupFileResponse(artifact, cleanup=lambda: calls.append(artifact.unlink()))

    # pre-2.4 servers report the abort through receive() instead of a failing send()
    await response(http_scope(spec_version="2.0"), receive_disconnect, send)

    assert len(calls) == 1
    assert not artifact.exists()


@pytest.fixture
def job_with_cookies(tmp_path):
    storage = ScratchStorage(tmp_path / "scratch")
    job = storage.new_job()
    storage.write_credentials(job, "# Netscape HTTP Cookie File\n")
    artifact = job.job_dir / "abc.mp3"
    artifact.write_bytes(b"ID3" + b"\x00" * 4096)
    return storage, job, artifact


@pytest.mark.asyncio
async def test_stream_abort_releases_job_and_cookies(job_with_cookies):
    storage, job, artifact = job_with_cookies

    async def send(message):
        if message["type"] == "http.response.body":
            raise OSError("client went away")

    response = stream_artifact(artifact, AudioFormat.MP3, cleanup=partial(storage.release, job, artifact))
    with pytest.raises((OSError, ClientDisconnect)):
        await response(http_scope(), receive, send)

    assert not job.credential_path.exists()
    assert list(storage.scratch_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_stream_disconnect_releases_job_and_cookies(job_with_cookies):
    storage, job, artifact = job_with_cookies

    async def send(message):
        pass

    response = stream_artifact(artifact, AudioFormat.MP3, cleanup=partial(storage.release, job, artifact))
    await response(http_scope(spec_version="2.0"), receive_disconnect, send)

    assert not job.credential_path.exists()
    assert list(storage.scratch_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_upload_failure_releases_job_and_cookies(job_with_cookies):
    storage, job, artifact = job_with_cookies

    with pytest.raises(UploadError):
        await upload_artifact(FakeUploader(fail=True), artifact, cleanup=partial(storage.release, job, artifact))

    assert not job.credential_path.exists()
    assert list(storage.scratch_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_upload_success_deletes_local_file(artifact):
    uploader = FakeUploader()
    issued = datetime.now(timezone.utc)

    result = await upload_artifact(uploader, artifact, cleanup=artifact.unlink)

    assert result.bucket == "test-bucket"
    assert result.object == "abc.mp3"
    assert uploader.uploads[0][0] == "abc.mp3"
    assert abs((result.expires_at - issued) - timedelta(minutes=15)) < timedelta(seconds=5)
    assert not artifact.exists()


@pytest.mark.asyncio
async def test_upload_failure_surfaces_and_loses_local_file(artifact):
    with pytest.raises(UploadError) as exc_info:
        await upload_artifact(FakeUploader(fail=True), artifact, cleanup=artifact.unlink)

    assert exc_info.value.status_code == 500
    assert exc_info.value.object_name == "abc.mp3"
    assert isinstance(exc_info.value.cause, ConnectionError)
    assert not artifact.exists()


def test_gcs_uploader_signs_v4_read_url(artifact):
    client = MagicMock()
    blob = client.bucket.return_value.blob.return_value
    blob.generate_signed_url.return_value = "https://storage.googleapis.com/b/abc.mp3?X-Goog-Signature=1"
    issued = datetime.now(timezone.utc)

    result = GCSUploader("b", client=client).upload(artifact, "abc.mp3")

    client.bucket.assert_called_with("b")
    client.bucket.return_value.blob.assert_called_with("abc.mp3")
    blob.upload_from_filename.assert_called_once_with(str(artifact))
    blob.generate_signed_url.assert_called_once_with(version="v4", method="GET", expiration=SIGNED_URL_TTL)
    assert result.url.endswith("X-Goog-Signature=1")
    assert SIGNED_URL_TTL == timedelta(minutes=15)
    assert abs((result.expires_at - issued) - SIGNED_URL_TTL) < timedelta(seconds=5)


def test_no_bucket_means_no_uploader():
    assert build_uploader(Settings()) is None
