# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Store, Envelope, Retry, and Job Runner Tests.
"""

import asyncio
import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from tablevault.backup.envelope import (
    ZSTD_MAGIC,
    build_envelope,
    compress_envelope,
    decode_envelope,
    encode_envelope,
    get_compression_stats,
    is_compressed,
    read_envelope,
)
from tablevault.exceptions import EnvelopeError, ObjectStoreError, StoreError
from tablevault.jobs import JobRunner
from tablevault.retry import call_with_retry
from tablevault.stores import LocalObjectStore, S3ObjectStore


# ============================================================================
# Local object store
# ============================================================================

@pytest.mark.asyncio
async def test_local_object_store_round_trip(temp_dir: Path):
    store = LocalObjectStore(temp_dir / "objects")

    await store.put("backups/a.json", b'{"ok": true}', "application/json")

    assert await store.exists("backups/a.json")
    assert await store.get("backups/a.json") == b'{"ok": true}'
    assert not (temp_dir / "objects" / "backups" / "a.json.tmp").exists()

    await store.delete("backups/a.json")
    assert not await store.exists("backups/a.json")

    # Deleting a missing object is not an error
    await store.delete("backups/a.json")


@pytest.mark.asyncio
async def test_local_object_store_errors(temp_dir: Path):
    store = LocalObjectStore(temp_dir / "objects")

    with pytest.raises(ObjectStoreError, match="Object not found"):
        await store.get("backups/missing.json")

    for path in ("../escape.json", "/etc/passwd", ""):
        with pytest.raises(ObjectStoreError, match="Unsafe object path"):
            await store.put(path, b"x", "application/json")


# ============================================================================
# S3 object store
# ============================================================================

def _mock_session(client):
    ctx = MagicMock()
    ctx.__aenter__ = AsyncMock(return_value=client)
    ctx.__aexit__ = AsyncMock(return_value=False)
    session = MagicMock()
    session.create_client.return_value = ctx
    return session


@pytest.mark.asyncio
async def test_s3_object_store_calls():
    client = AsyncMock()
    stream = MagicMock()
    stream.read = AsyncMock(return_value=b"payload")
    body = MagicMock()
    body.__aenter__ = AsyncMock(return_value=stream)
    body.__aexit__ = AsyncMock(return_value=False)
    client.get_object.return_value = {"Body": body}

    session = _mock_session(client)
    store = S3ObjectStore(
        "platform-backups",
        region="eu-west-1",
        endpoint_url="http://minio:9000",
        session=session,
    )

    await store.put("backups/a.json", b"payload", "application/json")
    client.put_object.assert_awaited_once_with(
        Bucket="platform-backups",
        Key="backups/a.json",
        Body=b"payload",
        ContentType="application/json",
    )

    assert await store.get("backups/a.json") == b"payload"
    client.get_object.assert_awaited_once_with(Bucket="platform-backups", Key="backups/a.json")

    await store.delete("backups/a.json")
    client.delete_object.assert_awaited_once_with(Bucket="platform-backups", Key="backups/a.json")

    session.create_client.assert_called_with(
        "s3", region_name="eu-west-1", endpoint_url="http://minio:9000"
    )


@pytest.mark.asyncio
async def test_s3_object_store_wraps_errors():
    client = AsyncMock()
    client.put_object.side_effect = RuntimeError("AccessDenied")
    store = S3ObjectStore("platform-backups", session=_mock_session(client))

    with pytest.raises(ObjectStoreError) as exc_info:
        await store.put("backups/a.json", b"x", "application/json")

    assert "AccessDenied" in str(exc_info.value)
    assert exc_info.value.details == {"bucket": "platform-backups", "key": "backups/a.json"}


# ============================================================================
# SQLite table store
# ============================================================================

@pytest.mark.asyncio
async def test_sqlite_table_store_operations(table_store):
    assert await table_store.count("posts") == 3
    assert len(await table_store.select("posts", 2)) == 2

    rows = await table_store.select("profiles", 10)
    assert rows[1] == {"id": 2, "username": "grace", "bio": None}

    await table_store.delete_all("posts")
    assert await table_store.count("posts") == 0

    await table_store.insert(
        "posts",
        [{"id": 7, "author_id": 1, "title": "Tags", "body": ["a", "b"]}],
    )
    rows = await table_store.select("posts", 10)
    assert json.loads(rows[0]["body"]) == ["a", "b"]


@pytest.mark.asyncio
async def test_sqlite_table_store_insert_is_atomic(table_store):
    """A failing row rolls back the whole insert."""
    rows = [
        {"id": 10, "post_id": 1, "body": "first"},
        {"id": 10, "post_id": 1, "body": "duplicate key"},
    ]

    with pytest.raises(StoreError):
        await table_store.insert("comments", rows)

    assert await table_store.count("comments") == 2


@pytest.mark.asyncio
async def test_sqlite_table_store_rejects_bad_names(table_store):
    with pytest.raises(StoreError, match="Invalid table name"):
        await table_store.select("posts; DROP TABLE posts", 1)

    with pytest.raises(StoreError, match="Invalid column name"):
        await table_store.insert("posts", [{"id; --": 1}])

    with pytest.raises(StoreError, match="Failed to select"):
        await table_store.select("missing_table", 1)


# ============================================================================
# Envelope
# ============================================================================

def test_envelope_encoding_handles_non_json_values():
    from datetime import datetime, UTC

    stamp = datetime(2026, 1, 1, tzinfo=UTC)
    raw = encode_envelope(build_envelope(["posts"], {"posts": [{"id": 1, "at": stamp}]}))

    envelope = decode_envelope(raw)
    assert envelope["version"] == "1.0"
    assert envelope["data"]["posts"][0]["at"] == str(stamp)


@pytest.mark.parametrize(
    "payload",
    [
        b"not json",
        b"[1, 2]",
        b'{"version": "2.0", "tables": [], "data": {}}',
        b'{"version": "1.0", "tables": "posts", "data": {}}',
        b'{"version": "1.0", "tables": [], "data": []}',
        b'{"version": "1.0", "tables": ["posts"], "data": {"posts": [1, 2]}}',
    ],
)
def test_decode_envelope_rejects_malformed(payload):
    with pytest.raises(EnvelopeError):
        decode_envelope(payload)


def test_decode_accepts_minor_versions():
    envelope = decode_envelope(b'{"version": "1.3", "tables": [], "data": {}}')
    assert envelope["version"] == "1.3"
    assert envelope["created_at"] == ""


@pytest.mark.asyncio
async def test_compressed_envelope_reads_back():
    raw = encode_envelope(build_envelope(["posts"], {"posts": [{"id": i} for i in range(200)]}))
    blob = await compress_envelope(raw)

    assert is_compressed(blob)
    assert not is_compressed(raw)
    assert len(blob) < len(raw)
    assert (await read_envelope(blob))["data"]["posts"][199] == {"id": 199}


@pytest.mark.asyncio
async def test_corrupt_compressed_envelope():
    with pytest.raises(EnvelopeError, match="Decompression failed"):
        await read_envelope(ZSTD_MAGIC + b"garbage")


def test_compression_stats():
    assert get_compression_stats(1000, 250) == {
        "compression_ratio": 4.0,
        "space_saved_percent": 75.0,
    }
    assert get_compression_stats(10, 0) == {"compression_ratio": 0, "space_saved_percent": 0}


# ============================================================================
# Retry
# ============================================================================

@pytest.mark.asyncio
async def test_call_with_retry_recovers():
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError("reset")
        return "ok"

    result = await call_with_retry(flaky, name="flaky", attempts=3, backoff_seconds=0)

    assert result == "ok"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_call_with_retry_gives_up():
    calls = []

    async def broken():
        calls.append(1)
        raise ConnectionError("reset")

    with pytest.raises(ConnectionError):
        await call_with_retry(broken, name="broken", attempts=2, backoff_seconds=0)

    assert len(calls) == 2


@pytest.mark.asyncio
async def test_call_with_retry_times_out_each_attempt():
    async def hang():
        await asyncio.sleep(5)

    with pytest.raises(TimeoutError):
        await call_with_retry(hang, name="hang", attempts=1, timeout_seconds=0.05)


# ============================================================================
# Job runner
# ============================================================================

@pytest.mark.asyncio
async def test_job_runner_tracks_jobs():
    runner = JobRunner()
    gate = asyncio.Event()

    async def job():
        await gate.wait()
        return 42

    handle = runner.spawn("export", "rec-1", job())
    assert runner.get("rec-1") is handle
    assert runner.active() == [handle]

    gate.set()
    assert await handle.wait() == 42
    assert handle.done()
    assert handle.exception() is None
    assert runner.cancel("rec-1") is False
    assert runner.forget_finished() == 1
    assert runner.get("rec-1") is None


@pytest.mark.asyncio
async def test_job_runner_failures_and_shutdown():
    runner = JobRunner()

    async def fails():
        raise ValueError("bad row")

    async def forever():
        await asyncio.sleep(60)

    failing = runner.spawn("restore", "rec-1", fails())
    with pytest.raises(ValueError):
        await failing.wait()
    assert isinstance(failing.exception(), ValueError)

    sleeping = runner.spawn("restore", "rec-2", forever())
    await asyncio.sleep(0)
    await runner.shutdown(timeout=1.0)

    assert sleeping.cancelled()
    assert runner.active() == []


@pytest.mark.asyncio
async def test_job_runner_releases_old_finished_handles():
    runner = JobRunner(keep_finished=2)

    async def job(n):
        return n

    handles = [runner.spawn("export", f"rec-{n}", job(n)) for n in range(5)]
    for handle in handles:
        await handle.wait()
    await asyncio.sleep(0)

    assert len(runner) == 2
    assert runner.get("rec-0") is None
    assert runner.get("rec-2") is None
    assert runner.get("rec-3") is handles[3]
    assert runner.get("rec-4") is handles[4]
    assert runner.active() == []
