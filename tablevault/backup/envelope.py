# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
TableVault Envelope - Encoding, compression, and validation of backup blobs.

Wire format (version 1.0):

    {
        "version": "1.0",
        "created_at": "<ISO 8601>",
        "tables": ["profiles", "posts", ...],
        "data": {"profiles": [{...}, ...], "posts": [...]}
    }

Blobs are plain UTF-8 JSON or a zstd frame wrapping it. Decoding checks
the zstd frame magic, so readers never need to know how a blob was written.
"""

import asyncio
import json
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, UTC
from typing import Any, Dict, List, TypedDict

import structlog
import zstandard as zstd

from tablevault.exceptions import EnvelopeError
from tablevault.stores.base import Row

logger = structlog.get_logger()

# Thread pool for CPU-bound compression of large envelopes
_executor = ThreadPoolExecutor(max_workers=2)

ENVELOPE_VERSION = "1.0"
ZSTD_MAGIC = b"\x28\xb5\x2f\xfd"
DEFAULT_ZSTD_LEVEL = 9
CONTENT_TYPE = "application/json"
COMPRESSED_CONTENT_TYPE = "application/zstd"

# Data above this size is (de)compressed off the event loop
_OFFLOAD_THRESHOLD = 1024 * 1024


class Envelope(TypedDict):
    """Self-describing backup blob."""

    version: str
    created_at: str
    tables: List[str]
    data: Dict[str, List[Row]]


def build_envelope(
    tables: List[str],
    data: Dict[str, List[Row]],
    created_at: str | None = None,
) -> Envelope:
    """
    Build an envelope for captured tables.

    Args:
        tables: Tables captured, in export order
        data: Rows per captured table
        created_at: Envelope timestamp (default: now)
    """
    return Envelope(
        version=ENVELOPE_VERSION,
        created_at=created_at or datetime.now(UTC).isoformat(),
        tables=list(tables),
        data=data,
    )


def encode_envelope(envelope: Envelope) -> bytes:
    """
    Serialize an envelope to UTF-8 JSON.

    Values JSON cannot represent natively (datetimes, decimals, UUIDs)
    are written as strings.
    """
    return json.dumps(envelope, default=str).encode("utf-8")


def is_compressed(blob: bytes) -> bool:
    """True if the blob starts with a zstd frame header."""
    return blob[:4] == ZSTD_MAGIC


async def compress_envelope(raw: bytes, level: int = DEFAULT_ZSTD_LEVEL) -> bytes:
    """
    Compress an encoded envelope with zstd.

    Raises:
        EnvelopeError: If compression fails
    """
    try:
        if len(raw) > _OFFLOAD_THRESHOLD:
            loop = asyncio.get_running_loop()
            compressed = await loop.run_in_executor(_executor, _compress_sync, raw, level)
        else:
            compressed = _compress_sync(raw, level)
    except Exception as e:
        raise EnvelopeError(
            f"Compression failed: {e}",
            details={"original_size": len(raw)},
        )

    ratio = len(raw) / len(compressed) if compressed else 0
    logger.debug(
        "envelope_compressed",
        original_size=len(raw),
        compressed_size=len(compressed),
        compression_ratio=f"{ratio:.2f}x",
    )
    return compressed


async def decompress_envelope(blob: bytes) -> bytes:
    """
    Return the plain JSON bytes of a blob, decompressing zstd frames.

    Raises:
        EnvelopeError: If the blob is a corrupt zstd frame
    """
    if not is_compressed(blob):
        return blob

    try:
        if len(blob) > _OFFLOAD_THRESHOLD:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(_executor, _decompress_sync, blob)
        return _decompress_sync(blob)
    except Exception as e:
        raise EnvelopeError(f"Decompression failed: {e}", details={"size": len(blob)})


def _compress_sync(data: bytes, level: int) -> bytes:
    cctx = zstd.ZstdCompressor(level=level)
    return cctx.compress(data)


def _decompress_sync(data: bytes) -> bytes:
    # Streaming reader handles frames written without a content size
    dctx = zstd.ZstdDecompressor()
    with dctx.stream_reader(data) as reader:
        return reader.read()


def decode_envelope(raw: bytes) -> Envelope:
    """
    Parse and validate plain envelope JSON.

    Raises:
        EnvelopeError: If the payload is not a valid version 1 envelope
    """
    try:
        payload: Any = json.loads(raw)
    except (UnicodeDecodeError, ValueError) as e:
        raise EnvelopeError(f"Backup is not valid JSON: {e}")

    if not isinstance(payload, dict):
        raise EnvelopeError("Backup envelope must be a JSON object")

    version = payload.get("version")
    if not isinstance(version, str) or version.split(".")[0] != ENVELOPE_VERSION.split(".")[0]:
        raise EnvelopeError(
            f"Unsupported envelope version: {version!r}",
            details={"supported": ENVELOPE_VERSION},
        )

    tables = payload.get("tables")
    if not isinstance(tables, list) or not all(isinstance(t, str) for t in tables):
        raise EnvelopeError("Envelope 'tables' must be a list of table names")

    data = payload.get("data")
    if not isinstance(data, dict):
        raise EnvelopeError("Envelope 'data' must be an object")

    for table, rows in data.items():
        if not isinstance(rows, list) or not all(isinstance(r, dict) for r in rows):
            raise EnvelopeError(
                f"Envelope data for {table!r} must be a list of rows",
                details={"table": table},
            )

    return Envelope(
        version=version,
        created_at=str(payload.get("created_at", "")),
        tables=tables,
        data=data,
    )


async def read_envelope(blob: bytes) -> Envelope:
    """Decompress (if needed) and decode a stored blob."""
    return decode_envelope(await decompress_envelope(blob))


def get_compression_stats(original_size: int, compressed_size: int) -> dict:
    """
    Calculate compression statistics.

    Args:
        original_size: Encoded envelope size in bytes
        compressed_size: Stored blob size in bytes
    """
    if compressed_size == 0:
        return {"compression_ratio": 0, "space_saved_percent": 0}

    ratio = original_size / compressed_size
    saved = original_size - compressed_size
    saved_percent = (saved / original_size) * 100 if original_size > 0 else 0

    return {
        "compression_ratio": round(ratio, 2),
        "space_saved_percent": round(saved_percent, 2),
    }
