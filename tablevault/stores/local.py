# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Local filesystem object store.

Objects are files under a root directory. Writes are atomic
(write to temp, then rename) so readers never see partial envelopes.
"""

import os
from pathlib import Path

import aiofiles
import structlog

from tablevault.exceptions import ObjectStoreError

logger = structlog.get_logger()


class LocalObjectStore:
    """``ObjectStore`` backed by a directory tree."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        """Map an object path to a file under the root, rejecting traversal."""
        if not path or path.startswith("/") or ".." in Path(path).parts:
            raise ObjectStoreError(
                f"Unsafe object path: {path}",
                details={"path": path},
            )
        return self.root / path

    async def put(self, path: str, data: bytes, content_type: str) -> None:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            temp_path = target.with_name(target.name + ".tmp")

            async with aiofiles.open(temp_path, "wb") as f:
                await f.write(data)

            os.replace(temp_path, target)

            logger.debug(
                "object_written",
                path=path,
                size=len(data),
                content_type=content_type,
            )

        except Exception as e:
            raise ObjectStoreError(
                f"Failed to write object: {e}",
                details={"path": path},
            )

    async def get(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            async with aiofiles.open(target, "rb") as f:
                return await f.read()
        except FileNotFoundError:
            raise ObjectStoreError(
                f"Object not found: {path}",
                details={"path": path},
            )
        except Exception as e:
            raise ObjectStoreError(
                f"Failed to read object: {e}",
                details={"path": path},
            )

    async def delete(self, path: str) -> None:
        target = self._resolve(path)
        try:
            target.unlink(missing_ok=True)
            logger.debug("object_deleted", path=path)
        except Exception as e:
            raise ObjectStoreError(
                f"Failed to delete object: {e}",
                details={"path": path},
            )

    async def exists(self, path: str) -> bool:
        return self._resolve(path).exists()

    async def close(self) -> None:
        return None
