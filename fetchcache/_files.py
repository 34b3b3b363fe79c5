from __future__ import annotations

import hashlib
import os
import typing as tp
import uuid

import anyio

from ._exceptions import IntegrityError

CHUNK_SIZE = 64 * 1024


class AsyncFileManager:
    """
    Small set of file primitives used by the filesystem storage.

    Every write goes to a temporary sibling first and is then moved in place
    with `os.replace`, so readers observe either the old file or the new one.
    """

    def __init__(self, chunk_size: int = CHUNK_SIZE) -> None:
        self.chunk_size = chunk_size

    async def write_to(self, path: str, data: bytes) -> None:
        tmp_path = self._tmp_path(path)
        try:
            async with await anyio.open_file(tmp_path, "wb") as f:
                await f.write(data)
            os.replace(tmp_path, path)
        except BaseException:
            self._discard(tmp_path)
            raise

    async def write_content(self, directory: str, stream: tp.AsyncIterable[bytes]) -> tp.Tuple[str, int]:
        """
        Drains `stream` into `directory`, naming the file after its sha256 digest.

        Nothing is kept for an empty stream.

        :return: The sha256 hex digest of the written bytes and their size.
        """
        tmp_path = self._tmp_path(os.path.join(directory, "incoming"))
        hasher = hashlib.sha256()
        size = 0
        try:
            async with await anyio.open_file(tmp_path, "wb") as f:
                async for chunk in stream:
                    hasher.update(chunk)
                    size += len(chunk)
                    await f.write(chunk)
            digest = hasher.hexdigest()
            if size == 0:
                self._discard(tmp_path)
            else:
                os.replace(tmp_path, os.path.join(directory, digest))
        except BaseException:
            self._discard(tmp_path)
            raise
        return digest, size

    async def read_from(self, path: str) -> bytes:
        async with await anyio.open_file(path, "rb") as f:
            return tp.cast(bytes, await f.read())

    async def open_stream(self, path: str, expected_digest: tp.Optional[str] = None) -> tp.AsyncIterator[bytes]:
        """
        Opens `path` right away and returns an iterator over its chunks.

        The file is opened eagerly so that a concurrent replace or removal
        cannot change what the returned iterator yields.
        """
        f = await anyio.open_file(path, "rb")
        return self._iter_file(f, path, expected_digest)

    async def _iter_file(
        self,
        f: anyio.AsyncFile[bytes],
        path: str,
        expected_digest: tp.Optional[str],
    ) -> tp.AsyncIterator[bytes]:
        hasher = hashlib.sha256()
        try:
            while True:
                chunk = await f.read(self.chunk_size)
                if not chunk:
                    break
                hasher.update(chunk)
                yield chunk
        finally:
            await f.aclose()

        if expected_digest is not None and hasher.hexdigest() != expected_digest:
            raise IntegrityError(f"Integrity check failed for {path!r}")

    def remove(self, path: str) -> None:
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass

    def _tmp_path(self, path: str) -> str:
        return f"{path}.{uuid.uuid4().hex}.tmp"

    def _discard(self, tmp_path: str) -> None:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:  # pragma: no cover
            pass
