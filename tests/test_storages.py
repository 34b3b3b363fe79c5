import json
import os
import typing as tp
from pathlib import Path

import pytest
import time_machine

from fetchcache import (
    AsyncFileStorage,
    AsyncInMemoryStorage,
    AsyncRedisStorage,
    IntegrityError,
    ResponseMetadata,
)
from fetchcache._utils import collect, make_async_iterator


def make_metadata(**overrides: tp.Any) -> ResponseMetadata:
    metadata = ResponseMetadata(
        url="https://example.com",
        status=200,
        status_text="OK",
        headers={"content-type": ["text/plain"], "set-cookie": ["a=1", "b=2"]},
        redirected=False,
        counter=0,
    )
    metadata.update(overrides)  # type: ignore[typeddict-item]
    return metadata


class FakeRedisPipeline:
    def __init__(self, client: "FakeRedis") -> None:
        self._client = client
        self._commands: tp.List[tp.Tuple[str, tp.Any, tp.Optional[int]]] = []

    async def __aenter__(self) -> "FakeRedisPipeline":
        return self

    async def __aexit__(self, *args: tp.Any) -> None:
        self._commands.clear()

    def set(self, key: str, value: tp.Any, px: tp.Optional[int] = None) -> None:
        self._commands.append((key, value, px))

    async def execute(self) -> tp.List[bool]:
        for key, value, px in self._commands:
            self._client.data[key] = value.encode("utf-8") if isinstance(value, str) else value
            self._client.expirations[key] = px
        return [True] * len(self._commands)


class FakeRedis:
    """Just enough of `redis.asyncio.Redis` for the storage."""

    def __init__(self) -> None:
        self.data: tp.Dict[str, bytes] = {}
        self.expirations: tp.Dict[str, tp.Optional[int]] = {}
        self.pipelines: tp.List[bool] = []

    def pipeline(self, transaction: bool = True) -> FakeRedisPipeline:
        self.pipelines.append(transaction)
        return FakeRedisPipeline(self)

    async def mget(self, *keys: str) -> tp.List[tp.Optional[bytes]]:
        return [self.data.get(key) for key in keys]

    async def delete(self, *keys: str) -> int:
        return sum(1 for key in keys if self.data.pop(key, None) is not None)


@pytest.mark.anyio
async def test_inmemorystorage():
    storage = AsyncInMemoryStorage()

    stored = await storage.set("key", make_async_iterator([b"te", b"st"]), make_metadata())

    assert await collect(stored.body_stream) == b"test"
    assert stored.metadata == make_metadata()

    entry = await storage.get("key")
    assert entry is not None
    assert await collect(entry.body_stream) == b"test"
    assert entry.metadata["headers"]["set-cookie"] == ["a=1", "b=2"]


@pytest.mark.anyio
async def test_inmemorystorage_missing_key():
    storage = AsyncInMemoryStorage()

    assert await storage.get("missing") is None


@pytest.mark.anyio
async def test_inmemorystorage_returns_copies():
    storage = AsyncInMemoryStorage()
    await storage.set("key", make_async_iterator([b"test"]), make_metadata())

    entry = await storage.get("key")
    assert entry is not None
    entry.metadata["headers"]["content-type"].append("mutated")

    entry = await storage.get("key")
    assert entry is not None
    assert entry.metadata["headers"]["content-type"] == ["text/plain"]


@pytest.mark.anyio
async def test_inmemorystorage_empty_body():
    storage = AsyncInMemoryStorage()

    await storage.set("key", make_async_iterator([]), make_metadata(status=204, status_text="No Content"))

    entry = await storage.get("key")
    assert entry is not None
    assert await collect(entry.body_stream) == b""
    assert entry.metadata["status"] == 204


@pytest.mark.anyio
async def test_inmemorystorage_remove_is_idempotent():
    storage = AsyncInMemoryStorage()
    await storage.set("key", make_async_iterator([b"test"]), make_metadata())

    await storage.remove("key")
    await storage.remove("key")

    assert await storage.get("key") is None
    assert len(storage) == 0


@pytest.mark.anyio
async def test_inmemorystorage_expired():
    storage = AsyncInMemoryStorage(ttl=1)

    with time_machine.travel("2026-01-01 00:00:00", tick=False) as traveller:
        await storage.set("key", make_async_iterator([b"test"]), make_metadata())
        assert await storage.get("key") is not None

        traveller.shift(2)

        assert await storage.get("key", ignore_expiration=True) is not None
        assert await storage.get("key") is None
        assert len(storage) == 0


@pytest.mark.anyio
async def test_inmemorystorage_sweeps_expired_entries():
    storage = AsyncInMemoryStorage(ttl=1, check_ttl_every=0)

    with time_machine.travel("2026-01-01 00:00:00", tick=False) as traveller:
        await storage.set("first", make_async_iterator([b"test"]), make_metadata())

        traveller.shift(2)

        await storage.set("second", make_async_iterator([b"test"]), make_metadata())

        assert len(storage) == 1
        assert await storage.get("second") is not None


@pytest.mark.anyio
async def test_filestorage(use_temp_dir):
    storage = AsyncFileStorage()

    stored = await storage.set("key", make_async_iterator([b"te", b"st"]), make_metadata())
    assert await collect(stored.body_stream) == b"test"

    entry = await storage.get("key")
    assert entry is not None
    assert await collect(entry.body_stream) == b"test"
    assert entry.metadata == make_metadata()

    assert Path(".cache/fetchcache/.gitignore").read_text() == "# Automatically created by fetchcache\n*"


@pytest.mark.anyio
async def test_filestorage_layout(tmp_path: Path):
    storage = AsyncFileStorage(base_path=tmp_path)

    await storage.set("key", make_async_iterator([b"test"]), make_metadata())

    record = json.loads((tmp_path / "index" / "key.json").read_text())
    assert (tmp_path / "content" / record["body_digest"]).read_bytes() == b"test"
    assert record["empty"] is False
    assert record["expiration"] is None


@pytest.mark.anyio
async def test_filestorage_shares_identical_bodies(tmp_path: Path):
    storage = AsyncFileStorage(base_path=tmp_path)

    await storage.set("first", make_async_iterator([b"test"]), make_metadata())
    await storage.set("second", make_async_iterator([b"test"]), make_metadata())

    assert len(os.listdir(tmp_path / "content")) == 1


@pytest.mark.anyio
async def test_filestorage_empty_body(tmp_path: Path):
    storage = AsyncFileStorage(base_path=tmp_path)

    await storage.set("key", make_async_iterator([]), make_metadata())

    entry = await storage.get("key")
    assert entry is not None
    assert await collect(entry.body_stream) == b""
    assert os.listdir(tmp_path / "content") == []


@pytest.mark.anyio
async def test_filestorage_missing_key(tmp_path: Path):
    storage = AsyncFileStorage(base_path=tmp_path)

    assert await storage.get("missing") is None


@pytest.mark.anyio
async def test_filestorage_missing_content(tmp_path: Path):
    storage = AsyncFileStorage(base_path=tmp_path)
    await storage.set("key", make_async_iterator([b"test"]), make_metadata())

    for name in os.listdir(tmp_path / "content"):
        os.unlink(tmp_path / "content" / name)

    assert await storage.get("key") is None


@pytest.mark.anyio
async def test_filestorage_detects_corrupted_content(tmp_path: Path):
    storage = AsyncFileStorage(base_path=tmp_path)
    await storage.set("key", make_async_iterator([b"test"]), make_metadata())

    record = json.loads((tmp_path / "index" / "key.json").read_text())
    (tmp_path / "content" / record["body_digest"]).write_bytes(b"tampered")

    entry = await storage.get("key")
    assert entry is not None
    with pytest.raises(IntegrityError):
        await collect(entry.body_stream)


@pytest.mark.anyio
async def test_filestorage_remove_is_idempotent(tmp_path: Path):
    storage = AsyncFileStorage(base_path=tmp_path)
    await storage.set("key", make_async_iterator([b"test"]), make_metadata())

    await storage.remove("key")
    await storage.remove("key")

    assert await storage.get("key") is None


@pytest.mark.anyio
async def test_filestorage_expired(tmp_path: Path):
    storage = AsyncFileStorage(base_path=tmp_path, ttl=1)

    with time_machine.travel("2026-01-01 00:00:00", tick=False) as traveller:
        await storage.set("key", make_async_iterator([b"test"]), make_metadata())
        assert await storage.get("key") is not None

        traveller.shift(2)

        assert await storage.get("key") is None
        entry = await storage.get("key", ignore_expiration=True)
        assert entry is not None
        assert await collect(entry.body_stream) == b"test"


@pytest.mark.anyio
async def test_filestorage_sweeps_expired_records(tmp_path: Path):
    storage = AsyncFileStorage(base_path=tmp_path, ttl=1, check_ttl_every=0)

    with time_machine.travel("2026-01-01 00:00:00", tick=False) as traveller:
        await storage.set("first", make_async_iterator([b"first"]), make_metadata())

        traveller.shift(2)

        await storage.set("second", make_async_iterator([b"second"]), make_metadata())

    assert sorted(os.listdir(tmp_path / "index")) == ["second.json"]


@pytest.mark.anyio
async def test_redisstorage():
    client = FakeRedis()
    storage = AsyncRedisStorage(client=client)  # type: ignore[arg-type]

    stored = await storage.set("key", make_async_iterator([b"te", b"st"]), make_metadata())
    assert await collect(stored.body_stream) == b"test"

    entry = await storage.get("key")
    assert entry is not None
    assert await collect(entry.body_stream) == b"test"
    assert entry.metadata == make_metadata()

    assert client.pipelines == [True]
    assert client.data["key"] == b"test"
    assert client.expirations == {"key": None, "key:meta": None}


@pytest.mark.anyio
async def test_redisstorage_ttl_is_passed_to_redis():
    client = FakeRedis()
    storage = AsyncRedisStorage(client=client, ttl=1.5)  # type: ignore[arg-type]

    await storage.set("key", make_async_iterator([b"test"]), make_metadata())

    assert client.expirations == {"key": 1500, "key:meta": 1500}


@pytest.mark.anyio
async def test_redisstorage_empty_body():
    client = FakeRedis()
    storage = AsyncRedisStorage(client=client)  # type: ignore[arg-type]

    await storage.set("key", make_async_iterator([]), make_metadata())

    entry = await storage.get("key")
    assert entry is not None
    assert await collect(entry.body_stream) == b""


@pytest.mark.anyio
async def test_redisstorage_missing_body():
    client = FakeRedis()
    storage = AsyncRedisStorage(client=client)  # type: ignore[arg-type]
    await storage.set("key", make_async_iterator([b"test"]), make_metadata())

    del client.data["key"]

    assert await storage.get("key") is None


@pytest.mark.anyio
async def test_redisstorage_remove_is_idempotent():
    client = FakeRedis()
    storage = AsyncRedisStorage(client=client)  # type: ignore[arg-type]
    await storage.set("key", make_async_iterator([b"test"]), make_metadata())

    await storage.remove("key")
    await storage.remove("key")

    assert await storage.get("key") is None
    assert client.data == {}


@pytest.mark.anyio
async def test_redisstorage_expired():
    client = FakeRedis()
    storage = AsyncRedisStorage(client=client, ttl=1)  # type: ignore[arg-type]

    with time_machine.travel("2026-01-01 00:00:00", tick=False) as traveller:
        await storage.set("key", make_async_iterator([b"test"]), make_metadata())

        traveller.shift(2)

        assert await storage.get("key") is None
        assert await storage.get("key", ignore_expiration=True) is not None


@pytest.mark.anyio
async def test_redisstorage_sub_millisecond_ttl_is_rounded_up():
    client = FakeRedis()
    storage = AsyncRedisStorage(client=client, ttl=0.0001)  # type: ignore[arg-type]

    await storage.set("key", make_async_iterator([b"test"]), make_metadata())

    assert client.expirations == {"key": 1, "key:meta": 1}
