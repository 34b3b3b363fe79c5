import os
import typing as tp

import anyio
import httpx
import pytest


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def use_temp_dir(tmpdir):
    cur_dir = os.getcwd()
    os.chdir(tmpdir)
    yield
    os.chdir(cur_dir)


class CountingHandler:
    """
    A `httpx.MockTransport` handler that replays responses and remembers the
    requests it has seen.
    """

    def __init__(self, *responses: httpx.Response, delay: float = 0) -> None:
        self.responses = list(responses)
        self.requests: tp.List[httpx.Request] = []
        self.delay = delay

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        await request.aread()
        self.requests.append(request)
        if self.delay:
            await anyio.sleep(self.delay)
        if not self.responses:
            raise RuntimeError("No more mocked responses available")
        return self.responses.pop(0)

    @property
    def calls(self) -> int:
        return len(self.requests)
