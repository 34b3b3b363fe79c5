from __future__ import annotations

import io
import typing as tp
from typing import AsyncIterator, Awaitable, Callable, Dict, List, NamedTuple, TypedDict, Union

import httpx

if tp.TYPE_CHECKING:  # pragma: no cover
    from typing_extensions import TypeAlias

    from ._storages import AsyncBaseStorage
    from ._synchronization import AsyncKeyedLock

__all__ = (
    "BodyTypes",
    "CacheKeyCalculator",
    "CacheStrategy",
    "FetchInit",
    "FetchOptions",
    "FetchResource",
    "FormData",
    "ResponseMetadata",
    "StoredEntry",
)


class ResponseMetadata(TypedDict):
    url: str
    status: int
    status_text: str
    headers: Dict[str, List[str]]
    """Lower-cased header name to every value it was sent with, in order."""
    redirected: bool
    counter: int
    """Number of redirects that were followed to produce the response."""


class StoredEntry(NamedTuple):
    body_stream: AsyncIterator[bytes]
    metadata: ResponseMetadata


FileContent = Union[bytes, str, io.IOBase]
FileField = Union[
    FileContent,
    tp.Tuple[tp.Optional[str], FileContent],
    tp.Tuple[tp.Optional[str], FileContent, tp.Optional[str]],
]


class FormData:
    """
    A multipart/form-data body.

    The multipart boundary is chosen by httpx when the request is built, so
    two `FormData` objects with the same fields always describe the same
    request, no matter which boundary ends up on the wire.

    Example:
        ```
        form = FormData()
        form.append("name", "value")
        form.append_file("upload", ("report.csv", b"a,b\\n1,2", "text/csv"))
        ```
    """

    def __init__(self) -> None:
        self._fields: List[tp.Tuple[str, str]] = []
        self._files: List[tp.Tuple[str, FileField]] = []

    def append(self, name: str, value: str) -> None:
        self._fields.append((name, value))

    def append_file(self, name: str, file: FileField) -> None:
        self._files.append((name, file))

    @property
    def fields(self) -> List[tp.Tuple[str, str]]:
        return list(self._fields)

    @property
    def files(self) -> List[tp.Tuple[str, FileField]]:
        return list(self._files)

    def to_httpx(self) -> List[tp.Tuple[str, tp.Any]]:
        """
        Returns the `files` argument for `httpx.AsyncClient.build_request`.

        Plain fields are sent as file parts without a filename, which keeps the
        body multipart even when the form has no files.
        """
        return [(name, (None, value)) for name, value in self._fields] + list(self._files)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} fields={len(self._fields)} files={len(self._files)}>"


BodyTypes = Union[None, str, bytes, bytearray, memoryview, httpx.QueryParams, io.IOBase, FormData]


class FetchInit(TypedDict, total=False):
    method: str
    headers: tp.Union[httpx.Headers, tp.Mapping[str, str], tp.Sequence[tp.Tuple[str, str]]]
    body: BodyTypes
    params: tp.Union[httpx.QueryParams, tp.Mapping[str, tp.Any], str]
    follow_redirects: bool
    timeout: tp.Any
    """Passed to the transport, never part of the cache key."""
    extensions: Dict[str, tp.Any]
    """Passed to the transport, never part of the cache key."""


FetchResource: TypeAlias = Union[str, httpx.Request]
CacheStrategy: TypeAlias = Callable[[tp.Any], Union[bool, Awaitable[bool]]]
CacheKeyCalculator: TypeAlias = Callable[[FetchResource, tp.Optional[FetchInit]], Union[str, Awaitable[str]]]


class FetchOptions(TypedDict, total=False):
    storage: AsyncBaseStorage
    calculate_cache_key: CacheKeyCalculator
    should_cache_response: CacheStrategy
    synchronizer: AsyncKeyedLock
