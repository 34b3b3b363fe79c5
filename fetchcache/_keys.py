from __future__ import annotations

import hashlib
import io
import json
import typing as tp

import httpx

from ._exceptions import UnsupportedBodyError
from ._headers import normalize_headers
from ._models import FetchInit, FetchResource, FormData

__all__ = ("CACHE_VERSION", "calculate_cache_key")

# Bump whenever the key derivation below changes, so stale keys stop matching.
CACHE_VERSION = 6

NON_IDENTITY_INIT_FIELDS = ("timeout", "extensions")

SUPPORTED_BODY_TYPES = "str, bytes, bytearray, memoryview, httpx.QueryParams, file objects, FormData, None"


def _digest(data: bytes) -> str:
    try:
        return hashlib.blake2b(data, digest_size=16).hexdigest()
    except AttributeError:
        # FIPS builds may not provide blake2b
        return hashlib.sha256(data).hexdigest()


def _bytes_to_str(data: bytes) -> str:
    return data.decode("utf-8", errors="surrogateescape")


def _file_identity(file: tp.Any) -> str:
    name = getattr(file, "name", None)
    if name is None:
        raise UnsupportedBodyError("File bodies must have a `name` pointing at their source path")
    return str(name)


def _file_field_key_json(file: tp.Any) -> tp.Any:
    if isinstance(file, tuple):
        filename, content, *rest = file
        return {
            "filename": filename,
            "content": _file_field_key_json(content),
            "content_type": rest[0] if rest else None,
        }
    if isinstance(file, str):
        return file
    if isinstance(file, (bytes, bytearray, memoryview)):
        return _bytes_to_str(bytes(file))
    if isinstance(file, io.IOBase):
        return _file_identity(file)
    raise UnsupportedBodyError(f"Unsupported file type in FormData: {type(file).__name__}")


def _form_data_key_json(form: FormData) -> tp.Dict[str, tp.Any]:
    return {
        "type": "FormData",
        "entries": [[name, value] for name, value in form.fields]
        + [[name, _file_field_key_json(file)] for name, file in form.files],
    }


def body_key_json(body: tp.Any) -> tp.Union[None, str, tp.Dict[str, tp.Any]]:
    """
    Reduces a request body to a JSON-able value that identifies it.

    Files contribute their path rather than their content, and multipart
    forms contribute their fields, never their boundary.
    """
    if not body:
        return None

    if isinstance(body, str):
        return body

    if isinstance(body, httpx.QueryParams):
        return str(body)

    if isinstance(body, io.IOBase):
        return _file_identity(body)

    if isinstance(body, FormData):
        return _form_data_key_json(body)

    if isinstance(body, (bytes, bytearray, memoryview)):
        return _bytes_to_str(bytes(body))

    raise UnsupportedBodyError(
        f"Unsupported body type {type(body).__name__!r}. Supported body types are: {SUPPORTED_BODY_TYPES}"
    )


def _multipart_boundary(content_type: tp.Optional[str]) -> tp.Optional[str]:
    if not content_type or not content_type.lower().startswith("multipart/"):
        return None
    for param in content_type.split(";")[1:]:
        name, _, value = param.strip().partition("=")
        if name.lower() == "boundary" and value:
            return value.strip('"')
    return None


async def _request_key_json(request: httpx.Request) -> tp.Dict[str, tp.Any]:
    body = await request.aread()
    headers = normalize_headers(request.headers)

    boundary = _multipart_boundary(request.headers.get("content-type"))
    if boundary is not None:
        body = body.replace(boundary.encode("latin-1"), b"")
        headers = [[key, value.replace(boundary, "")] for key, value in headers]

    return {
        "headers": headers,
        "method": request.method,
        "url": str(request.url),
        "body": body_key_json(body),
    }


def _init_key_json(init: tp.Optional[FetchInit]) -> tp.Dict[str, tp.Any]:
    init_key_json: tp.Dict[str, tp.Any] = {"body": None}
    init_key_json.update({key: value for key, value in (init or {}).items() if key not in NON_IDENTITY_INIT_FIELDS})

    init_key_json["headers"] = normalize_headers(init_key_json.get("headers"))
    init_key_json["body"] = body_key_json(init_key_json["body"])
    if init_key_json.get("params") is not None:
        init_key_json["params"] = str(httpx.QueryParams(init_key_json["params"]))
    return init_key_json


async def calculate_cache_key(resource: FetchResource, init: tp.Optional[FetchInit] = None) -> str:
    """
    Computes the cache key of a request.

    The key is a digest over the normalized request description together
    with `CACHE_VERSION`. Requests differing only by header order, by the
    `only-if-cached` directive or by multipart boundary share a key.

    :param resource: An URL or an `httpx.Request`
    :type resource: tp.Union[str, httpx.Request]
    :param init: Extra request options, defaults to None
    :type init: tp.Optional[FetchInit], optional
    :raises UnsupportedBodyError: When the body can not be turned into a key
    :return: A hex digest
    :rtype: str
    """
    if isinstance(resource, httpx.Request):
        resource_key_json = await _request_key_json(resource)
    else:
        resource_key_json = {"url": resource, "body": None}

    serialized = json.dumps(
        [resource_key_json, _init_key_json(init), CACHE_VERSION],
        sort_keys=True,
    )
    return _digest(serialized.encode("utf-8"))
