from __future__ import annotations

import hashlib
import http
import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Awaitable, Callable, Self

import niquests
from botocore.auth import S3SigV4Auth, SigV4Auth
from botocore.awsrequest import AWSRequest
from botocore.credentials import Credentials
from niquests.structures import CaseInsensitiveDict

from ._version import __version__
from .config import DEFAULT_REGION
from .errors import S3ConfigError, S3ResponseError
from .url import encode_url_path

__all__ = (
    "Pipeline",
    "Request",
    "RequestStep",
    "Response",
    "ResponseStep",
    "Step",
    "Steps",
    "Transport",
    "niquests_transport",
    "put_aws_sigv4",
    "put_user_agent",
)

logger = logging.getLogger(__name__)

USER_AGENT = f"s3req/{__version__}"


class Step(StrEnum):
    """Well-known pipeline steps, usable as insertion points."""

    PUT_USER_AGENT = "put_user_agent"
    NORMALIZE_S3_URL = "normalize_s3_url"
    PUT_AWS_SIGV4 = "put_aws_sigv4"
    DECODE_S3_BODY = "decode_s3_body"


class Steps[F]:
    """
    Ordered, named steps.

    Each `Step` appears at most once: registering a name again replaces the step in place.
    """

    def __init__(self, steps: Mapping[Step, F] | None = None):
        self._steps: list[tuple[Step, F]] = list((steps or {}).items())

    def __iter__(self) -> Iterator[tuple[Step, F]]:
        return iter(list(self._steps))

    def __len__(self) -> int:
        return len(self._steps)

    def __contains__(self, name: object) -> bool:
        return any(n == name for n, _ in self._steps)

    def __repr__(self) -> str:
        return f"Steps({[str(n) for n in self.names()]})"

    def names(self) -> list[Step]:
        return [n for n, _ in self._steps]

    def copy(self) -> Steps[F]:
        steps: Steps[F] = Steps()
        steps._steps = list(self._steps)
        return steps

    def _index(self, name: Step) -> int | None:
        return next((i for i, (n, _) in enumerate(self._steps) if n == name), None)

    def _set(self, index: int, name: Step, fn: F) -> Self:
        if (existing := self._index(name)) is not None:
            self._steps[existing] = (name, fn)
        else:
            self._steps.insert(index, (name, fn))
        return self

    def append(self, name: Step, fn: F) -> Self:
        return self._set(len(self._steps), name, fn)

    def prepend(self, name: Step, fn: F) -> Self:
        return self._set(0, name, fn)

    def insert_before(self, anchor: Step, name: Step, fn: F) -> Self:
        index = self._index(anchor)
        if index is None:
            raise S3ConfigError(f"Unknown step {anchor!r}, available: {[str(n) for n in self.names()]}")
        return self._set(index, name, fn)

    def replace(self, name: Step, fn: F) -> Self:
        if (index := self._index(name)) is None:
            raise S3ConfigError(f"Unknown step {name!r}, available: {[str(n) for n in self.names()]}")
        self._steps[index] = (name, fn)
        return self

    def remove(self, name: Step) -> Self:
        self._steps = [(n, f) for n, f in self._steps if n != name]
        return self


@dataclass
class Request:
    method: str
    url: str
    headers: CaseInsensitiveDict = field(default_factory=CaseInsensitiveDict)
    body: bytes | None = None
    options: dict[str, Any] = field(default_factory=dict)
    response_steps: Steps = field(default_factory=Steps)


@dataclass
class Response:
    status: int
    headers: CaseInsensitiveDict = field(default_factory=CaseInsensitiveDict)
    # Raw bytes, or the decoded XML tree once DECODE_S3_BODY ran
    body: Any = b""
    # "objects" or "buckets" when the body was decoded as a listing
    s3_listing: str | None = None

    @property
    def content_type(self) -> str | None:
        value = self.headers.get("Content-Type")
        return value.split(";", 1)[0].strip().lower() if value else None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def raise_for_status(self) -> Self:
        if not self.ok:
            try:
                reason = http.HTTPStatus(self.status).phrase
            except ValueError:
                reason = "Unknown"
            raise S3ResponseError(f"{self.status} {reason}", self.status, self.body)
        return self


type RequestStep = Callable[[Request], None]
type ResponseStep = Callable[[Request, Response], Response]
type Transport = Callable[[Request], Awaitable[Response]]


def put_user_agent(request: Request) -> None:
    request.headers.setdefault("User-Agent", USER_AGENT)


def put_aws_sigv4(request: Request) -> None:
    """
    Sign the request headers when `options["aws_sigv4"]` is set.

    Expects `access_key_id` and `secret_access_key` keys, `region` and `service` are optional.
    """
    sigv4 = request.options.get("aws_sigv4")
    if not sigv4:
        return
    for name in ("access_key_id", "secret_access_key"):
        if sigv4.get(name) is None:
            raise S3ConfigError(f"aws_sigv4 option is missing {name!r}")
    credentials = Credentials(sigv4["access_key_id"], sigv4["secret_access_key"])

    service = sigv4.get("service", "s3")
    # S3 signs the path exactly as sent
    request.url = encode_url_path(request.url)
    body = request.body or b""
    aws_request = AWSRequest(method=request.method, url=request.url, data=body, headers=dict(request.headers))
    aws_request.headers["x-amz-content-sha256"] = hashlib.sha256(body).hexdigest()
    auth_cls = S3SigV4Auth if service == "s3" else SigV4Auth
    auth_cls(credentials, service, sigv4.get("region") or DEFAULT_REGION).add_auth(aws_request)
    request.headers = CaseInsensitiveDict(dict(aws_request.headers))


def niquests_transport(session: niquests.AsyncSession) -> Transport:
    async def _send(request: Request) -> Response:
        resp = await session.request(request.method, request.url, headers=dict(request.headers), data=request.body)
        return Response(
            status=resp.status_code or 0,
            headers=CaseInsensitiveDict(dict(resp.headers)),
            body=resp.content or b"",
        )

    return _send


def _default_request_steps() -> Steps[RequestStep]:
    return Steps({Step.PUT_USER_AGENT: put_user_agent, Step.PUT_AWS_SIGV4: put_aws_sigv4})


@dataclass
class Pipeline:
    """
    Ordered request/response steps around an async HTTP transport.

    Usage:
        async with attach(Pipeline(), S3Config.from_env()) as pipeline:
            resp = await pipeline.get("s3://my-bucket")
            print(resp.body["ListBucketResult"]["Contents"])

    Request steps run in order and may mutate the request (and register per-request response
    steps in `request.response_steps`); response steps run in order on the transport's response.
    """

    session: niquests.AsyncSession = field(default_factory=niquests.AsyncSession)
    options: dict[str, Any] = field(default_factory=dict)
    request_steps: Steps[RequestStep] = field(default_factory=_default_request_steps)
    response_steps: Steps[ResponseStep] = field(default_factory=Steps)
    transport: Transport | None = None

    async def __aenter__(self) -> Self:
        await self.session.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.session.__aexit__(exc_type, exc_val, exc_tb)

    async def aclose(self) -> None:
        """Close the underlying session."""
        await self.session.close()

    def build_request(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        body: bytes | str | None = None,
        **options,
    ) -> Request:
        return Request(
            method=method.upper(),
            url=url,
            headers=CaseInsensitiveDict(dict(headers or {})),
            body=body.encode("utf-8") if isinstance(body, str) else body,
            options={**self.options, **options},
            response_steps=self.response_steps.copy(),
        )

    def prepare(self, request: Request) -> Request:
        """Run the request steps, without sending anything."""
        for name, step in self.request_steps:
            step(request)
        return request

    async def send(self, request: Request) -> Response:
        self.prepare(request)
        transport = self.transport or niquests_transport(self.session)
        response = await transport(request)
        logger.debug(f"{request.method} {request.url.split('?', 1)[0]} -> {response.status}")
        for name, step in request.response_steps:
            response = step(request, response)
        return response

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        body: bytes | str | None = None,
        **options,
    ) -> Response:
        return await self.send(self.build_request(method, url, headers=headers, body=body, **options))

    async def get(self, url: str, **kwargs) -> Response:
        return await self.request("GET", url, **kwargs)

    async def head(self, url: str, **kwargs) -> Response:
        return await self.request("HEAD", url, **kwargs)

    async def put(self, url: str, **kwargs) -> Response:
        return await self.request("PUT", url, **kwargs)

    async def post(self, url: str, **kwargs) -> Response:
        return await self.request("POST", url, **kwargs)

    async def delete(self, url: str, **kwargs) -> Response:
        return await self.request("DELETE", url, **kwargs)
