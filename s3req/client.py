from __future__ import annotations

import http
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Required, Self, TypedDict, Unpack
from urllib.parse import quote, urlencode
from xml.sax.saxutils import escape as xml_escape

import jmespath

from .config import DEFAULT_REGION, S3Config
from .errors import S3DecodeError
from .pipeline import Pipeline, Response, Step
from .plugin import attach
from .signer import DEFAULT_EXPIRES, PresignedForm, presign_form, presign_url
from .url import s3_url
from .xml import DEFAULT_SHAPES

__all__ = (
    "PresignFormParams",
    "S3Bucket",
    "S3Object",
    "S3Session",
)


class S3Object(TypedDict, total=False):
    Key: Required[str]
    LastModified: str
    ETag: str
    Size: int
    StorageClass: str
    Owner: dict[str, str | None]


class S3Bucket(TypedDict, total=False):
    Name: Required[str]
    CreationDate: str


class PresignFormParams(TypedDict, total=False):
    content_type: str | None
    max_size: int | None
    # milliseconds
    expires_in: int


def _listing(resp: Response, root: str) -> dict[str, Any]:
    """Return the decoded `root` element of a listing response."""
    resp.raise_for_status()
    if not isinstance(resp.body, dict) or root not in resp.body:
        raise S3DecodeError(f"Expected a decoded <{root}> document, got {resp.body!r:.200}")
    return resp.body[root] or {}


def _as_list(value: Any) -> list:
    if value is None or (isinstance(value, str) and not value.strip()):
        return []
    return value if isinstance(value, list) else [value]


def _create_bucket_xml(region: str) -> str:
    return (
        '<CreateBucketConfiguration xmlns="http://s3.amazonaws.com/doc/2006-03-01/">'
        f"<LocationConstraint>{xml_escape(region)}</LocationConstraint>"
        "</CreateBucketConfiguration>"
    )


@dataclass
class S3Session:
    """
    Utility class that wraps an `s3://` aware Pipeline.

    Usage:
        async with S3Session(S3Config.from_env()) as s3:
            await s3.put_object('my-bucket', 'path/to/file.txt', b'content')
            content = await s3.get_object('my-bucket', 'path/to/file.txt')

        # With a custom pipeline (the s3 steps are attached if missing):
        async with S3Session(config, pipeline=Pipeline(session=my_session)) as s3:
            ...

    Without `config`, the config of an already attached pipeline is reused, otherwise it is loaded
    from the environment. Requests and presigned URLs always use the same config.
    """

    config: S3Config = None  # pyright: ignore[reportAssignmentType]
    pipeline: Pipeline = field(default_factory=Pipeline)

    def __post_init__(self):
        attached: S3Config | None = self.pipeline.options.get("s3_config")
        if self.config is None:
            self.config = attached if attached is not None else S3Config.from_env()
        if attached is not self.config or Step.NORMALIZE_S3_URL not in self.pipeline.request_steps:
            attach(self.pipeline, self.config, shapes=self.pipeline.options.get("s3_shapes") or DEFAULT_SHAPES)

    async def __aenter__(self) -> Self:
        await self.pipeline.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.pipeline.__aexit__(exc_type, exc_val, exc_tb)

    async def list_buckets(self) -> list[S3Bucket]:
        """List all buckets owned by the credentials."""
        result = _listing(await self.pipeline.get("s3://"), "ListAllMyBucketsResult")
        return _as_list(result.get("Buckets"))

    async def list_objects(
        self,
        bucket: str,
        prefix: str = "",
        *,
        search_query: str | None = None,
        max_items: int | None = None,
        page_size: int | None = None,
    ) -> AsyncIterator[S3Object]:
        """
        List the objects of a bucket with a given prefix, following continuation tokens.

        Use `search_query` for JMESPath filtering (e.g. "Contents[?Size > `100`][]"), `max_items`
        to limit total results and `page_size` to control items per request.
        """
        continuation_token: str | None = None
        items_yielded = 0

        while True:
            params = {"list-type": "2", "prefix": prefix}
            if continuation_token:
                params["continuation-token"] = continuation_token
            if page_size is not None:
                params["max-keys"] = str(page_size)

            # S3 signs the query with %20 and %2F, not + and /
            query = urlencode(params, quote_via=quote, safe="-_.~")
            resp = await self.pipeline.get(f"{s3_url(bucket)}?{query}")
            result = _listing(resp, "ListBucketResult")

            page_items: list[S3Object] = _as_list(result.get("Contents"))
            for item in page_items:
                if item.get("Size") is not None:
                    item["Size"] = int(item["Size"])

            if search_query:
                page_items = jmespath.search(search_query, {"Contents": page_items}) or []

            for item in page_items:
                if max_items is not None and items_yielded >= max_items:
                    return
                yield item
                items_yielded += 1

            continuation_token = result.get("NextContinuationToken")
            if result.get("IsTruncated") != "true" or not continuation_token:
                break

    async def list_versions(self, bucket: str) -> list[dict[str, Any]]:
        """List object versions (first page)."""
        result = _listing(await self.pipeline.get(f"{s3_url(bucket)}?versions"), "ListVersionsResult")
        return _as_list(result.get("Version"))

    async def create_bucket(self, bucket: str) -> Response:
        """Create a bucket in the configured region."""
        body = None
        if self.config.region != DEFAULT_REGION and not self.config.endpoint_url:
            body = _create_bucket_xml(self.config.region)
        return (await self.pipeline.put(s3_url(bucket), body=body)).raise_for_status()

    async def put_object(self, bucket: str, key: str, data: bytes, *, content_type: str | None = None) -> Response:
        """Upload an object."""
        headers = {"Content-Type": content_type} if content_type is not None else None
        return (await self.pipeline.put(s3_url(bucket, key), body=data, headers=headers)).raise_for_status()

    async def get_object(self, bucket: str, key: str) -> bytes | None:
        """Download an object, None if it does not exist."""
        resp = await self.pipeline.get(s3_url(bucket, key))
        if resp.status == http.HTTPStatus.NOT_FOUND:
            return None
        resp.raise_for_status()
        return resp.body

    async def delete_object(self, bucket: str, key: str) -> Response:
        """Delete an object."""
        return (await self.pipeline.delete(s3_url(bucket, key))).raise_for_status()

    def presign_url(self, bucket: str, key: str, *, method: str = "GET", expires: int = DEFAULT_EXPIRES) -> str:
        return presign_url(self.config, bucket=bucket, key=key, method=method, expires=expires)

    def presign_form(self, bucket: str, key: str, **kwargs: Unpack[PresignFormParams]) -> PresignedForm:
        return presign_form(self.config, bucket, key, **kwargs)
