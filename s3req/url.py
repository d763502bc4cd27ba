from __future__ import annotations

import logging
import re
from typing import NamedTuple
from urllib.parse import SplitResult, quote, urlsplit, urlunsplit

__all__ = (
    "S3_HOST",
    "S3_SCHEME",
    "NormalizedURL",
    "bucket_url",
    "encode_path",
    "encode_url_path",
    "is_aws_host",
    "normalize_url",
    "s3_url",
)

logger = logging.getLogger(__name__)

S3_SCHEME = "s3"
S3_HOST = "s3.amazonaws.com"

# bucket.s3.amazonaws.com, s3.eu-west-3.amazonaws.com, bucket.s3-us-west-2.amazonaws.com,
# s3.dualstack.us-east-1.amazonaws.com, s3-accelerate.amazonaws.com, *.amazonaws.com.cn
# The bucket is everything before the last matching s3 label: my.s3.bucket.s3.amazonaws.com
_AWS_HOST_RE = re.compile(r"^(?:(?P<bucket>.+)\.)?s3(?:[.-][a-z0-9-]+)*?\.amazonaws\.com(?:\.cn)?$")

# "%" not starting an escape sequence
_LONE_PERCENT_RE = re.compile(r"%(?![0-9A-Fa-f]{2})")


class NormalizedURL(NamedTuple):
    url: str
    bucket: str | None
    # True when the s3:// target is the service or bucket root (a listing request)
    is_listing: bool = False


def encode_path(path: str) -> str:
    """Percent-encode a URL path, keeping existing escapes (so encoding twice is a no-op)."""
    return quote(_LONE_PERCENT_RE.sub("%25", path), safe="/~%")


def encode_url_path(url: str) -> str:
    parts = urlsplit(url)
    return urlunsplit(parts._replace(path=encode_path(parts.path) or "/"))


def is_aws_host(host: str) -> bool:
    return _AWS_HOST_RE.match(host) is not None


def _join_endpoint(endpoint_url: str, path: str, query: str) -> str:
    endpoint = urlsplit(endpoint_url)
    base_path = endpoint.path.rstrip("/")
    return urlunsplit((endpoint.scheme or "https", endpoint.netloc, f"{base_path}{path}" or "/", query, ""))


def normalize_url(url: str, endpoint_url: str | None = None) -> NormalizedURL:
    """
    Rewrite an `s3://` URL into the HTTPS URL to call, returning the bucket it targets.

    - `s3://` lists all buckets: `https://s3.amazonaws.com/`
    - `s3://bucket/key` uses virtual-hosted style: `https://bucket.s3.amazonaws.com/key`
    - `s3://my.bucket/key` uses path style: `https://s3.amazonaws.com/my.bucket/key`, unless the host
      is already an AWS S3 endpoint, which is kept as is.

    With `endpoint_url` (e.g. `http://localhost:9000`) the bucket always becomes the first path
    segment of the endpoint. URLs with any other scheme are returned unchanged.
    """
    parts: SplitResult = urlsplit(url)
    if parts.scheme != S3_SCHEME:
        return NormalizedURL(url, None)

    host = parts.hostname or ""
    path, query = encode_path(parts.path), parts.query
    is_listing = path in ("", "/")

    if not host:
        if endpoint_url:
            normalized = _join_endpoint(endpoint_url, "/", query)
        else:
            normalized = urlunsplit(("https", S3_HOST, "/", query, ""))
        return NormalizedURL(normalized, None, is_listing)

    if "." in host and (match := _AWS_HOST_RE.match(host)) is not None:
        normalized = urlunsplit(("https", host, path, query, ""))
        bucket = match.group("bucket")
    elif endpoint_url:
        normalized = _join_endpoint(endpoint_url, f"/{host}{path}", query)
        bucket = host
    elif "." in host:
        normalized = urlunsplit(("https", S3_HOST, f"/{host}{path}", query, ""))
        bucket = host
    else:
        normalized = urlunsplit(("https", f"{host}.{S3_HOST}", path, query, ""))
        bucket = host

    logger.debug(f"Normalized {url!r} to {normalized!r} (bucket={bucket!r})")
    return NormalizedURL(normalized, bucket, is_listing)


def s3_url(bucket: str, key: str | None = None) -> str:
    """Build an `s3://` URL, percent-encoding the key."""
    if not key:
        return f"{S3_SCHEME}://{bucket}"
    return f"{S3_SCHEME}://{bucket}/{quote(key.lstrip('/'), safe='/~')}"


def bucket_url(bucket: str, endpoint_url: str | None = None) -> str:
    """The HTTPS root of a bucket, e.g. https://bucket.s3.amazonaws.com"""
    return normalize_url(s3_url(bucket), endpoint_url).url
