from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlsplit

from .config import S3Config
from .pipeline import Pipeline, Request, Response, Step
from .url import S3_SCHEME, normalize_url
from .xml import DEFAULT_SHAPES, S3Shapes, parse_s3

__all__ = (
    "XML_CONTENT_TYPES",
    "attach",
    "decode_s3_body",
    "normalize_s3_url",
)

logger = logging.getLogger(__name__)

XML_CONTENT_TYPES = frozenset({"application/xml", "text/xml"})


def attach(pipeline: Pipeline, config: S3Config | None = None, *, shapes: S3Shapes = DEFAULT_SHAPES) -> Pipeline:
    """
    Teach `pipeline` the `s3://` scheme.

    Requests to `s3://` URLs are rewritten to S3 (or `config.endpoint_url`) before being signed
    with `config`'s credentials, and bucket listings are decoded into dicts.
    Without `config`, credentials are loaded from the environment once, now.

    Per-request options:
    - `endpoint_url`: overrides `config.endpoint_url`
    - `aws_sigv4`: dict overriding `access_key_id`, `secret_access_key`, `region` or `service`
    - `decode_body=False`: keep the raw XML bytes
    """
    pipeline.options["s3_config"] = config if config is not None else S3Config.from_env()
    pipeline.options["s3_shapes"] = shapes
    pipeline.request_steps.insert_before(Step.PUT_AWS_SIGV4, Step.NORMALIZE_S3_URL, normalize_s3_url)
    return pipeline


def _aws_sigv4_options(config: S3Config, overrides: Mapping[str, Any] | None) -> dict[str, Any] | None:
    sigv4: dict[str, Any] = {
        "service": "s3",
        "access_key_id": config.access_key_id,
        "secret_access_key": config.secret_access_key,
        "region": config.region,
    }
    sigv4.update({k: v for k, v in (overrides or {}).items() if v is not None})
    # Anonymous request (public buckets)
    if sigv4["access_key_id"] is None:
        return None
    return sigv4


def normalize_s3_url(request: Request) -> None:
    if urlsplit(request.url).scheme != S3_SCHEME:
        return

    config: S3Config = request.options.get("s3_config") or S3Config()
    endpoint_url = request.options.get("endpoint_url") or config.endpoint_url
    normalized = normalize_url(request.url, endpoint_url)
    request.url = normalized.url
    request.options["s3_bucket"] = normalized.bucket
    request.options["s3_listing"] = normalized.is_listing

    if (sigv4 := _aws_sigv4_options(config, request.options.get("aws_sigv4"))) is not None:
        request.options["aws_sigv4"] = sigv4
    else:
        request.options.pop("aws_sigv4", None)

    request.response_steps.append(Step.DECODE_S3_BODY, decode_s3_body)


def decode_s3_body(request: Request, response: Response) -> Response:
    """Decode bucket listings (`s3://` and `s3://bucket`), leave everything else untouched."""
    if (
        request.method not in ("GET", "HEAD")
        or not request.options.get("s3_listing")
        or request.options.get("decode_body") is False
        or response.content_type not in XML_CONTENT_TYPES
        or not isinstance(response.body, (bytes, str))
        or not response.body
    ):
        return response

    bucket = request.options.get("s3_bucket")
    listing = "objects" if bucket is not None else "buckets"
    logger.debug(f"Decoding {listing} listing" + (f" of {bucket!r}" if bucket else ""))
    response.body = parse_s3(response.body, request.options.get("s3_shapes") or DEFAULT_SHAPES)
    if response.ok:
        response.s3_listing = listing
    return response
