"""
Presigned URLs and presigned POST forms (AWS Signature Version 4).

Both build their own canonical input (canonical request, policy document) and delegate the HMAC
chain (date key -> region key -> service key -> signing key -> signature) to botocore's SigV4Auth.
"""

from __future__ import annotations

import base64
import datetime as dt
import json
import logging
from dataclasses import dataclass
from typing import NamedTuple
from urllib.parse import parse_qsl, quote, urlsplit, urlunsplit

from botocore.auth import SigV4Auth
from botocore.awsrequest import AWSRequest

from .config import S3Config
from .errors import S3ConfigError
from .url import bucket_url, encode_path, normalize_url, s3_url

__all__ = (
    "ALGORITHM",
    "DEFAULT_EXPIRES",
    "DEFAULT_FORM_EXPIRES_IN",
    "MAX_EXPIRES",
    "PresignedForm",
    "SERVICE",
    "SigningContext",
    "build_policy",
    "presign_form",
    "presign_url",
    "sigv4_signature",
)

logger = logging.getLogger(__name__)

ALGORITHM = "AWS4-HMAC-SHA256"
SERVICE = "s3"
UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"
# 7 days, the longest validity accepted by S3 for SigV4 presigned URLs
MAX_EXPIRES = 7 * 24 * 60 * 60
DEFAULT_EXPIRES = 24 * 60 * 60
DEFAULT_FORM_EXPIRES_IN = 60 * 60 * 1000
SERVER_SIDE_ENCRYPTION = "AES256"


@dataclass(frozen=True)
class SigningContext:
    """Time, region and service a signature is scoped to."""

    datetime: dt.datetime
    region: str
    service: str = SERVICE

    @classmethod
    def create(cls, region: str, now: dt.datetime | None = None) -> SigningContext:
        _now = now if now is not None else dt.datetime.now(dt.timezone.utc)
        if _now.tzinfo is None:
            _now = _now.replace(tzinfo=dt.timezone.utc)
        return cls(_now.astimezone(dt.timezone.utc).replace(microsecond=0), region)

    @property
    def amz_date(self) -> str:
        return self.datetime.strftime("%Y%m%dT%H%M%SZ")

    @property
    def date_stamp(self) -> str:
        return self.amz_date[:8]

    @property
    def scope(self) -> str:
        return f"{self.date_stamp}/{self.region}/{self.service}/aws4_request"

    def credential(self, access_key_id: str) -> str:
        return f"{access_key_id}/{self.scope}"


def _signer(config: S3Config, context: SigningContext) -> tuple[SigV4Auth, AWSRequest]:
    auth = SigV4Auth(config.credentials(), context.service, context.region)
    request = AWSRequest()
    # botocore derives the date stamp and the credential scope from this timestamp
    request.context["timestamp"] = context.amz_date
    return auth, request


def sigv4_signature(config: S3Config, context: SigningContext, string_to_sign: str) -> str:
    """Hex SigV4 signature of `string_to_sign` with the signing key derived for `context`."""
    auth, request = _signer(config, context)
    return auth.signature(string_to_sign, request)


def _uri_encode(value: str, safe: str = "-_.~") -> str:
    return quote(value, safe=safe)


def _canonical_query(params: list[tuple[str, str]]) -> str:
    return "&".join(f"{k}={v}" for k, v in sorted((_uri_encode(k), _uri_encode(v)) for k, v in params))


def presign_url(
    config: S3Config,
    url: str | None = None,
    *,
    bucket: str | None = None,
    key: str | None = None,
    method: str = "GET",
    expires: int = DEFAULT_EXPIRES,
    now: dt.datetime | None = None,
) -> str:
    """
    Return a query-signed HTTPS URL granting `method` on the target for `expires` seconds.

    The target is either `url` (`s3://bucket/key` or an HTTPS URL) or `bucket` and `key`:

        presign_url(S3Config.from_env(), "s3://my-bucket/path/to/file.txt")
        presign_url(config, bucket="my-bucket", key="upload.bin", method="PUT", expires=600)
    """
    config.require_credentials()
    if url is None:
        if not bucket or not key:
            raise S3ConfigError("Either url or both bucket and key are required")
        url = s3_url(bucket, key)
    if not 1 <= expires <= MAX_EXPIRES:
        raise S3ConfigError(f"expires must be between 1 and {MAX_EXPIRES} seconds, got {expires}")

    parts = urlsplit(normalize_url(url, config.endpoint_url).url)
    context = SigningContext.create(config.region, now)
    method = method.upper()

    params = parse_qsl(parts.query, keep_blank_values=True)
    params += [
        ("X-Amz-Algorithm", ALGORITHM),
        ("X-Amz-Credential", context.credential(config.access_key_id)),  # pyright: ignore[reportArgumentType]
        ("X-Amz-Date", context.amz_date),
        ("X-Amz-Expires", str(expires)),
        ("X-Amz-SignedHeaders", "host"),
    ]
    canonical_query = _canonical_query(params)
    path = encode_path(parts.path) or "/"

    # CanonicalRequest =
    #   HTTPRequestMethod + '\n' +
    #   CanonicalURI + '\n' +
    #   CanonicalQueryString + '\n' +
    #   CanonicalHeaders + '\n\n' +
    #   SignedHeaders + '\n' +
    #   HexEncode(Hash(RequestPayload))
    canonical_request = f"{method}\n{path}\n{canonical_query}\nhost:{parts.netloc}\n\nhost\n{UNSIGNED_PAYLOAD}"

    auth, request = _signer(config, context)
    signature = auth.signature(auth.string_to_sign(request, canonical_request), request)
    logger.debug(f"Presigned {method} {parts.netloc}{path} for {expires}s")
    return urlunsplit((parts.scheme, parts.netloc, path, f"{canonical_query}&X-Amz-Signature={signature}", ""))


class PresignedForm(NamedTuple):
    url: str
    # Ordered form fields, to be sent before the file field
    fields: list[tuple[str, str]]


def build_policy(
    *,
    bucket: str,
    key: str,
    expiration: dt.datetime,
    amz_headers: list[tuple[str, str]],
    content_type: str | None = None,
    max_size: int | None = None,
) -> dict:
    """
    POST policy document.

    See: https://docs.aws.amazon.com/AmazonS3/latest/API/sigv4-HTTPPOSTConstructPolicy.html
    """
    conditions: list = [{"bucket": bucket}, ["eq", "$key", key]]
    if content_type is not None:
        conditions.append(["eq", "$Content-Type", content_type])
    if max_size is not None:
        conditions.append(["content-length-range", 0, max_size])
    conditions.extend({name: value} for name, value in amz_headers)
    return {
        "expiration": expiration.strftime("%Y-%m-%dT%H:%M:%SZ"),
        "conditions": conditions,
    }


def presign_form(
    config: S3Config,
    bucket: str,
    key: str,
    *,
    content_type: str | None = None,
    max_size: int | None = None,
    expires_in: int = DEFAULT_FORM_EXPIRES_IN,
    now: dt.datetime | None = None,
) -> PresignedForm:
    """
    Sign a browser-form POST upload of `key` into `bucket`.

    `expires_in` is in milliseconds (1 hour by default) and `max_size` in bytes. Post `fields`
    followed by the `file` field to `url` as multipart/form-data:

        form = presign_form(config, "my-bucket", "avatar.png", content_type="image/png")
        niquests.post(form.url, data=dict(form.fields), files={"file": data})
    """
    if not bucket:
        raise S3ConfigError("bucket is required")
    if not key:
        raise S3ConfigError("key is required")
    config.require_credentials()
    if max_size is not None and max_size < 0:
        raise S3ConfigError(f"max_size must be positive, got {max_size}")
    if expires_in <= 0:
        raise S3ConfigError(f"expires_in must be a positive number of milliseconds, got {expires_in}")

    context = SigningContext.create(config.region, now)
    expiration = context.datetime + dt.timedelta(milliseconds=expires_in)

    amz_headers = [
        ("x-amz-server-side-encryption", SERVER_SIDE_ENCRYPTION),
        ("x-amz-credential", context.credential(config.access_key_id)),  # pyright: ignore[reportArgumentType]
        ("x-amz-algorithm", ALGORITHM),
        ("x-amz-date", context.amz_date),
    ]
    policy = build_policy(
        bucket=bucket,
        key=key,
        expiration=expiration,
        amz_headers=amz_headers,
        content_type=content_type,
        max_size=max_size,
    )
    encoded_policy = base64.b64encode(json.dumps(policy, separators=(",", ":")).encode("utf-8")).decode("ascii")
    signature = sigv4_signature(config, context, encoded_policy)

    fields = [*amz_headers, ("key", key), ("policy", encoded_policy), ("x-amz-signature", signature)]
    if content_type is not None:
        fields.append(("content-type", content_type))
    logger.debug(f"Presigned POST form for {bucket}/{key} until {policy['expiration']}")
    return PresignedForm(bucket_url(bucket, config.endpoint_url), fields)
