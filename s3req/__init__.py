from ._version import __version__
from .client import S3Bucket, S3Object, S3Session
from .config import S3Config
from .errors import S3ConfigError, S3DecodeError, S3Error, S3ResponseError
from .pipeline import Pipeline, Request, Response, Step, Steps
from .plugin import attach, decode_s3_body, normalize_s3_url
from .signer import PresignedForm, build_policy, presign_form, presign_url
from .url import NormalizedURL, normalize_url, s3_url
from .xml import DEFAULT_SHAPES, S3Shapes, parse, parse_s3, parse_simple

__all__ = [
    "__version__",
    # Plugin
    "attach",
    "decode_s3_body",
    "normalize_s3_url",
    "Pipeline",
    "Request",
    "Response",
    "Step",
    "Steps",
    "S3Config",
    # Client
    "S3Bucket",
    "S3Object",
    "S3Session",
    # Signing
    "PresignedForm",
    "build_policy",
    "presign_form",
    "presign_url",
    # URLs
    "NormalizedURL",
    "normalize_url",
    "s3_url",
    # XML
    "DEFAULT_SHAPES",
    "S3Shapes",
    "parse",
    "parse_s3",
    "parse_simple",
    # Errors
    "S3ConfigError",
    "S3DecodeError",
    "S3Error",
    "S3ResponseError",
]
