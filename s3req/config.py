from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from botocore.credentials import Credentials

from .errors import S3ConfigError

__all__ = (
    "DEFAULT_REGION",
    "ENV_ACCESS_KEY_ID",
    "ENV_ENDPOINT_URL_S3",
    "ENV_REGION",
    "ENV_SECRET_ACCESS_KEY",
    "S3Config",
)

DEFAULT_REGION = "us-east-1"

ENV_ACCESS_KEY_ID = "AWS_ACCESS_KEY_ID"
ENV_SECRET_ACCESS_KEY = "AWS_SECRET_ACCESS_KEY"
ENV_REGION = "AWS_REGION"
ENV_ENDPOINT_URL_S3 = "AWS_ENDPOINT_URL_S3"


@dataclass(frozen=True)
class S3Config:
    """
    Credentials and endpoint used to sign S3 requests.

    Build it explicitly, or load the defaults from the environment once with `from_env`:

        config = S3Config.from_env(region="eu-west-3")

    Explicit values always win over environment variables.
    """

    access_key_id: str | None = None
    secret_access_key: str | None = field(default=None, repr=False)
    region: str = DEFAULT_REGION
    # e.g. http://localhost:9000 for MinIO
    endpoint_url: str | None = None

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        *,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        region: str | None = None,
        endpoint_url: str | None = None,
    ) -> S3Config:
        """
        Snapshot the AWS_* environment variables into a config.

        Arguments left to None fall back to AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY, AWS_REGION
        and AWS_ENDPOINT_URL_S3. The region defaults to us-east-1.
        """
        env = dict(os.environ if environ is None else environ)
        return cls(
            access_key_id=access_key_id if access_key_id is not None else env.get(ENV_ACCESS_KEY_ID),
            secret_access_key=(
                secret_access_key if secret_access_key is not None else env.get(ENV_SECRET_ACCESS_KEY)
            ),
            region=region or env.get(ENV_REGION) or DEFAULT_REGION,
            endpoint_url=endpoint_url or env.get(ENV_ENDPOINT_URL_S3) or None,
        )

    @property
    def has_credentials(self) -> bool:
        return self.access_key_id is not None and self.secret_access_key is not None

    def require_credentials(self) -> S3Config:
        if self.access_key_id is None:
            raise S3ConfigError(f"Missing access key id (set access_key_id or {ENV_ACCESS_KEY_ID})")
        if self.secret_access_key is None:
            raise S3ConfigError(f"Missing secret access key (set secret_access_key or {ENV_SECRET_ACCESS_KEY})")
        return self

    def credentials(self) -> Credentials:
        """botocore credentials for the SigV4 signers."""
        self.require_credentials()
        return Credentials(self.access_key_id, self.secret_access_key)
