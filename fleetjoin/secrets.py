"""Join token retrieval from AWS Secrets Manager."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from fleetjoin.exceptions import SecretUnavailableError
from fleetjoin.types import JoinToken

if TYPE_CHECKING:
    from mypy_boto3_secretsmanager import SecretsManagerClient

log = logger.bind(component="secrets")


class SecretStore:
    """Single-read client for the cluster join secret.

    Every failure collapses to SecretUnavailableError; deciding whether to
    try again is the caller's business.

    Args:
        client: boto3 Secrets Manager client bound to ``region``.
        region: Region the client reads from.
        secret_key: If set, the secret is a JSON object and the token is
            read from this key.
    """

    def __init__(
        self,
        client: SecretsManagerClient,
        region: str,
        *,
        secret_key: str | None = None,
    ) -> None:
        self._client = client
        self.region = region
        self.secret_key = secret_key

    def fetch_join_token(self, secret_id: str, region: str | None = None) -> JoinToken:
        if region is not None and region != self.region:
            raise ValueError(f"Secret store is bound to {self.region}, not {region}")

        try:
            response = self._client.get_secret_value(SecretId=secret_id)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "ClientError")
            raise SecretUnavailableError(secret_id, code) from e
        except BotoCoreError as e:
            raise SecretUnavailableError(secret_id, str(e)) from e

        raw = response.get("SecretString")
        if not raw:
            raise SecretUnavailableError(secret_id, "secret has no string value")

        value = self._extract(secret_id, raw).strip()
        if not value:
            raise SecretUnavailableError(secret_id, "secret value is empty")

        log.debug("Fetched join token from {secret}", secret=secret_id)
        return JoinToken(value)

    def _extract(self, secret_id: str, raw: str) -> str:
        if self.secret_key is None:
            return raw
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as e:
            raise SecretUnavailableError(secret_id, "secret is not valid JSON") from e
        value = payload.get(self.secret_key) if isinstance(payload, dict) else None
        if not isinstance(value, str):
            raise SecretUnavailableError(secret_id, f"key '{self.secret_key}' missing")
        return value
