"""Payment provider secrets from AWS SSM Parameter Store.

Secrets live under /commerce/{environment}/{provider}/{name} as
SecureString parameters. Values are fetched once per store and kept in
memory; a rotated secret is picked up after invalidate().
"""

import os
from functools import lru_cache

import boto3
from botocore.exceptions import ClientError

from commerce_core.utils.logging import get_logger

logger = get_logger(__name__)

PARAMETER_ROOT = "/commerce"


class SecretNotAvailable(Exception):
    """A secret could not be read from Parameter Store."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Secret {path} not available: {reason}")


class SecretStore:
    """Environment-scoped reader for provider secrets.

    Usage:
        store = SecretStore("dev")
        key = store.get("stripe", "secret_key")  # /commerce/dev/stripe/secret_key
    """

    def __init__(self, environment: str | None = None, client=None) -> None:
        self.environment = environment or os.environ.get("ENVIRONMENT", "dev")
        self._client = client or boto3.client("ssm")
        self._values: dict[str, str] = {}

    def path(self, provider: str, name: str) -> str:
        return f"{PARAMETER_ROOT}/{self.environment}/{provider}/{name}"

    def get(self, provider: str, name: str) -> str:
        """Decrypted value of one provider secret.

        Raises:
            SecretNotAvailable: the parameter is missing, access is denied or
                Parameter Store failed
        """
        path = self.path(provider, name)
        if path in self._values:
            return self._values[path]

        try:
            response = self._client.get_parameter(Name=path, WithDecryption=True)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "Unknown")
            if code == "ParameterNotFound":
                raise SecretNotAvailable(path, "parameter not found") from e
            if code == "AccessDeniedException":
                raise SecretNotAvailable(path, "access denied; check ssm:GetParameter") from e
            raise SecretNotAvailable(path, code) from e

        logger.info("Loaded secret %s", path)
        self._values[path] = response["Parameter"]["Value"]
        return self._values[path]

    def invalidate(self, provider: str | None = None) -> None:
        """Forget cached values, for one provider or all of them."""
        if provider is None:
            self._values.clear()
            return
        prefix = f"{PARAMETER_ROOT}/{self.environment}/{provider}/"
        for path in [p for p in self._values if p.startswith(prefix)]:
            del self._values[path]


@lru_cache(maxsize=1)
def get_secret_store() -> SecretStore:
    """Shared SecretStore for the current ENVIRONMENT."""
    return SecretStore()
