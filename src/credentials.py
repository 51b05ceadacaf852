"""
Credential extraction from Secret, environment and filesystem sources.
"""

import binascii
import logging
import os
from dataclasses import dataclass, field
from typing import Optional

from pydantic import ValidationError

from errors import CredentialResolutionError, ObjectNotFoundError
from models import CredentialSelectors, CredentialsSource, Secret
from store import ObjectStore

logger = logging.getLogger(__name__)


@dataclass
class AWSCredentials:
    """Static AWS credentials for EC2 lookups."""

    access_key_id: str
    secret_access_key: str = field(repr=False)  # Never log secret
    session_token: Optional[str] = field(default=None, repr=False)


class CredentialResolver:
    """Extracts raw credential bytes from a declared source."""

    def __init__(self, store: ObjectStore):
        self.store = store

    async def extract(self, selectors: CredentialSelectors) -> bytes:
        """
        Extract the credential described by selectors.

        Raises:
            CredentialResolutionError: If the source cannot provide a value
        """
        source = selectors.source
        logger.debug(f"Extracting credential from source {source.value}")
        if source == CredentialsSource.SECRET:
            return await self._from_secret(selectors)
        if source == CredentialsSource.ENVIRONMENT:
            return self._from_environment(selectors)
        if source == CredentialsSource.FILESYSTEM:
            return self._from_filesystem(selectors)
        return b""

    async def extract_text(self, selectors: CredentialSelectors) -> str:
        """Extract a credential and decode it as stripped UTF-8 text."""
        raw = await self.extract(selectors)
        try:
            return raw.decode("utf-8").strip()
        except UnicodeDecodeError as e:
            raise CredentialResolutionError(
                f"credential from {selectors.source.value} is not valid UTF-8"
            ) from e

    async def _from_secret(self, selectors: CredentialSelectors) -> bytes:
        ref = selectors.secret_ref
        if ref is None:
            raise CredentialResolutionError("credential source Secret needs secretRef")

        try:
            document = await self.store.get_object("Secret", ref.name, ref.namespace)
        except ObjectNotFoundError as e:
            raise CredentialResolutionError(
                f"cannot get credentials secret {ref.namespace}/{ref.name}"
            ) from e

        try:
            secret = Secret.model_validate(document)
        except ValidationError as e:
            raise CredentialResolutionError(
                f"secret {ref.namespace}/{ref.name} is malformed: {e}"
            ) from e
        try:
            return secret.get_value(ref.key)
        except KeyError as e:
            raise CredentialResolutionError(
                f"secret {ref.namespace}/{ref.name} has no key {ref.key}"
            ) from e
        except (binascii.Error, ValueError) as e:
            raise CredentialResolutionError(
                f"secret {ref.namespace}/{ref.name} key {ref.key} is not base64"
            ) from e

    def _from_environment(self, selectors: CredentialSelectors) -> bytes:
        if selectors.env is None:
            raise CredentialResolutionError(
                "credential source Environment needs env"
            )
        value = os.getenv(selectors.env.name)
        if value is None:
            raise CredentialResolutionError(
                f"environment variable {selectors.env.name} is not set"
            )
        return value.encode()

    def _from_filesystem(self, selectors: CredentialSelectors) -> bytes:
        if selectors.fs is None:
            raise CredentialResolutionError("credential source Filesystem needs fs")
        try:
            with open(selectors.fs.path, "rb") as f:
                return f.read()
        except OSError as e:
            raise CredentialResolutionError(
                f"cannot read credentials file {selectors.fs.path}: {e}"
            ) from e
