"""
Connector - builds authenticated clients from a ProviderConfig.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import aiohttp
from pydantic import ValidationError

from credentials import AWSCredentials, CredentialResolver
from errors import ConfigNotFoundError, CredentialResolutionError, ObjectNotFoundError
from models import AWSCredentialsConfig, ProviderConfig
from rancher.client import RancherClient, basic_auth_header
from store import ObjectStore

logger = logging.getLogger(__name__)


@dataclass
class Connection:
    """Authenticated access for one reconciliation."""

    client: RancherClient
    aws_credentials: Optional[AWSCredentials] = None


class Connector:
    """
    Resolves a ProviderConfig into a Rancher client and optional AWS credentials.

    All clients share the given aiohttp session.
    """

    def __init__(
        self,
        store: ObjectStore,
        credential_resolver: CredentialResolver,
        session: aiohttp.ClientSession,
    ):
        self.store = store
        self.credential_resolver = credential_resolver
        self.session = session

    async def connect(self, provider_config_name: str) -> Connection:
        """
        Build a Connection from the named ProviderConfig.

        Raises:
            ConfigNotFoundError: If the ProviderConfig does not exist
            CredentialResolutionError: If the ProviderConfig is malformed or a
                credential cannot be extracted
        """
        try:
            document = await self.store.get_object(
                "ProviderConfig", provider_config_name
            )
        except ObjectNotFoundError as e:
            raise ConfigNotFoundError(provider_config_name) from e

        try:
            config = ProviderConfig.model_validate(document)
        except ValidationError as e:
            raise CredentialResolutionError(
                f"ProviderConfig {provider_config_name} is invalid: {e}"
            ) from e

        token = await self.credential_resolver.extract_text(config.spec.credentials)
        if not token:
            raise CredentialResolutionError(
                f"ProviderConfig {provider_config_name} resolved an empty token"
            )

        client = RancherClient(
            config.spec.rancher_host, basic_auth_header(token), self.session
        )
        aws_credentials = await self._aws_credentials(config.spec.aws_creds)

        logger.debug(
            f"Connected to {client.host} using ProviderConfig {provider_config_name} "
            f"(aws credentials: {'yes' if aws_credentials else 'default chain'})"
        )
        return Connection(client=client, aws_credentials=aws_credentials)

    async def _aws_credentials(
        self, aws_creds: Optional[AWSCredentialsConfig]
    ) -> Optional[AWSCredentials]:
        if aws_creds is None or aws_creds.is_empty():
            return None

        if aws_creds.access_key_id is None or aws_creds.secret_access_key is None:
            raise CredentialResolutionError(
                "awsCreds needs both accessKeyId and secretAccessKey"
            )

        access_key_id = await self.credential_resolver.extract_text(
            aws_creds.access_key_id
        )
        secret_access_key = await self.credential_resolver.extract_text(
            aws_creds.secret_access_key
        )
        session_token = None
        if aws_creds.session_token is not None:
            session_token = (
                await self.credential_resolver.extract_text(aws_creds.session_token)
                or None
            )

        return AWSCredentials(
            access_key_id=access_key_id,
            secret_access_key=secret_access_key,
            session_token=session_token,
        )
