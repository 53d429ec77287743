"""Client for the ephemeral session-token endpoint."""
from typing import Optional

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from voice_agent.core.config import settings
from voice_agent.core.exceptions import CredentialError
from voice_agent.core.logging import logger
from voice_agent.session.models import Session


class ClientSecret(BaseModel):
    model_config = ConfigDict(extra="allow")

    value: Optional[str] = None
    expires_at: Optional[int] = None


class SessionTokenPayload(BaseModel):
    """Body returned by the token issuer; extra upstream fields are kept."""
    model_config = ConfigDict(extra="allow")

    model: Optional[str] = None
    voice: Optional[str] = None
    client_secret: Optional[ClientSecret] = None

    def to_session(self) -> Session:
        """
        Bind the payload to a Session.

        Raises:
            CredentialError: if model, voice or secret value is missing
        """
        if not self.model:
            raise CredentialError("No model specified in session data")
        if not self.voice:
            raise CredentialError("No voice specified in session data")
        if self.client_secret is None or not self.client_secret.value:
            raise CredentialError("No client secret in session data")
        return Session(
            model=self.model,
            voice=self.voice,
            client_secret=self.client_secret.value,
            expires_at=self.client_secret.expires_at,
        )


class CredentialClient:
    """Fetches a short-lived credential for one session attempt."""

    def __init__(
        self,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.url = url or settings.session_token_url
        self.timeout = timeout or settings.http_timeout_seconds
        self._transport = transport

    async def fetch(self) -> Session:
        """
        Request a session token and parse it.

        Returns:
            Session bound to the issued model, voice and credential

        Raises:
            CredentialError: request failed, non-2xx status, or incomplete payload
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(self.url)
        except httpx.HTTPError as e:
            raise CredentialError(f"Failed to get session token: {e}") from e

        if response.status_code >= 400:
            raise CredentialError(
                f"Failed to get session token: {response.status_code} {response.reason_phrase}",
                details={"status": response.status_code, "body": response.text[:500]},
            )

        try:
            payload = SessionTokenPayload.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise CredentialError(f"Malformed session token response: {e}") from e

        session = payload.to_session()
        logger.info(f"Session token obtained (model={session.model}, voice={session.voice})")
        return session
