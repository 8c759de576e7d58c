"""Bearer token acquisition for the Power BI REST API.

A :class:`TokenSource` knows how to obtain one access token. The
:class:`BearerTokenAuth` hook fetches it lazily on the first outbound request,
keeps it for the lifetime of the hook and attaches it to every request.
Only one token fetch happens per hook, even with concurrent first callers.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional, Protocol
from urllib.parse import quote

import requests
from azure.core.credentials import AccessToken, TokenCredential
from azure.core.exceptions import ClientAuthenticationError
from azure.identity import AzureCliCredential, CredentialUnavailableError
from requests.auth import AuthBase

from .client import raise_for_status
from .config import DEFAULT_AZ_PROCESS_TIMEOUT_SECONDS, AuthConfig
from .errors import AuthError, TransportError

LOGGER = logging.getLogger(__name__)

POWERBI_SCOPE = "https://analysis.windows.net/powerbi/api/.default"
TOKEN_URL_TEMPLATE = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"
TOKEN_REQUEST_TIMEOUT_SECONDS = 30


class TokenSource(Protocol):
    """Strategy that produces a bearer token."""

    def acquire(self, session: requests.Session) -> str:
        ...


class StaticTokenSource:
    """Uses a pre-supplied access token verbatim."""

    def __init__(self, token: str):
        self._token = token

    def acquire(self, session: requests.Session) -> str:
        return self._token


class _OAuthGrantTokenSource:
    grant_type = ""

    def __init__(self, tenant_id: str, client_id: str, client_secret: str):
        self._tenant_id = tenant_id
        self._client_id = client_id
        self._client_secret = client_secret

    @property
    def token_url(self) -> str:
        return TOKEN_URL_TEMPLATE.format(tenant=quote(self._tenant_id, safe=""))

    def acquire(self, session: requests.Session) -> str:
        form = {
            "grant_type": self.grant_type,
            "scope": POWERBI_SCOPE,
            "client_id": self._client_id,
            "client_secret": self._client_secret,
        }
        form.update(self._extra_form())
        LOGGER.debug("Requesting %s token from %s", self.grant_type, self.token_url)
        try:
            response = session.post(self.token_url, data=form, timeout=TOKEN_REQUEST_TIMEOUT_SECONDS)
        except requests.RequestException as exc:
            raise TransportError(f"Token request to {self.token_url} failed: {exc}") from exc
        raise_for_status(response)
        try:
            token = response.json().get("access_token")
        except ValueError as exc:
            raise AuthError("Token endpoint returned a non-JSON body.") from exc
        if not token:
            raise AuthError("No access_token in authentication response.")
        return str(token)

    def _extra_form(self) -> dict:
        return {}


class ClientCredentialsTokenSource(_OAuthGrantTokenSource):
    """Service principal (client credentials) grant."""

    grant_type = "client_credentials"


class PasswordGrantTokenSource(_OAuthGrantTokenSource):
    """Resource owner password credentials grant."""

    grant_type = "password"

    def __init__(self, tenant_id: str, client_id: str, client_secret: str, username: str, password: str):
        super().__init__(tenant_id, client_id, client_secret)
        self._username = username
        self._password = password

    def _extra_form(self) -> dict:
        return {"username": self._username, "password": self._password}


class AzureCliTokenSource:
    """Delegates to the cached session of a locally logged-in Azure CLI."""

    def __init__(
        self,
        tenant_id: str = "",
        process_timeout: int = DEFAULT_AZ_PROCESS_TIMEOUT_SECONDS,
        credential: Optional[TokenCredential] = None,
    ):
        self._tenant_id = tenant_id
        self._process_timeout = process_timeout
        self._credential = credential

    def acquire(self, session: requests.Session) -> str:
        return self.fetch().token

    def fetch(self) -> AccessToken:
        credential = self._credential or AzureCliCredential(
            tenant_id=self._tenant_id or None,
            process_timeout=self._process_timeout,
        )
        LOGGER.debug("Requesting token from the Azure CLI")
        try:
            return credential.get_token(POWERBI_SCOPE)
        except CredentialUnavailableError as exc:
            raise AuthError(f"Azure CLI credential unavailable: {exc}") from exc
        except ClientAuthenticationError as exc:
            raise AuthError(f"Azure CLI authentication failed: {exc}") from exc


def select_token_source(config: AuthConfig, az_process_timeout: int = DEFAULT_AZ_PROCESS_TIMEOUT_SECONDS) -> TokenSource:
    """Pick the acquisition strategy from the configured credentials.

    Priority: static access token, username/password, client credentials,
    then the Azure CLI session.
    """
    if config.access_token:
        LOGGER.info("Authenticating with a pre-supplied access token")
        return StaticTokenSource(config.access_token)
    if config.username and config.password:
        LOGGER.info("Authenticating with resource owner password credentials")
        return PasswordGrantTokenSource(
            config.tenant_id,
            config.client_id,
            config.client_secret,
            config.username,
            config.password,
        )
    if config.tenant_id and config.client_id and config.client_secret:
        LOGGER.info("Authenticating with client credentials")
        return ClientCredentialsTokenSource(config.tenant_id, config.client_id, config.client_secret)
    LOGGER.info("Authenticating with the Azure CLI session")
    return AzureCliTokenSource(config.tenant_id, az_process_timeout)


class BearerTokenAuth(AuthBase):
    """requests auth hook that lazily fetches and caches a bearer token.

    The token is kept for the lifetime of this object; it is not refreshed on
    expiry and a later 401 surfaces as a :class:`TransportError`. Call
    :meth:`reset` to force the next request to fetch a new token.
    """

    def __init__(self, source: TokenSource, session_factory=requests.Session):
        self._source = source
        self._session_factory = session_factory
        self._lock = threading.Lock()
        self._token: Optional[str] = None

    def __call__(self, request: requests.PreparedRequest) -> requests.PreparedRequest:
        request.headers["Authorization"] = f"Bearer {self.token()}"
        return request

    def token(self) -> str:
        token = self._token
        if token is not None:
            return token
        with self._lock:
            if self._token is None:
                # separate session so the token request never carries this hook
                with self._session_factory() as session:
                    self._token = self._source.acquire(session)
                LOGGER.debug("Access token acquired")
            return self._token

    def reset(self) -> None:
        with self._lock:
            self._token = None
