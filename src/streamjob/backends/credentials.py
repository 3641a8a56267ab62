# src/streamjob/backends/credentials.py
"""Service account credentials for the Google Cloud REST APIs.

load_service_account() reads a service account JSON key file;
authorized_client() wraps the credentials in an httpx.Client that attaches
a bearer token to every request, refreshing it when it expires.
"""

from __future__ import annotations

import threading
from collections.abc import Generator, Sequence
from pathlib import Path

import httpx
from google.auth.credentials import Credentials
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from streamjob.contracts.errors import ConfigurationError

SCOPE_CLOUD_PLATFORM = "https://www.googleapis.com/auth/cloud-platform"
SCOPE_STORAGE_READ_WRITE = "https://www.googleapis.com/auth/devstorage.read_write"

DEFAULT_SCOPES = (SCOPE_CLOUD_PLATFORM, SCOPE_STORAGE_READ_WRITE)

DEFAULT_TIMEOUT_SECONDS = 60.0


def load_service_account(path: Path, scopes: Sequence[str] = DEFAULT_SCOPES) -> service_account.Credentials:
    """Read a service account key file.

    Raises:
        ConfigurationError: If the file is missing or is not a service account key
    """
    try:
        return service_account.Credentials.from_service_account_file(str(path), scopes=list(scopes))
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"failed loading service account {path}: {e}") from e


class GoogleCredentialsAuth(httpx.Auth):
    """httpx auth flow adding ``Authorization: Bearer <token>``."""

    def __init__(self, credentials: Credentials) -> None:
        self._credentials = credentials
        self._lock = threading.Lock()

    def _token(self) -> str:
        with self._lock:
            if not self._credentials.valid:
                try:
                    self._credentials.refresh(Request())
                except GoogleAuthError as e:
                    raise httpx.RequestError(f"failed refreshing access token: {e}") from e
            return str(self._credentials.token)

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        request.headers["Authorization"] = f"Bearer {self._token()}"
        yield request


def authorized_client(
    credentials: Credentials,
    *,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> httpx.Client:
    """An httpx.Client authenticated with credentials. Caller closes it."""
    return httpx.Client(auth=GoogleCredentialsAuth(credentials), timeout=timeout)


def client_from_service_account(
    path: Path,
    scopes: Sequence[str] = DEFAULT_SCOPES,
    *,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> httpx.Client:
    """Load a service account key and return an authorized client for it."""
    return authorized_client(load_service_account(path, scopes), timeout=timeout)
