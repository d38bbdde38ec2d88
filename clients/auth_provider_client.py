"""
Auth provider client for the hosted backend's REST auth API (GoTrue-compatible).

Synchronous requests-based client. The async orchestration layer calls it
through asyncio.to_thread. Every failure surfaces as AuthProviderError;
response payloads are returned as dicts and validated by the caller.
"""

import json
import logging
from typing import Any

import requests

logger = logging.getLogger(__name__)


class AuthProviderError(Exception):
    """Raised when the auth provider rejects a request or cannot be reached.

    status is None for transport failures (connection refused, timeout).
    """

    def __init__(self, message: str, status: int | None = None, error_code: str | None = None):
        self.message = message
        self.status = status
        self.error_code = error_code
        super().__init__(message)


class AuthProviderClient:
    """REST client for the provider's /auth/v1 endpoints."""

    TIMEOUT_SECONDS = 10

    def __init__(self, base_url: str, api_key: str):
        """
        Initialize with provider credentials.

        Args:
            base_url: Project URL, e.g. https://abc.supabase.co
            api_key: Public (anon) API key sent as the apikey header

        Raises:
            ValueError: If any credential is empty
        """
        if not base_url:
            raise ValueError("base_url is required")
        if not api_key:
            raise ValueError("api_key is required")

        self.auth_url = f"{base_url.rstrip('/')}/auth/v1"
        self.api_key = api_key
        self._http = requests.Session()

    def _headers(self, access_token: str | None = None) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "apikey": self.api_key,
        }
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return headers

    def _request(
        self,
        method: str,
        path: str,
        body: dict | None = None,
        params: dict | None = None,
        access_token: str | None = None,
    ) -> dict[str, Any]:
        """
        Send a request and return the decoded JSON body.

        Raises:
            AuthProviderError: On transport failure or non-2xx status
        """
        try:
            response = self._http.request(
                method,
                f"{self.auth_url}{path}",
                json=body,
                params=params,
                headers=self._headers(access_token),
                timeout=self.TIMEOUT_SECONDS,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Auth provider connection failed: {e}")
            raise AuthProviderError(f"Connection failed: {e}")

        if not response.content:
            data: dict[str, Any] = {}
        else:
            try:
                data = response.json()
            except json.JSONDecodeError:
                logger.error(f"Auth provider returned invalid JSON: {response.text}")
                raise AuthProviderError("Invalid response from auth provider", status=response.status_code)

        if response.status_code >= 400:
            message = (
                data.get("msg")
                or data.get("error_description")
                or data.get("message")
                or data.get("error")
                or f"HTTP {response.status_code}"
            )
            logger.warning(f"Auth provider {method} {path} failed ({response.status_code}): {message}")
            raise AuthProviderError(
                message,
                status=response.status_code,
                error_code=data.get("error_code") or data.get("error"),
            )

        return data

    def sign_up(self, email: str, password: str, data: dict, redirect_to: str) -> dict[str, Any]:
        """Create an identity. Returns the user (and a session only if auto-confirm is on)."""
        return self._request(
            "POST",
            "/signup",
            body={"email": email, "password": password, "data": data},
            params={"redirect_to": redirect_to},
        )

    def sign_in_with_password(self, email: str, password: str) -> dict[str, Any]:
        """Exchange credentials for a token response."""
        return self._request(
            "POST",
            "/token",
            body={"email": email, "password": password},
            params={"grant_type": "password"},
        )

    def refresh_session(self, refresh_token: str) -> dict[str, Any]:
        """Exchange a refresh token for a new token response."""
        return self._request(
            "POST",
            "/token",
            body={"refresh_token": refresh_token},
            params={"grant_type": "refresh_token"},
        )

    def sign_out(self, access_token: str) -> None:
        """Revoke the session's refresh tokens on the provider."""
        self._request("POST", "/logout", params={"scope": "local"}, access_token=access_token)

    def resend(self, email: str, redirect_to: str, type: str = "signup") -> None:
        """Resend the verification email of the given type."""
        self._request(
            "POST",
            "/resend",
            body={"type": type, "email": email},
            params={"redirect_to": redirect_to},
        )

    def verify_otp(self, token_hash: str, type: str = "signup") -> dict[str, Any]:
        """Exchange an emailed verification token hash for a token response."""
        return self._request("POST", "/verify", body={"type": type, "token_hash": token_hash})

    def get_user(self, access_token: str) -> dict[str, Any]:
        """Fetch the identity bound to an access token."""
        return self._request("GET", "/user", access_token=access_token)

    def recover(self, email: str, redirect_to: str) -> None:
        """Send a password reset email."""
        self._request(
            "POST",
            "/recover",
            body={"email": email},
            params={"redirect_to": redirect_to},
        )

    def update_user(self, access_token: str, attributes: dict) -> dict[str, Any]:
        """Update the signed-in identity (e.g. its password)."""
        return self._request("PUT", "/user", body=attributes, access_token=access_token)

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self._http.close()
