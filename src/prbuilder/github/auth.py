"""GitHub authentication and token validation."""

from __future__ import annotations

import os

import httpx

# A status-only token is enough to report builds; "repo" covers private repos
REQUIRED_SCOPES_ANY = frozenset({"repo", "repo:status", "public_repo"})


class AuthenticationError(Exception):
    """Raised when GitHub authentication fails."""

    def __init__(
        self,
        message: str,
        *,
        missing_scopes: list[str] | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.missing_scopes = missing_scopes or []
        self.status_code = status_code


def get_github_token() -> str:
    """Get GitHub token from environment.

    Raises:
        AuthenticationError: If GITHUB_TOKEN is not set.
    """
    token = os.environ.get("GITHUB_TOKEN", "").strip()
    if not token:
        raise AuthenticationError(
            "GITHUB_TOKEN environment variable is not set. "
            "Please set it to a token that can read pull requests and write commit statuses."
        )
    return token


async def validate_token(
    token: str | None = None,
    *,
    base_url: str = "https://api.github.com",
    client: httpx.AsyncClient | None = None,
) -> dict[str, str | list[str]]:
    """Validate a GitHub token and check its scopes.

    Fine-grained tokens do not report X-OAuth-Scopes; they are accepted
    as long as /user answers.

    Args:
        token: GitHub token. If None, reads from GITHUB_TOKEN.
        base_url: GitHub API base URL.
        client: Optional httpx client for testing.

    Returns:
        Dictionary with "user" (login) and "scopes" (granted OAuth scopes).

    Raises:
        AuthenticationError: If the token is invalid or lacks every usable scope.
    """
    if token is None:
        token = get_github_token()

    headers = {
        "Authorization": f"token {token}",
        "Accept": "application/vnd.github.v3+json",
        "User-Agent": "prbuilder",
    }

    should_close = client is None
    if client is None:
        client = httpx.AsyncClient()

    try:
        response = await client.get(f"{base_url.rstrip('/')}/user", headers=headers)

        if response.status_code == 401:
            raise AuthenticationError(
                "GitHub token is invalid or expired.",
                status_code=401,
            )

        if response.status_code != 200:
            raise AuthenticationError(
                f"Unexpected response from GitHub API: {response.status_code}",
                status_code=response.status_code,
            )

        username = response.json().get("login", "unknown")

        scopes_header = response.headers.get("X-OAuth-Scopes")
        if scopes_header is None:
            return {"user": username, "scopes": []}

        scopes = [s.strip() for s in scopes_header.split(",") if s.strip()]
        if not REQUIRED_SCOPES_ANY & set(scopes):
            raise AuthenticationError(
                "GitHub token is missing required scopes. "
                "Token needs 'repo' or 'repo:status' to post commit statuses.",
                missing_scopes=sorted(REQUIRED_SCOPES_ANY),
            )

        return {"user": username, "scopes": scopes}

    except httpx.RequestError as e:
        raise AuthenticationError(f"Failed to connect to GitHub API: {e}") from e

    finally:
        if should_close:
            await client.aclose()


def mask_token(token: str) -> str:
    """Mask a token for safe logging, keeping the first and last 4 characters."""
    if len(token) <= 8:
        return "***"
    return f"{token[:4]}...{token[-4:]}"
