"""Bearer-token identity for the local API."""

import logging
import secrets
from pathlib import Path
from typing import Optional

from fastapi import Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from chatstream.errors import Unauthorized

logger = logging.getLogger(__name__)


class APIAuth:
    """Manages the API token and the user id it identifies."""

    def __init__(self, token_file: Optional[Path] = None, user_id: str = "local"):
        """
        Initialize API auth.

        Args:
            token_file: Path to token file (default: ~/.config/chatstream/api_token)
            user_id: User the token resolves to
        """
        if token_file is None:
            token_file = Path.home() / ".config" / "chatstream" / "api_token"
        self.token_file = Path(token_file)
        self.token_file.parent.mkdir(parents=True, exist_ok=True)
        self.user_id = user_id
        self._token: Optional[str] = None

    def generate_token(self) -> str:
        """Generate a new random token."""
        token = secrets.token_urlsafe(32)
        self._token = token
        self.save_token(token)
        return token

    def load_token(self) -> Optional[str]:
        """Load token from file."""
        if self.token_file.exists():
            return self.token_file.read_text().strip()
        return None

    def save_token(self, token: str) -> None:
        """Save token to file."""
        self.token_file.write_text(token)

    def get_token(self) -> str:
        """Get current token, generating if needed."""
        if self._token:
            return self._token
        token = self.load_token()
        if not token:
            token = self.generate_token()
        self._token = token
        return token

    def verify_token(self, token: str) -> bool:
        """Verify a token matches the current token."""
        return secrets.compare_digest(token.encode("utf-8"), self.get_token().encode("utf-8"))

    def resolve_user(self, token: Optional[str]) -> Optional[str]:
        """User id for a token, or None."""
        if token and self.verify_token(token):
            return self.user_id
        return None


# Missing credentials are reported by get_current_user, not as FastAPI's 403
security = HTTPBearer(auto_error=False)


def get_auth(request: Request) -> APIAuth:
    """Get the app's auth instance."""
    return request.app.state.auth


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security),
) -> str:
    """
    Resolve the calling user from the bearer token.

    Raises:
        Unauthorized: Token is invalid or missing
    """
    token = credentials.credentials if credentials else None
    user_id = get_auth(request).resolve_user(token)
    if user_id is None:
        logger.debug(f"Rejected request to {request.url.path}: invalid or missing token")
        raise Unauthorized("Unauthorized")
    return user_id
