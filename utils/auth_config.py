import os
import json
import secrets
import time
from typing import Optional
from pydantic import BaseModel, ValidationError


class AuthConfig(BaseModel):
    """Persisted control-plane credential"""

    token: Optional[str] = None  # shared secret, also the session signing key
    created_at: Optional[int] = None


class AuthConfigManager:
    """Manages the shared access token for the control plane"""

    def __init__(self, config_path: str, token_override: Optional[str] = None):
        """
        Initialize the auth config manager.

        Args:
            config_path: Path to the auth.json file holding the token
            token_override: Token supplied by the environment (MANAGER_TOKEN);
                takes precedence over the stored one and is never written
        """
        self.config_path = os.path.abspath(config_path)
        self.token_override = token_override or os.getenv("MANAGER_TOKEN") or None
        self.config = self._load_config()

    def _generate_token(self) -> str:
        """
        Generate a cryptographically secure random access token.

        Returns:
            A URL-safe base64-encoded token (43 characters)
        """
        return secrets.token_urlsafe(32)

    def _load_config(self) -> AuthConfig:
        """
        Load the token file, creating it with a fresh token when missing or
        unreadable.

        Returns:
            AuthConfig object
        """
        if self.token_override:
            return AuthConfig(token=self.token_override)

        try:
            with open(self.config_path, "r") as f:
                config = AuthConfig(**json.load(f))
        except (json.JSONDecodeError, FileNotFoundError, ValidationError, TypeError):
            config = AuthConfig()

        if not config.token:
            config.token = self._generate_token()
            config.created_at = int(time.time())
            self.config = config
            self.save_config()
        return config

    def save_config(self):
        """Save current configuration to file, readable by the owner only"""
        if self.token_override:
            return
        os.makedirs(os.path.dirname(self.config_path), exist_ok=True)
        fd = os.open(self.config_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            json.dump(self.config.model_dump(), f, indent=2)

    def get_token(self) -> str:
        return self.config.token

