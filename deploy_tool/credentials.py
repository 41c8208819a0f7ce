"""
Local storage for Cloudflare credentials.

Credentials live in a per-user TOML file (~/.release-kit/config.toml by
default) under a [cloudflare] table. The orchestrator never reads the file
itself; it receives a CredentialsProvider.
"""

import logging
import os
import re
import tomllib
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import tomli_w

from album_core.constants import CONFIG_FILE_MODE, CONFIG_FILENAME, DEFAULT_CONFIG_DIR
from album_core.errors import ConfigurationError, ValidationError
from album_core.manifest import is_dns_label
from album_core.models import RemoteCredentials

logger = logging.getLogger(__name__)

API_TOKEN_RE = re.compile(r"^[A-Za-z0-9_-]{40}$")
ACCOUNT_ID_RE = re.compile(r"^[0-9a-fA-F]{32}$")
ACCESS_KEY_ID_RE = re.compile(r"^[0-9a-fA-F]{32}$")
SECRET_ACCESS_KEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")
MAX_DOMAIN_LENGTH = 253


def validate_api_token(token: str) -> str:
    if not API_TOKEN_RE.match(token or ""):
        raise ValidationError("API token must be 40 characters of letters, digits, '-' or '_'")
    return token


def validate_account_id(account_id: str) -> str:
    if not ACCOUNT_ID_RE.match(account_id or ""):
        raise ValidationError("Account ID must be 32 hexadecimal characters")
    return account_id


def validate_access_key_id(key_id: str) -> str:
    if not ACCESS_KEY_ID_RE.match(key_id or ""):
        raise ValidationError("R2 Access Key ID must be 32 hexadecimal characters")
    return key_id


def validate_secret_access_key(secret: str) -> str:
    if not SECRET_ACCESS_KEY_RE.match(secret or ""):
        raise ValidationError("R2 Secret Access Key must be 64 hexadecimal characters")
    return secret


def validate_domain(domain: str) -> str:
    """
    Check a base domain against basic DNS rules.

    Labels must be non-empty, at most 63 characters of [a-z0-9-] and may not
    start or end with a hyphen; the name may not start or end with a dot.
    """
    if not domain:
        raise ValidationError("Domain must not be empty")
    if domain.startswith(".") or domain.endswith("."):
        raise ValidationError(f"Domain '{domain}' must not start or end with a dot")
    if len(domain) > MAX_DOMAIN_LENGTH:
        raise ValidationError(f"Domain '{domain}' is longer than {MAX_DOMAIN_LENGTH} characters")
    labels = domain.split(".")
    if len(labels) < 2:
        raise ValidationError(f"Domain '{domain}' needs at least two labels (e.g. example.com)")
    for label in labels:
        if not is_dns_label(label):
            raise ValidationError(
                f"Invalid label '{label}' in domain '{domain}': use 1-63 lowercase letters, "
                "digits or hyphens, not starting or ending with a hyphen"
            )
    return domain


def validate_credentials(credentials: RemoteCredentials) -> RemoteCredentials:
    """Run every check that applies; raises ValidationError on the first failure."""
    validate_api_token(credentials.api_token)
    validate_account_id(credentials.account_id)
    if credentials.base_domain is not None:
        validate_domain(credentials.base_domain)

    has_key = credentials.r2_access_key_id is not None
    has_secret = credentials.r2_secret_access_key is not None
    if has_key != has_secret:
        raise ValidationError("R2 Access Key ID and Secret Access Key must be provided together")
    if has_key:
        validate_access_key_id(credentials.r2_access_key_id)
        validate_secret_access_key(credentials.r2_secret_access_key)
    return credentials


class CredentialsProvider(ABC):
    """Source of credentials for one CLI invocation."""

    @abstractmethod
    def load(self) -> Optional[RemoteCredentials]:
        """
        Load credentials.

        Returns:
            RemoteCredentials, or None when nothing has been configured
        """
        pass


class InMemoryCredentials(CredentialsProvider):
    """Fixed credentials, for tests and embedding."""

    def __init__(self, credentials: Optional[RemoteCredentials]):
        self.credentials = credentials

    def load(self) -> Optional[RemoteCredentials]:
        return self.credentials


def default_config_path() -> Path:
    return Path(DEFAULT_CONFIG_DIR).expanduser() / CONFIG_FILENAME


class FileCredentialsStore(CredentialsProvider):
    """Credentials persisted as TOML in the user's config directory."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else default_config_path()

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Optional[RemoteCredentials]:
        if not self.path.exists():
            return None
        try:
            with open(self.path, 'rb') as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigurationError(f"Failed to read config file {self.path}: {e}")

        table = data.get('cloudflare')
        if not isinstance(table, dict):
            raise ConfigurationError(f"Config file {self.path} has no [cloudflare] section")
        try:
            return RemoteCredentials.from_dict(table)
        except TypeError:
            raise ConfigurationError(
                f"Config file {self.path} is missing api_token or account_id.\n"
                "Run 'release-kit deploy configure' again"
            )

    def save(self, credentials: RemoteCredentials) -> Path:
        """
        Validate and write credentials, readable by the owner only.

        Returns:
            Path of the written file
        """
        validate_credentials(credentials)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        contents = tomli_w.dumps({'cloudflare': credentials.to_dict()})

        # Owner read/write only
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, CONFIG_FILE_MODE)
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(contents)
        if os.name == 'posix':
            os.chmod(self.path, CONFIG_FILE_MODE)

        logger.info("Saved credentials to %s", self.path)
        return self.path
