# ono/activitypub/actor.py
"""
ActivityPub actors.

Two kinds of identity:
- Actor: any federated identity, built from a fetched actor document
- Account: the single local identity, with its RSA key pair
"""

import json
import logging
import os
import secrets
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from ..errors import ConfigError

logger = logging.getLogger(__name__)

AS_CONTEXT = "https://www.w3.org/ns/activitystreams"
SECURITY_CONTEXT = "https://w3id.org/security/v1"


def _generate_keypair(key_size: int = 2048) -> tuple[bytes, bytes]:
    """Generate RSA key pair for signing."""
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=key_size,
    )
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return private_pem, public_pem


def split_handle(handle_or_id: str) -> tuple[str, str]:
    """
    Split a handle or actor URI into (username, domain).

    Accepts "alice@example.com", "@alice@example.com" and
    "https://example.com/users/alice".
    """
    if handle_or_id.startswith("https://") or handle_or_id.startswith("http://"):
        parsed = urlparse(handle_or_id)
        username = parsed.path.rstrip("/").split("/")[-1]
        return username, parsed.hostname or ""
    parts = handle_or_id.lstrip("@").split("@")
    if len(parts) != 2 or not all(parts):
        raise ValueError(f"Not a user@domain handle: {handle_or_id!r}")
    return parts[0], parts[1]


def normalize_handle(handle_or_id: str) -> str:
    """user@domain form of a handle or actor URI."""
    username, domain = split_handle(handle_or_id)
    return f"{username}@{domain}"


@dataclass
class Actor:
    """
    A federated identity, as described by its actor document.

    Attributes:
        id: Actor URI
        inbox: Inbox URI
        outbox: Outbox URI
        followers: Followers collection URI
        public_key_pem: PEM public key used to verify signatures
        key_id: Id of the public key
        preferred_username: Username part of the handle
        name: Display name
        icon: Avatar URL
        document: The full actor document
    """
    id: str
    inbox: str = ""
    outbox: str = ""
    followers: str = ""
    public_key_pem: str = ""
    key_id: str = ""
    preferred_username: str = ""
    name: str = ""
    icon: Optional[str] = None
    document: Dict[str, Any] = field(default_factory=dict)

    @property
    def handle(self) -> str:
        """Fediverse handle."""
        return f"{self.preferred_username}@{urlparse(self.id).hostname}"

    @classmethod
    def from_activitypub(cls, document: Dict[str, Any]) -> "Actor":
        """Build from a fetched actor document."""
        public_key = document.get("publicKey") or {}
        icon = document.get("icon")
        if isinstance(icon, dict):
            icon = icon.get("url")
        return cls(
            id=document["id"],
            inbox=document.get("inbox", ""),
            outbox=document.get("outbox", ""),
            followers=document.get("followers", ""),
            public_key_pem=public_key.get("publicKeyPem", ""),
            key_id=public_key.get("id", ""),
            preferred_username=document.get("preferredUsername", ""),
            name=document.get("name") or document.get("preferredUsername", ""),
            icon=icon,
            document=document,
        )

    def to_activitypub(self) -> Dict[str, Any]:
        return dict(self.document)


@dataclass
class Account:
    """
    The local identity.

    Attributes:
        username: Local username (e.g., "alice")
        domain: Host name the node is served from
        public_key: PEM-encoded public key
        private_key: PEM-encoded private key (kept secret)
        apikey: Credential for the local API
        display_name: Human-readable name
        created_at: Timestamp of creation
    """
    username: str
    domain: str
    public_key: bytes
    private_key: bytes
    apikey: str
    display_name: str = ""
    created_at: float = field(default_factory=time.time)

    @property
    def id(self) -> str:
        """ActivityPub actor ID (URL)."""
        return f"https://{self.domain}/u/{self.username}"

    @property
    def handle(self) -> str:
        return f"{self.username}@{self.domain}"

    @property
    def inbox(self) -> str:
        return f"https://{self.domain}/api/inbox"

    @property
    def outbox(self) -> str:
        return f"https://{self.domain}/api/outbox"

    @property
    def followers(self) -> str:
        """Followers collection; also the "send to my followers" recipient."""
        return f"{self.id}/followers"

    @property
    def following(self) -> str:
        return f"{self.id}/following"

    @property
    def key_id(self) -> str:
        """Key ID for HTTP Signatures."""
        return f"{self.id}#main-key"

    @property
    def post_prefix(self) -> str:
        """Id prefix shared by every local post."""
        return f"https://{self.domain}/m/"

    def to_activitypub(self) -> Dict[str, Any]:
        """Return ActivityPub JSON-LD representation."""
        return {
            "@context": [AS_CONTEXT, SECURITY_CONTEXT],
            "id": self.id,
            "type": "Person",
            "preferredUsername": self.username,
            "name": self.display_name or self.username,
            "inbox": self.inbox,
            "outbox": self.outbox,
            "followers": self.followers,
            "following": self.following,
            "publicKey": {
                "id": self.key_id,
                "owner": self.id,
                "publicKeyPem": self.public_key.decode("utf-8"),
            },
        }

    def to_actor(self) -> Actor:
        return Actor.from_activitypub(self.to_activitypub())

    def webfinger(self) -> Dict[str, Any]:
        """Discovery document for acct:<username>@<domain>."""
        return {
            "subject": f"acct:{self.handle}",
            "links": [
                {
                    "rel": "self",
                    "type": "application/activity+json",
                    "href": self.id,
                }
            ],
        }

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for storage."""
        return {
            "username": self.username,
            "domain": self.domain,
            "display_name": self.display_name,
            "public_key": self.public_key.decode("utf-8"),
            "private_key": self.private_key.decode("utf-8"),
            "apikey": self.apikey,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Account":
        """Deserialize from storage."""
        return cls(
            username=data["username"],
            domain=data["domain"],
            public_key=data["public_key"].encode("utf-8"),
            private_key=data["private_key"].encode("utf-8"),
            apikey=data["apikey"],
            display_name=data.get("display_name", ""),
            created_at=data.get("created_at", time.time()),
        )

    @classmethod
    def create(cls, username: str, domain: str, display_name: str = "", key_size: int = 2048) -> "Account":
        """Create a new account with generated keys."""
        private_pem, public_pem = _generate_keypair(key_size)
        return cls(
            username=username,
            domain=domain,
            public_key=public_pem,
            private_key=private_pem,
            apikey=secrets.token_hex(16),
            display_name=display_name or username,
        )


class AccountStore:
    """
    Persistent storage for the local account.

    Structure:
        data_dir/
            account.json    # keys and identity (mode 0600)
    """

    def __init__(self, data_dir: Path | str):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def _account_path(self) -> Path:
        return self.data_dir / "account.json"

    def exists(self) -> bool:
        return self._account_path().exists()

    def load(self) -> Optional[Account]:
        """Load the account from disk, or None if there is none yet."""
        path = self._account_path()
        if not path.exists():
            return None
        with open(path) as f:
            data = json.load(f)
        return Account.from_dict(data)

    def save(self, account: Account):
        path = self._account_path()
        with open(path, "w") as f:
            json.dump(account.to_dict(), f, indent=2)
        os.chmod(path, 0o600)  # Owner read/write only

    def ensure(self, username: str, domain: str, display_name: str = "") -> Account:
        """
        Load the account, creating it on first run.

        Raises ConfigError if the stored account belongs to another
        username or domain.
        """
        account = self.load()
        if account is None:
            account = Account.create(username, domain, display_name)
            self.save(account)
            logger.info(f"Created account {account.handle}")
            return account
        if account.username != username or account.domain != domain:
            raise ConfigError(
                f"Stored account is {account.handle}, config asks for {username}@{domain}"
            )
        return account
