"""
TopoCrawl - Credential model.

Credentials are tried in ascending priority. Immutable once built.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence


# Accepted JSON keys per field, first present wins.
FIELD_ALIASES: Dict[str, Sequence[str]] = {
    "username": ("username", "user"),
    "password": ("password", "secret"),
    "key_content": ("key_content", "keyMaterial", "keyContent"),
    "key_file": ("key_file", "keyFile"),
    "key_passphrase": ("key_passphrase", "keyPassphrase"),
    "port": ("port",),
    "enable_password": ("enable_password", "enablePassword", "privilegedSecret"),
    "priority": ("priority", "authPriority"),
}


@dataclass(frozen=True)
class Credential:
    """
    SSH credential for device login.

    Supports password auth, key auth, or both (key first, password as
    fallback). enable_password is carried for privileged mode but the
    discovery command set runs unprivileged.
    """
    username: str
    password: Optional[str] = None
    key_content: Optional[str] = None  # PEM private key content
    key_file: Optional[str] = None
    key_passphrase: Optional[str] = None
    port: int = 22
    enable_password: Optional[str] = None
    priority: int = 0

    @property
    def has_key(self) -> bool:
        return self.key_content is not None

    @property
    def has_password(self) -> bool:
        return self.password is not None

    @property
    def auth_methods(self) -> List[str]:
        """List available authentication methods."""
        methods = []
        if self.has_key:
            methods.append("publickey")
        if self.has_password:
            methods.extend(["password", "keyboard-interactive"])
        return methods

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Credential":
        """
        Build from a credentials-file entry.

        Raises:
            ValueError: missing username or non-integer port/priority
        """
        values: Dict[str, Any] = {}
        for field_name, aliases in FIELD_ALIASES.items():
            for alias in aliases:
                if data.get(alias) is not None:
                    values[field_name] = data[alias]
                    break

        if not values.get("username"):
            raise ValueError("credential entry has no username")

        values["port"] = int(values.get("port", 22))
        values["priority"] = int(values.get("priority", 0))
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize without secrets."""
        return {
            "username": self.username,
            "auth_methods": self.auth_methods,
            "key_file": self.key_file,
            "port": self.port,
            "priority": self.priority,
        }

    def __repr__(self) -> str:
        return (f"Credential(username={self.username!r}, port={self.port}, "
                f"priority={self.priority}, auth={self.auth_methods})")


def sort_by_priority(credentials: Sequence[Credential]) -> List[Credential]:
    """Ascending priority, file order kept for ties."""
    return sorted(credentials, key=lambda c: c.priority)
