# winnode/models/ssh.py

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class SSHConfig(BaseModel):
    """
    How to reach one Windows instance over OpenSSH.

    `host_keys` holds known_hosts lines for the instance. Until the first
    handshake has recorded them it is None, and only ssh_get_server_key
    may be used.
    """

    user: str = "Administrator"
    hostname: str
    port: int = Field(default=22, ge=1, le=65535)
    private_key: str
    host_keys: Optional[List[str]] = None

    @field_validator("hostname", "private_key")
    @classmethod
    def validate_non_empty(cls, val: str) -> str:
        if not val.strip():
            raise ValueError("must be a non-empty string")
        return val

    @property
    def destination(self) -> str:
        """user@host, as given to ssh and scp."""
        return f"{self.user}@{self.hostname}"
