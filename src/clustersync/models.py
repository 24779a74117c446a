from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class AuthType(str, Enum):
    NONE = "none"
    BASIC = "basic"
    TOKEN = "token"
    PRIVATE_KEY = "private_key"


@dataclass(frozen=True)
class ClusterMember:
    """Snapshot of one peer node for the duration of a sync cycle.

    ``git_remote_name`` is the identity key; the topology provider derives it
    from ``local_address``.
    """

    local_address: str
    git_url: str
    git_remote_name: str
    auth_type: AuthType = AuthType.NONE
    username: str = ""
    password: str = field(default="", repr=False)
    token: str = field(default="", repr=False)
    private_key: str = field(default="", repr=False)

    def describe(self) -> str:
        return f"{self.git_remote_name} ({self.git_url})"
