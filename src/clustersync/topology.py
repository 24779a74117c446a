"""Cluster topology: who the peers are and how to name them as remotes."""

from __future__ import annotations

import re
import socket
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from .config_schema import ClusterConfig, ClusterMemberConfig
from .models import AuthType, ClusterMember
from .observability import log_error


_REMOTE_NAME_PATTERN = re.compile(r"[^A-Za-z0-9_-]+")

DEFAULT_REMOTE_PREFIX = "cluster_node_"


def derive_remote_name(local_address: str, prefix: str = DEFAULT_REMOTE_PREFIX) -> str:
    """Build a git remote name from a node address.

    ``10.0.0.5:8080`` -> ``cluster_node_10_0_0_5_8080``
    """
    sanitized = _REMOTE_NAME_PATTERN.sub("_", local_address.strip()).strip("_")
    if not sanitized:
        raise ValueError(f"Cannot derive a remote name from address {local_address!r}")
    return f"{prefix}{sanitized}"


class ClusterTopologyProvider(Protocol):
    def get_cluster_configuration(self) -> Optional[Dict[str, Any]]:
        """Registration data for this cluster, or None/empty when not clustered."""
        ...

    def get_local_address(self) -> str:
        ...

    def get_cluster_nodes(self, local_address: str) -> List[ClusterMember]:
        """Every member except the one at ``local_address``, in a stable order."""
        ...


class StaticTopologyProvider:
    """Topology read from the ``[cluster]`` configuration section."""

    def __init__(self, cluster: ClusterConfig, *, remote_prefix: str = DEFAULT_REMOTE_PREFIX):
        self.cluster = cluster
        self.remote_prefix = remote_prefix

    def get_cluster_configuration(self) -> Optional[Dict[str, Any]]:
        if not self.cluster.members:
            return None
        return self.cluster.model_dump()

    def get_local_address(self) -> str:
        return self.cluster.local_address or socket.gethostname()

    def get_cluster_nodes(self, local_address: str) -> List[ClusterMember]:
        """Peers of ``local_address``; a member that cannot be built is logged and left out."""
        peers: List[ClusterMember] = []
        for member in self.cluster.members:
            if member.local_address == local_address:
                continue
            try:
                peers.append(self._to_member(member))
            except (OSError, ValueError) as e:
                log_error(
                    "Skipping cluster node with unusable configuration",
                    peer=member.local_address,
                    error=str(e),
                    error_type=type(e).__name__,
                )
        return peers

    def _to_member(self, member: ClusterMemberConfig) -> ClusterMember:
        private_key = member.private_key
        if not private_key and member.private_key_path:
            private_key = Path(member.private_key_path).expanduser().read_text(encoding="utf-8")
        return ClusterMember(
            local_address=member.local_address,
            git_url=member.git_url,
            git_remote_name=member.remote_name
            or derive_remote_name(member.local_address, self.remote_prefix),
            auth_type=AuthType(member.auth_type),
            username=member.username,
            password=member.password,
            token=member.token,
            private_key=private_key,
        )
