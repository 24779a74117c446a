"""Configuration schema for clustersync.

Defines all configuration options with types, defaults, and validation.
Uses Pydantic for schema enforcement and clear error messages.
"""

from __future__ import annotations

import warnings
from pathlib import Path
from typing import Any, List, Literal

from pydantic import BaseModel, Field, field_validator


DEFAULT_SYNC_COMMIT_MESSAGE = "Sync with cluster node (no processing)"


class RepositoryConfig(BaseModel):
    """Local repository layout."""

    base_path: str = Field(
        default="~/.clustersync/repos",
        description="Base directory holding the local repositories",
    )
    global_repo_path: str = Field(
        default="global",
        description="Subdirectory of base_path for the shared global repository",
    )
    sites_path: str = Field(
        default="sites",
        description="Subdirectory of base_path holding per-site repositories",
    )
    sync_commit_message: str = Field(
        default=DEFAULT_SYNC_COMMIT_MESSAGE,
        description="Commit message for merges that must skip content reprocessing",
    )

    @field_validator("global_repo_path", "sites_path")
    @classmethod
    def validate_relative(cls, v: str) -> str:
        if not v or Path(v).is_absolute():
            raise ValueError("must be a non-empty path relative to base_path")
        return v

    @field_validator("sync_commit_message")
    @classmethod
    def validate_message(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("commit message must not be empty")
        return v

    def global_repo_dir(self) -> Path:
        return Path(self.base_path).expanduser() / self.global_repo_path

    def site_repo_dir(self, site: str) -> Path:
        return Path(self.base_path).expanduser() / self.sites_path / site


class SyncConfig(BaseModel):
    """Global repository sync behavior."""

    execute_every_n_cycles: int = Field(
        default=1,
        ge=1,
        description="Run a full sync cycle once every N scheduler ticks",
    )
    main_branch: str = Field(
        default="master",
        description="Branch fetched from every peer and merged locally",
    )
    site_url_segment: str = Field(
        default="/sites/{siteId}",
        description="Templated segment of peer URLs pointing at a site repository",
    )
    global_url_segment: str = Field(
        default="/global",
        description="Replacement segment pointing at the global repository",
    )
    remote_name_prefix: str = Field(
        default="cluster_node_",
        description="Prefix of remote names derived from cluster node addresses",
    )


class GitConfig(BaseModel):
    """Git identity and transport settings."""

    author_name: str = Field(
        default="Cluster Sync",
        description="Author/committer name for merge commits",
    )
    author_email: str = Field(
        default="cluster-sync@localhost",
        description="Author/committer email for merge commits",
    )
    credentials_dir: str = Field(
        default="",
        description="Directory for temporary credential files (empty = system temp dir)",
    )
    ssh_options: List[str] = Field(
        default_factory=lambda: ["StrictHostKeyChecking=accept-new"],
        description="Extra -o options passed to ssh for key based authentication",
    )

    @field_validator("credentials_dir")
    @classmethod
    def validate_credentials_dir(cls, v: str) -> str:
        """Warn if the credentials directory doesn't exist."""
        if v:
            path = Path(v).expanduser()
            if not path.exists():
                warnings.warn(
                    f"Credentials directory does not exist: {v}",
                    UserWarning,
                )
            elif not path.is_dir():
                warnings.warn(
                    f"Credentials path is not a directory: {v}",
                    UserWarning,
                )
        return v


class ClusterMemberConfig(BaseModel):
    """A statically configured cluster node."""

    local_address: str = Field(description="Address identifying the node in the cluster")
    git_url: str = Field(description="Repository URL, may contain the site URL segment")
    remote_name: str = Field(
        default="",
        description="Explicit remote name (empty = derived from local_address)",
    )
    auth_type: Literal["none", "basic", "token", "private_key"] = Field(
        default="none",
        description="How to authenticate against this node",
    )
    username: str = Field(default="", description="Username for basic auth")
    password: str = Field(default="", description="Password for basic auth")
    token: str = Field(default="", description="Access token for token auth")
    private_key: str = Field(default="", description="Inline SSH private key")
    private_key_path: str = Field(default="", description="Path to an SSH private key")

    @field_validator("local_address", "git_url")
    @classmethod
    def validate_required(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be empty")
        return v.strip()


class ClusterConfig(BaseModel):
    """Static cluster topology."""

    local_address: str = Field(
        default="",
        description="Address of this node (empty = host name)",
    )
    members: List[ClusterMemberConfig] = Field(
        default_factory=list,
        description="All cluster nodes, this node included or not",
    )


class ClusterSyncConfig(BaseModel):
    """Root configuration model."""

    version: int = Field(default=1, description="Config schema version")
    repository: RepositoryConfig = Field(default_factory=RepositoryConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    git: GitConfig = Field(default_factory=GitConfig)
    cluster: ClusterConfig = Field(default_factory=ClusterConfig)

    def get_property(self, key: str, default: Any = None) -> Any:
        """Look up a value by dotted key, e.g. ``repository.base_path``."""
        current: Any = self
        for part in key.split("."):
            if isinstance(current, BaseModel) and part in type(current).model_fields:
                current = getattr(current, part)
            elif isinstance(current, dict) and part in current:
                current = current[part]
            else:
                return default
        return current
