from __future__ import annotations

from pathlib import Path
from typing import Protocol

from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo

from .config_schema import RepositoryConfig
from .observability import log_debug

GLOBAL_SCOPE = ""


class ContentRepository(Protocol):
    def get_first_commit_id(self, scope: str) -> str:
        """Root commit of the repository for ``scope``; empty when there is none.

        The empty scope is the shared global repository; any other scope is a
        site id.
        """
        ...


class GitContentRepository:
    """Reads the local repositories laid out under ``repository.base_path``."""

    def __init__(self, config: RepositoryConfig):
        self.config = config

    def path_for(self, scope: str) -> Path:
        if scope == GLOBAL_SCOPE:
            return self.config.global_repo_dir()
        return self.config.site_repo_dir(scope)

    def get_first_commit_id(self, scope: str) -> str:
        path = self.path_for(scope)
        if not (path / ".git").exists():
            return ""
        try:
            with Repo(path) as repo:
                if not repo.head.is_valid():
                    return ""
                roots = repo.git.rev_list("--max-parents=0", "HEAD").split()
        except (InvalidGitRepositoryError, NoSuchPathError, GitCommandError, ValueError) as e:
            log_debug("Could not read first commit", path=str(path), error=str(e))
            return ""
        # rev-list prints newest first; the original root comes last
        return roots[-1] if roots else ""
