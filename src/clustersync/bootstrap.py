from __future__ import annotations

import shutil
from pathlib import Path
from typing import Optional, Sequence

from git import Repo

from .config_schema import ClusterSyncConfig
from .content_repository import GLOBAL_SCOPE, ContentRepository
from .errors import FailureKind, TransportError
from .git_ops import GitTransport, rewrite_url
from .models import ClusterMember
from .observability import log_debug, log_error, log_info


class RepositoryBootstrap:
    """Create the local global repository by cloning it from a peer.

    Peers are tried in the order given and the first successful clone wins.
    Ordering (random, ranked, ...) is the caller's decision.
    """

    def __init__(
        self,
        config: ClusterSyncConfig,
        content_repository: ContentRepository,
        transport: GitTransport,
    ):
        self.config = config
        self.content_repository = content_repository
        self.transport = transport

    @property
    def repo_path(self) -> Path:
        return self.config.repository.global_repo_dir()

    def exists(self) -> bool:
        """Whether a populated local copy is already present."""
        return bool(self.content_repository.get_first_commit_id(GLOBAL_SCOPE))

    def clone(self, peers: Sequence[ClusterMember]) -> bool:
        """Clone from the first reachable peer.

        Returns False only when every peer failed; the next eligible cycle
        tries again.
        """
        for member in peers:
            if self._clone_from(member):
                return True
        return False

    def _remove_stale(self) -> None:
        path = self.repo_path
        if path.is_dir():
            shutil.rmtree(path)
        elif path.exists():
            path.unlink()
        path.parent.mkdir(parents=True, exist_ok=True)

    def _clone_from(self, member: ClusterMember) -> bool:
        sync = self.config.sync
        url = rewrite_url(member.git_url, sync.site_url_segment, sync.global_url_segment)
        log_debug("Cloning global repository", peer=member.local_address, url=url, path=str(self.repo_path))

        repo: Optional[Repo] = None
        try:
            self._remove_stale()
            repo = self.transport.clone(member, url, self.repo_path)
            log_info("Cloned global repository", remote=member.git_remote_name, url=url)
            return True
        except TransportError as e:
            self._log_clone_failure(member, url, e)
        except OSError as e:
            log_error(
                "Error while creating global repository",
                path=str(self.repo_path),
                remote=member.git_remote_name,
                error=str(e),
            )
        finally:
            if repo is not None:
                repo.close()
        return False

    def _log_clone_failure(self, member: ClusterMember, url: str, error: TransportError) -> None:
        messages = {
            FailureKind.INVALID_REMOTE: "Invalid remote repository",
            FailureKind.UNAUTHORIZED: "Bad credentials or read only repository",
            FailureKind.NOT_FOUND: "Remote repository not found",
            FailureKind.TRANSPORT: "Error while cloning global repository",
        }
        log_error(
            messages[error.kind],
            remote=member.git_remote_name,
            url=url,
            kind=error.kind.value,
            error=str(error),
        )
