"""Registration of cluster peers as git remotes of the global repository."""

from __future__ import annotations

import threading
from typing import Iterable, Iterator, List, Sequence

from git import GitCommandError, Repo
from git.exc import GitError

from .config_schema import ClusterSyncConfig
from .errors import InvalidRemoteUrlError, RepositoryUnavailableError, ServiceLayerError
from .git_ops import open_repository, rewrite_url, validate_remote_url
from .models import ClusterMember
from .observability import log_debug, log_error, log_info


class RemoteRegistryCache:
    """Remote names already reconciled during this process lifetime.

    Starts empty, only grows, and is never cleared; a restart is what forces
    every remote to be checked against the topology again.
    """

    def __init__(self, names: Iterable[str] = ()):
        self._names = set(names)
        self._lock = threading.Lock()

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._names

    def __len__(self) -> int:
        with self._lock:
            return len(self._names)

    def __iter__(self) -> Iterator[str]:
        with self._lock:
            return iter(sorted(self._names))

    def mark(self, name: str) -> None:
        with self._lock:
            self._names.add(name)


class RemoteRegistry:
    """Keep the repository's remotes in line with the cluster topology."""

    def __init__(self, config: ClusterSyncConfig):
        self.config = config

    def legacy_name(self, member: ClusterMember) -> str:
        """Remote name used before node names carried the cluster prefix."""
        prefix = self.config.sync.remote_name_prefix
        name = member.git_remote_name
        if prefix and name.startswith(prefix):
            return name[len(prefix):]
        return name

    def remote_url(self, member: ClusterMember) -> str:
        sync = self.config.sync
        return rewrite_url(member.git_url, sync.site_url_segment, sync.global_url_segment)

    def reconcile(self, peers: Sequence[ClusterMember], cache: RemoteRegistryCache) -> List[str]:
        """Register every uncached peer as a remote.

        Returns the remote names reconciled by this call. A bad URL or a
        failed registry update skips that peer only, which stays uncached so
        the next call retries it.

        Raises:
            RepositoryUnavailableError: If the local repository cannot be opened
        """
        log_debug("Add cluster members as remotes to global repository", peers=len(peers))
        reconciled: List[str] = []
        for member in peers:
            if member.git_remote_name in cache:
                continue
            try:
                self.reconcile_one(member)
            except InvalidRemoteUrlError as e:
                log_error("Remote URL is invalid", remote=member.git_remote_name, url=e.url, reason=e.reason)
                continue
            except RepositoryUnavailableError:
                raise
            except ServiceLayerError as e:
                log_error("Error while adding remote", remote=member.git_remote_name, error=str(e))
                continue
            cache.mark(member.git_remote_name)
            reconciled.append(member.git_remote_name)
        return reconciled

    def reconcile_one(self, member: ClusterMember) -> None:
        """Add, rename or update the remote for one peer.

        Raises:
            RepositoryUnavailableError: If the local repository cannot be opened
            InvalidRemoteUrlError: If the peer URL is malformed
            ServiceLayerError: If git refuses to add or update the remote
        """
        url = validate_remote_url(self.remote_url(member))
        with open_repository(self.config.repository.global_repo_dir()) as repo:
            self._reconcile(repo, member, url)

    def _reconcile(self, repo: Repo, member: ClusterMember, url: str) -> None:
        name = member.git_remote_name
        existing = {remote.name for remote in repo.remotes}

        legacy = self.legacy_name(member)
        if legacy != name and legacy in existing:
            try:
                repo.delete_remote(repo.remote(legacy))
                log_info("Removed legacy remote", legacy=legacy, remote=name)
            except (GitCommandError, ValueError) as e:
                log_debug("Error while removing legacy remote", legacy=legacy, error=str(e))

        try:
            if name in existing:
                remote = repo.remote(name)
                if remote.url != url:
                    remote.set_url(url)
                    log_info("Updated remote URL", remote=name, url=url)
                else:
                    log_debug("Remote already registered", remote=name)
            else:
                repo.create_remote(name, url)
                log_info("Added remote", remote=name, peer=member.local_address, url=url)
        except GitError as e:
            raise ServiceLayerError(
                f"Error while adding remote {name} (url: {url}) for global repository"
            ) from e

