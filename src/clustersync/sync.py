"""Pull every peer's main branch into the local global repository.

Merges use a "peer wins" policy: when histories diverge, the merge commit
takes the peer's tree as-is. The shared repository holds configuration any
node may have just written, and converging quickly matters more than keeping
local edits. Local-only changes committed since the previous cycle are
therefore discarded when a peer has diverged; each such merge logs a warning
naming the local commit that was overridden.

Peers are processed one at a time because every merge moves the same branch
and rewrites the same working tree.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Iterable, Optional, Sequence

from git import Actor, Commit, Repo
from git.exc import GitError
from git.remote import FetchInfo

from .config_schema import ClusterSyncConfig
from .errors import TransportError
from .git_ops import GitTransport, open_repository
from .models import ClusterMember
from .observability import log_debug, log_error, log_warning, timeit


class SyncOutcome(str, Enum):
    NOTHING_TO_SYNC = "nothing_to_sync"
    UP_TO_DATE = "up_to_date"
    FAST_FORWARD = "fast_forward"
    MERGED = "merged"
    FAILED = "failed"


def find_advertised_commit(fetch_infos: Iterable[FetchInfo], branch: str) -> Optional[Commit]:
    """Commit the peer advertised for ``branch``, short name first.

    GitPython pads ``remote_ref_path`` with the column spacing of git's
    fetch output, so names are compared stripped.
    """
    infos = list(fetch_infos)
    for wanted in (branch, f"refs/heads/{branch}"):
        for info in infos:
            if (info.remote_ref_path or "").strip() == wanted:
                return info.commit
    return None


class ContentSynchronizer:
    def __init__(self, config: ClusterSyncConfig, transport: GitTransport):
        self.config = config
        self.transport = transport

    @property
    def _actor(self) -> Actor:
        return Actor(self.config.git.author_name, self.config.git.author_email)

    def sync_all(self, peers: Sequence[ClusterMember]) -> Dict[str, SyncOutcome]:
        """Sync with each peer in turn; one peer's failure never stops the rest.

        Raises:
            RepositoryUnavailableError: If the local repository cannot be opened
        """
        outcomes: Dict[str, SyncOutcome] = {}
        with open_repository(self.config.repository.global_repo_dir()) as repo:
            log_debug("Update content from each active cluster member", peers=len(peers))
            for member in peers:
                try:
                    with timeit("peer.sync", remote=member.git_remote_name) as info:
                        outcome = self.sync_one(repo, member)
                        info["result"] = outcome.value
                except TransportError as e:
                    log_error(
                        "Failed to fetch from cluster node",
                        remote=member.git_remote_name,
                        url=e.url,
                        kind=e.kind.value,
                        error=str(e),
                    )
                    outcome = SyncOutcome.FAILED
                except (GitError, OSError, ValueError) as e:
                    log_error(
                        "Failed to merge from cluster node",
                        remote=member.git_remote_name,
                        url=member.git_url,
                        error=str(e),
                    )
                    outcome = SyncOutcome.FAILED
                outcomes[member.git_remote_name] = outcome
        return outcomes

    def sync_one(self, repo: Repo, member: ClusterMember) -> SyncOutcome:
        fetch_infos = self.transport.fetch(repo, member)
        commit = find_advertised_commit(fetch_infos, self.config.sync.main_branch)
        if commit is None:
            log_debug(
                "Peer advertises no main branch",
                remote=member.git_remote_name,
                branch=self.config.sync.main_branch,
            )
            return SyncOutcome.NOTHING_TO_SYNC
        return self.merge_peer_wins(repo, member, commit)

    def merge_peer_wins(self, repo: Repo, member: ClusterMember, commit: Commit) -> SyncOutcome:
        """Merge ``commit`` into the current branch, resolving all divergence for the peer.

        The result is always committed; index and working tree are reset to
        it so no merge is ever left pending.
        """
        if not repo.head.is_valid():
            repo.head.reset(commit, index=True, working_tree=True)
            return SyncOutcome.FAST_FORWARD

        head = repo.head.commit
        if head == commit or repo.is_ancestor(commit, head):
            return SyncOutcome.UP_TO_DATE

        if repo.is_ancestor(head, commit):
            repo.head.reset(commit, index=True, working_tree=True)
            log_debug("Fast-forwarded to cluster node", remote=member.git_remote_name, commit=commit.hexsha)
            return SyncOutcome.FAST_FORWARD

        if head.tree != commit.tree:
            log_warning(
                "Local changes overridden by cluster node",
                remote=member.git_remote_name,
                local_commit=head.hexsha,
                peer_commit=commit.hexsha,
            )
        actor = self._actor
        Commit.create_from_tree(
            repo,
            commit.tree,
            self.config.repository.sync_commit_message,
            parent_commits=[head, commit],
            head=True,
            author=actor,
            committer=actor,
        )
        repo.head.reset(index=True, working_tree=True)
        log_debug("Merged cluster node", remote=member.git_remote_name, commit=commit.hexsha)
        return SyncOutcome.MERGED
