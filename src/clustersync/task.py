from __future__ import annotations

import time
from pathlib import Path
from typing import Optional

from .bootstrap import RepositoryBootstrap
from .config_schema import ClusterSyncConfig
from .content_repository import ContentRepository
from .errors import ClusterSyncError
from .git_ops import GitTransport
from .lock import CycleGate, SingleWorkerLock
from .observability import log_action, log_debug, log_error
from .remotes import RemoteRegistry, RemoteRegistryCache
from .sync import ContentSynchronizer
from .topology import ClusterTopologyProvider


class GlobalRepoSyncTask:
    """Scheduler entry point replicating the global repository across the cluster.

    The scheduler calls the task (or ``execute``) on every tick, possibly from
    several threads at once. Only every Nth tick runs a cycle, and only one
    cycle runs at a time; a tick that finds a cycle in progress does nothing.
    No exception ever reaches the scheduler.

    The guard and the remote registry cache belong to this instance, so the
    scheduler must keep a single instance for the global repository.
    """

    def __init__(
        self,
        config: ClusterSyncConfig,
        topology: ClusterTopologyProvider,
        content_repository: ContentRepository,
        *,
        transport: Optional[GitTransport] = None,
        gate: Optional[CycleGate] = None,
        guard: Optional[SingleWorkerLock] = None,
        registry_cache: Optional[RemoteRegistryCache] = None,
    ):
        self.config = config
        self.topology = topology
        self.content_repository = content_repository
        if transport is None:
            credentials_dir = config.git.credentials_dir
            transport = GitTransport(
                credentials_dir=Path(credentials_dir).expanduser() if credentials_dir else None,
                ssh_options=config.git.ssh_options,
            )
        self.transport = transport
        self.gate = gate or CycleGate(config.sync.execute_every_n_cycles)
        self.guard = guard or SingleWorkerLock("global-repo-sync")
        self.registry_cache = registry_cache if registry_cache is not None else RemoteRegistryCache()

        self.bootstrap = RepositoryBootstrap(config, content_repository, transport)
        self.registry = RemoteRegistry(config)
        self.synchronizer = ContentSynchronizer(config, transport)

    def __call__(self) -> None:
        self.execute()

    def execute(self) -> None:
        if self.gate.tick():
            self.run_cycle()

    def run_cycle(self) -> bool:
        """Run one full cycle now, bypassing the gate.

        Returns False when another cycle holds the guard.
        """
        if not self.guard.try_acquire():
            log_debug("Unable to get cluster lock, another worker is holding the lock for global repo")
            return False

        start = time.perf_counter()
        outcome = "ok"
        log_debug("Worker starts syncing cluster node global repo")
        try:
            outcome = self._cycle()
        except Exception as e:
            outcome = "error"
            log_error("Error while syncing global repository", error=str(e), error_type=type(e).__name__)
        finally:
            self.guard.release()

        duration_ms = (time.perf_counter() - start) * 1000.0
        log_action("global_repo.cycle", outcome=outcome, duration_ms=duration_ms)
        return True

    def _cycle(self) -> str:
        registration = self.topology.get_cluster_configuration()
        if not registration:
            log_debug("No cluster configuration, nothing to sync")
            return "skipped"

        local_address = self.topology.get_local_address()
        peers = self.topology.get_cluster_nodes(local_address)

        log_debug("Check if global repository exists")
        if not self.bootstrap.exists():
            if not self.bootstrap.clone(peers):
                log_error("Unable to clone global repository from any cluster node", peers=len(peers))
                return "error"

        outcome = "ok"
        try:
            log_debug("Add remotes for global repository")
            self.registry.reconcile(peers, self.registry_cache)
        except ClusterSyncError as e:
            outcome = "error"
            log_error("Error while adding remotes on cluster node for global repo", error=str(e))

        try:
            log_debug("Update content for global repo")
            self.synchronizer.sync_all(peers)
        except ClusterSyncError as e:
            outcome = "error"
            log_error("Error while updating content for global repo on cluster node", error=str(e))
        return outcome
