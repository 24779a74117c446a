"""clustersync: replicate the shared global repository across cluster nodes over git."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("clustersync")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"  # Fallback for editable installs without metadata

from .lock import CycleGate, SingleWorkerLock  # noqa: F401
from .models import AuthType, ClusterMember  # noqa: F401
from .task import GlobalRepoSyncTask  # noqa: F401

__all__ = [
    "AuthType",
    "ClusterMember",
    "CycleGate",
    "GlobalRepoSyncTask",
    "SingleWorkerLock",
    "__version__",
]
