from __future__ import annotations

import os
import shutil
import sys
from pathlib import Path
from typing import Dict, Iterable, Optional

import pytest
from git import Repo


def pytest_sessionstart(session):  # type: ignore[override]
    root = Path(__file__).resolve().parents[1]
    src = root / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))
    os.environ.setdefault("PYTHONPATH", str(src))


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch, tmp_path):
    """Keep log files out of the home directory and reset logger state."""
    import logging

    from clustersync import observability as obs

    monkeypatch.setenv(obs.ENV_LOG_DISABLE_FILE, "1")
    monkeypatch.setenv(obs.ENV_LOG_LEVEL, "DEBUG")
    logging.getLogger(obs.LOGGER_NAME).handlers.clear()
    obs._logger_initialized = False
    yield
    logging.getLogger(obs.LOGGER_NAME).handlers.clear()
    obs._logger_initialized = False


def commit_files(repo: Repo, files: Dict[str, str], message: str):
    root = Path(repo.working_tree_dir)
    for name, content in files.items():
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    repo.index.add(list(files))
    return repo.index.commit(message)


def make_peer(
    base: Path,
    name: str,
    files: Optional[Dict[str, str]] = None,
    branches: Iterable[str] = ("master",),
) -> str:
    """Create a bare global repository for a fake node.

    Returns the node's templated site URL, which rewrites to the bare repo.
    """
    node_dir = base / name
    bare = node_dir / "global"
    bare.mkdir(parents=True)
    bare_repo = Repo.init(bare, bare=True)

    workdir = node_dir / "seed"
    repo = Repo.init(workdir)
    commit_files(repo, files or {"config.xml": f"<node>{name}</node>\n"}, f"seed {name}")
    branches = list(branches)
    repo.git.branch("-M", branches[0])
    for extra in branches[1:]:
        repo.git.branch(extra)
    repo.create_remote("origin", bare.as_posix())
    for branch in branches:
        repo.remotes.origin.push(f"{branch}:{branch}")
    repo.close()
    shutil.rmtree(workdir)
    # Independent of init.defaultBranch on the test machine
    bare_repo.git.symbolic_ref("HEAD", f"refs/heads/{branches[0]}")
    bare_repo.close()
    return (node_dir / "sites" / "{siteId}").as_posix()


def push_to_peer(base: Path, name: str, files: Dict[str, str], message: str, branch: str = "master"):
    """Add a commit to a fake node's global repository and return it."""
    bare = base / name / "global"
    workdir = base / name / "work"
    if workdir.exists():
        shutil.rmtree(workdir)
    repo = Repo.clone_from(bare.as_posix(), workdir)
    repo.git.checkout(branch)
    commit = commit_files(repo, files, message)
    repo.remotes.origin.push(f"{branch}:{branch}")
    hexsha = commit.hexsha
    repo.close()
    shutil.rmtree(workdir)
    return hexsha


@pytest.fixture
def peers_dir(tmp_path) -> Path:
    path = tmp_path / "peers"
    path.mkdir()
    return path


@pytest.fixture
def make_config(tmp_path):
    from clustersync.config_schema import ClusterSyncConfig

    def _make(**overrides):
        data = {
            "repository": {
                "base_path": str(tmp_path / "node"),
                "sync_commit_message": "Cluster sync (no processing)",
            },
            "git": {"author_name": "Sync Test", "author_email": "sync@test.local"},
        }
        for section, values in overrides.items():
            data.setdefault(section, {}).update(values)
        return ClusterSyncConfig.model_validate(data)

    return _make
