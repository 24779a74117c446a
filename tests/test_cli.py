"""CLI tests: argument parsing, exit codes and output of each command."""
from __future__ import annotations

import json
import os
import subprocess
import sys

import pytest
from git import Repo

from clustersync import cli, config_loader

from conftest import make_peer


@pytest.fixture
def cluster_file(tmp_path, peers_dir, monkeypatch):
    """Config file describing a two node cluster seen from node-a."""
    monkeypatch.setattr(config_loader, "_get_user_config_dir", lambda: tmp_path / "home" / ".clustersync")
    monkeypatch.chdir(tmp_path)
    for name in config_loader.ENV_MAPPING:
        monkeypatch.delenv(name, raising=False)

    url = make_peer(peers_dir, "node-b", {"config.xml": "b\n"})
    path = tmp_path / "cluster.toml"
    path.write_text(
        f"""
[repository]
base_path = "{(tmp_path / 'node-a').as_posix()}"

[git]
author_name = "CLI Test"
author_email = "cli@test.local"

[cluster]
local_address = "node-a"

[[cluster.members]]
local_address = "node-a"
git_url = "/unused/sites/{{siteId}}"

[[cluster.members]]
local_address = "node-b"
git_url = "{url}"
auth_type = "basic"
username = "sync"
password = "hunter2"
"""
    )
    return path


def run_main(*argv: str) -> int:
    with pytest.raises(SystemExit) as exc:
        cli.main(list(argv))
    return exc.value.code


def test_help_exits_zero():
    env = os.environ.copy()
    cp = subprocess.run(
        [sys.executable, "-m", "clustersync", "--help"],
        capture_output=True,
        text=True,
        env=env,
    )
    assert cp.returncode == 0
    assert "usage:" in cp.stdout.lower()


def test_no_command_prints_help(capsys):
    assert run_main() == 0
    assert "usage:" in capsys.readouterr().out.lower()


def test_config_masks_secrets(cluster_file, capsys):
    assert run_main("--config", str(cluster_file), "config") == 0
    out = capsys.readouterr().out
    data = json.loads(out)
    assert data["cluster"]["members"][1]["password"] == "***"
    assert "hunter2" not in out


def test_config_show_secrets(cluster_file, capsys):
    assert run_main("--config", str(cluster_file), "config", "--show-secrets") == 0
    data = json.loads(capsys.readouterr().out)
    assert data["cluster"]["members"][1]["password"] == "hunter2"


def test_invalid_config_exits_one(tmp_path, capsys):
    broken = tmp_path / "broken.toml"
    broken.write_text("[sync]\nexecute_every_n_cycles = 0\n")
    assert run_main("--config", str(broken), "config") == 1
    assert "Configuration error" in capsys.readouterr().err


def test_remotes_without_repository(cluster_file, capsys):
    assert run_main("--config", str(cluster_file), "remotes") == 1
    assert capsys.readouterr().err


def test_sync_then_remotes(cluster_file, tmp_path, capsys):
    assert run_main("--config", str(cluster_file), "sync") == 0

    with Repo(tmp_path / "node-a" / "global") as repo:
        assert (tmp_path / "node-a" / "global" / "config.xml").read_text() == "b\n"
        assert "cluster_node_node-b" in [remote.name for remote in repo.remotes]

    capsys.readouterr()
    assert run_main("--config", str(cluster_file), "remotes") == 0
    out = capsys.readouterr().out
    assert out.startswith("cluster_node_node-b\t")


def test_run_with_tick_limit(cluster_file, tmp_path):
    assert run_main("--config", str(cluster_file), "run", "--ticks", "2", "--interval", "0") == 0
    assert (tmp_path / "node-a" / "global" / "config.xml").exists()
