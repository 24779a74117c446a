from __future__ import annotations

import os
import stat
from pathlib import Path

import pytest

from clustersync.credentials import TOKEN_USERNAME, provision_credentials, with_credentials
from clustersync.models import AuthType, ClusterMember


def member(**kwargs) -> ClusterMember:
    defaults = dict(
        local_address="10.0.0.2",
        git_url="ssh://git@10.0.0.2/repo/sites/{siteId}",
        git_remote_name="cluster_node_10_0_0_2",
    )
    defaults.update(kwargs)
    return ClusterMember(**defaults)


def test_artifact_exists_during_operation_and_removed_after(tmp_path):
    seen = {}

    def operation(env):
        path = Path(env["GIT_SSH_COMMAND"].split()[2])
        seen["path"] = path
        seen["existed"] = path.exists()
        seen["content"] = path.read_text()
        return "result"

    m = member(auth_type=AuthType.PRIVATE_KEY, private_key="-----BEGIN KEY-----\nabc\n-----END KEY-----")
    assert with_credentials(m, operation, directory=tmp_path) == "result"
    assert seen["existed"] is True
    assert seen["content"].endswith("-----END KEY-----\n")
    assert not seen["path"].exists()


def test_artifact_removed_when_operation_raises(tmp_path):
    seen = {}

    def operation(env):
        seen["path"] = Path(env["GIT_ASKPASS"])
        assert seen["path"].exists()
        raise RuntimeError("clone failed")

    m = member(auth_type=AuthType.BASIC, username="alice", password="s3cret")
    with pytest.raises(RuntimeError):
        with_credentials(m, operation, directory=tmp_path)
    assert not seen["path"].exists()
    assert list(tmp_path.iterdir()) == []


def test_artifact_created_for_unauthenticated_member(tmp_path):
    with provision_credentials(member(), directory=tmp_path) as artifact:
        assert artifact.path.exists()
        assert artifact.path.parent == tmp_path
        assert artifact.env["GIT_ASKPASS"] == "echo"
        assert artifact.env["GIT_TERMINAL_PROMPT"] == "0"
    assert not artifact.path.exists()


def test_each_invocation_gets_a_distinct_file(tmp_path):
    with provision_credentials(member(), directory=tmp_path) as first:
        with provision_credentials(member(), directory=tmp_path) as second:
            assert first.path != second.path


@pytest.mark.skipif(os.name != "posix", reason="POSIX permissions")
def test_private_key_is_owner_only(tmp_path):
    m = member(auth_type=AuthType.PRIVATE_KEY, private_key="KEY")
    with provision_credentials(m, directory=tmp_path, ssh_options=["StrictHostKeyChecking=no"]) as artifact:
        mode = stat.S_IMODE(artifact.path.stat().st_mode)
        assert mode == 0o600
        command = artifact.env["GIT_SSH_COMMAND"]
        assert "IdentitiesOnly=yes" in command
        assert "BatchMode=yes" in command
        assert "StrictHostKeyChecking=no" in command


def test_basic_auth_askpass_script(tmp_path):
    m = member(auth_type=AuthType.BASIC, username="alice", password="s3cret")
    with provision_credentials(m, directory=tmp_path) as artifact:
        script = artifact.path.read_text()
        assert artifact.env["GIT_ASKPASS"] == str(artifact.path)
        assert "'alice'" in script
        assert "'s3cret'" in script
        if os.name == "posix":
            assert os.access(artifact.path, os.X_OK)


def test_token_auth_uses_token_as_password(tmp_path):
    m = member(auth_type=AuthType.TOKEN, token="tok-123")
    with provision_credentials(m, directory=tmp_path) as artifact:
        script = artifact.path.read_text()
        assert repr(TOKEN_USERNAME) in script
        assert "'tok-123'" in script


def test_unauthenticated_member_keeps_ssh_options(tmp_path, monkeypatch):
    monkeypatch.delenv("GIT_SSH_COMMAND", raising=False)
    options = ["StrictHostKeyChecking=accept-new", "ConnectTimeout=5"]
    with provision_credentials(member(), directory=tmp_path, ssh_options=options) as artifact:
        command = artifact.env["GIT_SSH_COMMAND"]
    assert "-o StrictHostKeyChecking=accept-new" in command
    assert "-o ConnectTimeout=5" in command
    assert "-i" not in command.split()


def test_unauthenticated_member_leaves_operator_ssh_command(tmp_path, monkeypatch):
    monkeypatch.setenv("GIT_SSH_COMMAND", "ssh -F /etc/cluster/ssh_config")
    with provision_credentials(member(), directory=tmp_path, ssh_options=["StrictHostKeyChecking=no"]) as artifact:
        assert "GIT_SSH_COMMAND" not in artifact.env
