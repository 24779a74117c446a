from __future__ import annotations

import pytest
from git import GitCommandError

from clustersync.errors import FailureKind, InvalidRemoteUrlError, RepositoryUnavailableError, TransportError
from clustersync.git_ops import (
    GitTransport,
    classify_git_error,
    open_repository,
    rewrite_url,
    validate_remote_url,
)
from clustersync.models import ClusterMember

from conftest import make_peer


def test_rewrite_url_points_at_global_repo():
    assert rewrite_url("https://node1:8080/repo/sites/{siteId}") == "https://node1:8080/repo/global"
    assert rewrite_url("ssh://node1/global") == "ssh://node1/global"


@pytest.mark.parametrize(
    "url",
    [
        "https://node1.example.com/studio/repo/global",
        "ssh://git@node1:2222/srv/repo/global",
        "git@node1:srv/repo/global.git",
        "file:///srv/repo/global",
        "/srv/repo/global",
    ],
)
def test_validate_remote_url_accepts(url):
    assert validate_remote_url(url) == url


@pytest.mark.parametrize(
    "url",
    [
        "",
        "   ",
        "https://node1/repo/sites/{siteId}",
        "https://node 1/repo",
        "ftp://node1/repo",
        "https:///repo",
        "https://node1:notaport/repo",
        "relative/path",
    ],
)
def test_validate_remote_url_rejects(url):
    with pytest.raises(InvalidRemoteUrlError):
        validate_remote_url(url)


@pytest.mark.parametrize(
    "stderr, kind",
    [
        ("fatal: Authentication failed for 'https://node1/repo'", FailureKind.UNAUTHORIZED),
        ("https://node1/repo: not authorized", FailureKind.UNAUTHORIZED),
        ("git@node1: Permission denied (publickey).", FailureKind.UNAUTHORIZED),
        ("fatal: repository '/srv/global' does not exist", FailureKind.NOT_FOUND),
        ("fatal: '/srv/x' does not appear to be a git repository", FailureKind.NOT_FOUND),
        ("fatal: unable to find remote helper for 'foo'", FailureKind.INVALID_REMOTE),
        ("fatal: unable to access: Could not resolve host: node1", FailureKind.TRANSPORT),
    ],
)
def test_classify_git_error(stderr, kind):
    error = GitCommandError(["git", "fetch"], 128, stderr=stderr)
    assert classify_git_error(error) is kind


def test_open_repository_missing_path(tmp_path):
    with pytest.raises(RepositoryUnavailableError):
        with open_repository(tmp_path / "missing"):
            pass


def test_open_repository_not_a_repo(tmp_path):
    (tmp_path / "plain").mkdir()
    with pytest.raises(RepositoryUnavailableError):
        with open_repository(tmp_path / "plain"):
            pass


def test_transport_clone_names_origin_after_peer(tmp_path, peers_dir):
    url = rewrite_url(make_peer(peers_dir, "node1"))
    m = ClusterMember(local_address="node1", git_url=url, git_remote_name="cluster_node_node1")
    repo = GitTransport(credentials_dir=tmp_path).clone(m, url, tmp_path / "clone")
    try:
        assert [r.name for r in repo.remotes] == ["cluster_node_node1"]
        assert (tmp_path / "clone" / "config.xml").exists()
    finally:
        repo.close()
    # credential artifact cleaned up
    assert [p for p in tmp_path.iterdir() if p.suffix == ".tmp"] == []


def test_transport_clone_missing_peer_is_not_found(tmp_path):
    url = (tmp_path / "nowhere" / "global").as_posix()
    m = ClusterMember(local_address="nowhere", git_url=url, git_remote_name="cluster_node_nowhere")
    with pytest.raises(TransportError) as excinfo:
        GitTransport().clone(m, url, tmp_path / "clone")
    assert excinfo.value.kind is FailureKind.NOT_FOUND
    assert excinfo.value.remote == "cluster_node_nowhere"


def test_transport_clone_invalid_url(tmp_path):
    m = ClusterMember(local_address="n", git_url="bad url", git_remote_name="cluster_node_n")
    with pytest.raises(TransportError) as excinfo:
        GitTransport().clone(m, "bad url", tmp_path / "clone")
    assert excinfo.value.kind is FailureKind.INVALID_REMOTE
