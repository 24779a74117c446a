"""Git access for the global repository sync.

``GitTransport`` performs the network operations (clone, fetch) with
per-peer credentials and turns git failures into a ``TransportError`` whose
``kind`` says what went wrong. Git only reports these conditions through its
stderr, so the one place that reads that text is ``classify_git_error``.
"""

from __future__ import annotations

import re
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Sequence
from urllib.parse import urlsplit

from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo
from git.remote import FetchInfo

from .credentials import with_credentials
from .errors import FailureKind, InvalidRemoteUrlError, RepositoryUnavailableError, TransportError
from .models import ClusterMember
from .observability import log_debug


_URL_SCHEMES = {"http", "https", "ssh", "git", "git+ssh", "ssh+git", "file"}
_SCP_LIKE = re.compile(r"^(?:[^@/\s]+@)?[^@/:\s]+:(?!//).+$")

_INVALID_REMOTE_TOKENS = (
    "unable to find remote helper",
    "unsupported protocol",
    "invalid url",
    "malformed",
    "protocol error: bad",
)
_UNAUTHORIZED_TOKENS = (
    "not authorized",
    "authentication failed",
    "permission denied",
    "could not read username",
    "could not read password",
    "access denied",
    "host key verification failed",
    "the requested url returned error: 401",
    "the requested url returned error: 403",
)
_NOT_FOUND_TOKENS = (
    "not found",
    "does not appear to be a git repository",
    "does not exist",
    "no such file or directory",
    "the requested url returned error: 404",
)


def rewrite_url(url: str, site_segment: str = "/sites/{siteId}", global_segment: str = "/global") -> str:
    """Point a peer URL at the global repository instead of a site template."""
    return url.replace(site_segment, global_segment)


def validate_remote_url(url: str) -> str:
    """Return ``url`` unchanged if git can use it as a remote.

    Accepts ``scheme://`` URLs, scp-like ``user@host:path`` and local paths.

    Raises:
        InvalidRemoteUrlError: If the URL is empty, contains whitespace or an
            unresolved template, or has an unusable scheme/host/port.
    """
    if not url or not url.strip():
        raise InvalidRemoteUrlError(url, "empty")
    if any(ch.isspace() or ord(ch) < 0x20 for ch in url):
        raise InvalidRemoteUrlError(url, "contains whitespace or control characters")
    if "{" in url or "}" in url:
        raise InvalidRemoteUrlError(url, "unresolved template placeholder")

    if "://" in url:
        try:
            parts = urlsplit(url)
            parts.port  # raises ValueError on a bad port
        except ValueError as e:
            raise InvalidRemoteUrlError(url, str(e)) from e
        scheme = parts.scheme.lower()
        if scheme not in _URL_SCHEMES:
            raise InvalidRemoteUrlError(url, f"unsupported scheme {parts.scheme!r}")
        if scheme != "file" and not parts.hostname:
            raise InvalidRemoteUrlError(url, "missing host")
        return url

    if _SCP_LIKE.match(url) or url.startswith(("/", ".", "~")) or Path(url).is_absolute():
        return url
    raise InvalidRemoteUrlError(url, "not a URL, scp-like address or path")


def classify_git_error(error: Exception) -> FailureKind:
    """Map a failed clone/fetch to a ``FailureKind``."""
    if isinstance(error, InvalidRemoteUrlError):
        return FailureKind.INVALID_REMOTE
    if isinstance(error, GitCommandError):
        text = str(error.stderr or error).lower()
    else:
        text = str(error).lower()

    if any(token in text for token in _INVALID_REMOTE_TOKENS):
        return FailureKind.INVALID_REMOTE
    if any(token in text for token in _UNAUTHORIZED_TOKENS):
        return FailureKind.UNAUTHORIZED
    if any(token in text for token in _NOT_FOUND_TOKENS):
        return FailureKind.NOT_FOUND
    return FailureKind.TRANSPORT


@contextmanager
def open_repository(path: Path) -> Iterator[Repo]:
    """Open the repository at ``path`` and close it when the block exits.

    Raises:
        RepositoryUnavailableError: If ``path`` is missing or not a repository
    """
    try:
        repo = Repo(path)
    except (InvalidGitRepositoryError, NoSuchPathError) as e:
        raise RepositoryUnavailableError(f"Failed to open repository at {path}: {e}") from e
    try:
        yield repo
    finally:
        repo.close()


class GitTransport:
    """Clone and fetch against cluster peers.

    Each call provisions credentials for exactly one peer and removes them
    when the call returns.
    """

    def __init__(self, *, credentials_dir: Optional[Path] = None, ssh_options: Sequence[str] = ()):
        self.credentials_dir = credentials_dir
        self.ssh_options = tuple(ssh_options)

    def _with_credentials(self, member: ClusterMember, operation):
        return with_credentials(
            member,
            operation,
            directory=self.credentials_dir,
            ssh_options=self.ssh_options,
        )

    def clone(self, member: ClusterMember, url: str, path: Path) -> Repo:
        """Clone every branch of ``url`` into ``path``.

        The origin remote is named after the peer. The caller owns (and must
        close) the returned repository.

        Raises:
            TransportError: On any failure, classified by kind
        """
        try:
            validate_remote_url(url)
        except InvalidRemoteUrlError as e:
            raise TransportError(FailureKind.INVALID_REMOTE, str(e), remote=member.git_remote_name, url=url) from e

        def _clone(env) -> Repo:
            log_debug("GIT_OP_START: clone", remote=member.git_remote_name, url=url, path=str(path))
            repo = Repo.clone_from(
                url,
                str(path),
                env=env,
                origin=member.git_remote_name,
                no_single_branch=True,
            )
            log_debug("GIT_OP_END: clone", remote=member.git_remote_name)
            return repo

        try:
            return self._with_credentials(member, _clone)
        except (GitCommandError, OSError) as e:
            raise TransportError(
                classify_git_error(e),
                f"Failed to clone {url}: {e}",
                remote=member.git_remote_name,
                url=url,
            ) from e

    def fetch(self, repo: Repo, member: ClusterMember) -> List[FetchInfo]:
        """Fetch the peer's remote only.

        Raises:
            TransportError: On any failure, classified by kind
        """
        try:
            remote = repo.remote(member.git_remote_name)
        except ValueError as e:
            raise TransportError(
                FailureKind.INVALID_REMOTE,
                f"Remote {member.git_remote_name} is not registered",
                remote=member.git_remote_name,
                url=member.git_url,
            ) from e

        def _fetch(env) -> List[FetchInfo]:
            log_debug("GIT_OP_START: fetch", remote=member.git_remote_name)
            with repo.git.custom_environment(**env):
                infos = remote.fetch()
            log_debug("GIT_OP_END: fetch", remote=member.git_remote_name, refs=len(infos))
            return list(infos)

        try:
            return self._with_credentials(member, _fetch)
        except (GitCommandError, OSError) as e:
            raise TransportError(
                classify_git_error(e),
                f"Failed to fetch {member.git_remote_name}: {e}",
                remote=member.git_remote_name,
                url=remote.url,
            ) from e
