"""Short-lived credentials for one outbound git operation.

Every clone or fetch against a peer gets its own temporary credential file.
The file is created right before the operation and removed right after it,
whether the operation succeeds or raises. Nothing is cached between peers
since each node may authenticate differently.

Per authentication type the file holds:

- ``private_key``: the SSH private key, used through ``GIT_SSH_COMMAND``
- ``basic`` / ``token``: an askpass script answering git's username and
  password prompts, used through ``GIT_ASKPASS``
- ``none``: nothing; git is told to fail fast instead of prompting
"""

from __future__ import annotations

import os
import shlex
import stat
import sys
import tempfile
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterator, Optional, Sequence, TypeVar

from .models import AuthType, ClusterMember
from .observability import log_debug, log_warning

T = TypeVar("T")

TOKEN_USERNAME = "x-access-token"


@dataclass
class CredentialArtifact:
    """Temp file plus the git environment that uses it."""

    path: Path
    env: Dict[str, str] = field(default_factory=dict)


def _base_env() -> Dict[str, str]:
    # Overrides only; GitPython layers them over os.environ for each call.
    # Fail fast instead of hanging on an interactive prompt.
    env: Dict[str, str] = {}
    env["GIT_TERMINAL_PROMPT"] = "0"
    env["GCM_INTERACTIVE"] = "never"
    return env


def _askpass_script(username: str, password: str) -> str:
    return (
        f"#!{sys.executable}\n"
        "import sys\n"
        "prompt = sys.argv[1] if len(sys.argv) > 1 else ''\n"
        f"print({username!r} if prompt.lower().startswith('username') else {password!r})\n"
    )


def _ssh_command(key_path: Optional[Path], ssh_options: Sequence[str]) -> str:
    parts = ["ssh"]
    if key_path is not None:
        parts.extend(["-i", str(key_path), "-o", "IdentitiesOnly=yes"])
    parts.extend(["-o", "BatchMode=yes"])
    for option in ssh_options:
        parts.extend(["-o", option])
    return " ".join(shlex.quote(part) for part in parts)


def _write_secret(path: Path, content: str, mode: int) -> None:
    # Newline-terminated, ssh refuses keys without a trailing newline
    if content and not content.endswith("\n"):
        content += "\n"
    path.write_text(content, encoding="utf-8")
    if os.name == "posix":
        os.chmod(path, mode)


def _configure(
    member: ClusterMember,
    path: Path,
    ssh_options: Sequence[str],
) -> Dict[str, str]:
    env = _base_env()
    auth_type = AuthType(member.auth_type)

    if auth_type is AuthType.PRIVATE_KEY:
        _write_secret(path, member.private_key, stat.S_IRUSR | stat.S_IWUSR)
        env["GIT_SSH_COMMAND"] = _ssh_command(path, ssh_options)
    elif auth_type in (AuthType.BASIC, AuthType.TOKEN):
        if auth_type is AuthType.BASIC:
            username, password = member.username, member.password
        else:
            username, password = (member.username or TOKEN_USERNAME), member.token
        _write_secret(path, _askpass_script(username, password), stat.S_IRWXU)
        env["GIT_ASKPASS"] = str(path)
    else:
        env["GIT_ASKPASS"] = "echo"
        # An operator supplied ssh command wins for unauthenticated peers
        if "GIT_SSH_COMMAND" not in os.environ:
            env["GIT_SSH_COMMAND"] = _ssh_command(None, ssh_options)
    return env


@contextmanager
def provision_credentials(
    member: ClusterMember,
    *,
    directory: Optional[Path] = None,
    ssh_options: Sequence[str] = (),
) -> Iterator[CredentialArtifact]:
    """Create the credential file for ``member`` and delete it on exit."""
    fd, name = tempfile.mkstemp(
        prefix=f"{uuid.uuid4().hex}-",
        suffix=".tmp",
        dir=str(directory) if directory else None,
    )
    os.close(fd)
    path = Path(name)
    try:
        env = _configure(member, path, ssh_options)
        log_debug(
            "Credential artifact created",
            remote=member.git_remote_name,
            auth=AuthType(member.auth_type).value,
        )
        yield CredentialArtifact(path=path, env=env)
    finally:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            log_warning("Could not remove credential artifact", path=str(path), error=str(e))


def with_credentials(
    member: ClusterMember,
    operation: Callable[[Dict[str, str]], T],
    *,
    directory: Optional[Path] = None,
    ssh_options: Sequence[str] = (),
) -> T:
    """Run ``operation(env)`` with git authenticated as configured for ``member``."""
    with provision_credentials(member, directory=directory, ssh_options=ssh_options) as artifact:
        return operation(artifact.env)
