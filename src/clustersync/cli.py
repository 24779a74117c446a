#!/usr/bin/env python3
"""clustersync CLI - run and inspect global repository replication."""
from __future__ import annotations

import argparse
import json
import sys
import time
from pathlib import Path

from .config_loader import ConfigError, load_config
from .config_schema import ClusterSyncConfig
from .content_repository import GitContentRepository
from .errors import RepositoryUnavailableError
from .git_ops import open_repository
from .task import GlobalRepoSyncTask
from .topology import StaticTopologyProvider


def build_task(config: ClusterSyncConfig) -> GlobalRepoSyncTask:
    topology = StaticTopologyProvider(config.cluster, remote_prefix=config.sync.remote_name_prefix)
    return GlobalRepoSyncTask(config, topology, GitContentRepository(config.repository))


def _cmd_sync(config: ClusterSyncConfig, args: argparse.Namespace) -> int:
    task = build_task(config)
    if not task.run_cycle():
        print("Another sync cycle is in progress", file=sys.stderr)
        return 1
    return 0


def _cmd_run(config: ClusterSyncConfig, args: argparse.Namespace) -> int:
    task = build_task(config)
    ticks = 0
    try:
        while args.ticks is None or ticks < args.ticks:
            task.execute()
            ticks += 1
            if args.ticks is None or ticks < args.ticks:
                time.sleep(args.interval)
    except KeyboardInterrupt:
        pass
    return 0


def _cmd_remotes(config: ClusterSyncConfig, args: argparse.Namespace) -> int:
    try:
        with open_repository(config.repository.global_repo_dir()) as repo:
            for remote in repo.remotes:
                print(f"{remote.name}\t{remote.url}")
    except RepositoryUnavailableError as e:
        print(str(e), file=sys.stderr)
        return 1
    return 0


def _cmd_config(config: ClusterSyncConfig, args: argparse.Namespace) -> int:
    data = config.model_dump()
    if not args.show_secrets:
        for member in data["cluster"]["members"]:
            for key in ("password", "token", "private_key"):
                if member.get(key):
                    member[key] = "***"
    print(json.dumps(data, indent=2))
    return 0


def main(argv: list[str] | None = None) -> None:
    ap = argparse.ArgumentParser(
        prog="clustersync",
        description="Replicate the shared global repository across cluster nodes",
    )
    ap.add_argument("--config", type=Path, help="Config file layered over user/project config")

    sub = ap.add_subparsers(dest="cmd")

    sub.add_parser("sync", help="Run one sync cycle now")

    p_run = sub.add_parser("run", help="Tick the sync task periodically")
    p_run.add_argument("--interval", type=float, default=30.0, help="Seconds between ticks (default: 30)")
    p_run.add_argument("--ticks", type=int, help="Stop after this many ticks (default: run forever)")

    sub.add_parser("remotes", help="List remotes of the local global repository")

    p_config = sub.add_parser("config", help="Print the effective configuration")
    p_config.add_argument("--show-secrets", action="store_true", help="Do not mask credentials")

    args = ap.parse_args(argv)
    if not args.cmd:
        ap.print_help()
        sys.exit(0)

    try:
        config = load_config(config_file=args.config)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    handlers = {
        "sync": _cmd_sync,
        "run": _cmd_run,
        "remotes": _cmd_remotes,
        "config": _cmd_config,
    }
    sys.exit(handlers[args.cmd](config, args))


if __name__ == "__main__":
    main()
