"""Keep ``~/lnav-src`` an exact copy of the requested remote branch.

A missing checkout is cloned.  An existing one is updated in place and then
forced to match ``origin/<branch>`` exactly: uncommitted edits, untracked
files and ignored build products are all discarded.  Reproducibility wins
over preservation here; callers who keep local work in the source directory
will lose it.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from build_config import Configuration
from build_errors import SourceSyncError
from command_runner import diagnostic_tail, run_command

LOG = logging.getLogger("lnav_wsl_build.source")

MIN_FREE_DISK_BYTES = 1 * 1024 * 1024 * 1024  # 1 GiB


@dataclass(frozen=True)
class SourceCheckout:
    path: Path
    branch: str
    commit: str
    subject: str
    cloned: bool

    @property
    def action(self) -> str:
        return "cloned" if self.cloned else "updated in place"


def _git(args: list[str], *, cwd: Path | None = None, logger: logging.Logger, capture: bool = False) -> str:
    """Run a git command, translating failures into :class:`SourceSyncError`."""

    try:
        result = run_command(["git", *args], cwd=cwd, capture_output=capture, logger=logger)
    except subprocess.CalledProcessError as exc:
        raise SourceSyncError(
            f"git {args[0]} failed with exit code {exc.returncode}",
            diagnostic=diagnostic_tail(exc.output),
        ) from exc
    return result.output.strip()


def _ensure_sufficient_disk_space(path: Path, *, required_bytes: int = MIN_FREE_DISK_BYTES) -> None:
    """Validate that *path* has at least *required_bytes* of free space."""

    usage = shutil.disk_usage(path)
    if usage.free < required_bytes:
        required_gib = required_bytes / (1024**3)
        available_gib = usage.free / (1024**3)
        raise SourceSyncError(
            f"Insufficient disk space in {path}. "
            f"{available_gib:.2f} GiB available but {required_gib:.2f} GiB required. "
            "Free disk space before retrying."
        )


def remove_tree(path: Path, *, logger: logging.Logger) -> None:
    logger.info("Removing existing directory (--clean specified): %s", path)
    try:
        shutil.rmtree(path)
    except OSError as exc:
        raise SourceSyncError(f"Failed to remove {path}: {exc}") from exc


def is_working_copy(path: Path) -> bool:
    return (path / ".git").is_dir()


def clone_repository(config: Configuration, *, logger: logging.Logger) -> None:
    destination = config.source_dir
    try:
        if destination.exists() and any(destination.iterdir()):
            raise SourceSyncError(
                f"{destination} exists but is not a git working copy. "
                "Remove it or re-run with --clean."
            )
        destination.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise SourceSyncError(f"Unable to prepare {destination}: {exc}") from exc

    _ensure_sufficient_disk_space(destination.parent)
    logger.info("Cloning %s (branch %s) into %s", config.repo_url, config.branch, destination)
    _git(["clone", "--branch", config.branch, config.repo_url, str(destination)], logger=logger)


def update_repository(config: Configuration, *, logger: logging.Logger) -> None:
    """Fetch and hard-reset the existing checkout to ``origin/<branch>``."""

    path = config.source_dir
    logger.info("Source directory exists, updating %s", path)

    current_url = _git(["remote", "get-url", "origin"], cwd=path, logger=logger, capture=True)
    if current_url != config.repo_url:
        logger.warning("Pointing origin at %s (was %s)", config.repo_url, current_url)
        _git(["remote", "set-url", "origin", config.repo_url], cwd=path, logger=logger)

    _git(["fetch", "--prune", "origin"], cwd=path, logger=logger)
    _git(["checkout", "--force", config.branch], cwd=path, logger=logger)
    _git(["reset", "--hard", f"origin/{config.branch}"], cwd=path, logger=logger)
    _git(["clean", "-fdx"], cwd=path, logger=logger)


def synchronize_source(config: Configuration, *, logger: logging.Logger | None = None) -> SourceCheckout:
    """Ensure ``config.source_dir`` holds ``config.branch`` from ``config.repo_url``."""

    logger = logger or LOG
    path = config.source_dir

    if config.clean_build and path.exists():
        remove_tree(path, logger=logger)

    if is_working_copy(path):
        update_repository(config, logger=logger)
        cloned = False
        logger.info("Repository updated to latest %s", config.branch)
    else:
        clone_repository(config, logger=logger)
        cloned = True
        logger.info("Repository cloned")

    commit = _git(["rev-parse", "--short", "HEAD"], cwd=path, logger=logger, capture=True)
    subject = _git(["log", "-1", "--pretty=format:%s"], cwd=path, logger=logger, capture=True)
    logger.info("Building commit: %s - %s", commit, subject)
    return SourceCheckout(path=path, branch=config.branch, commit=commit, subject=subject, cloned=cloned)


def verify_checkout(config: Configuration, *, logger: logging.Logger | None = None) -> None:
    """Confirm the working copy exists and ``HEAD`` is on the requested branch."""

    logger = logger or LOG
    if not is_working_copy(config.source_dir):
        raise SourceSyncError(f"No working copy present at {config.source_dir}")
    branch = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=config.source_dir, logger=logger, capture=True)
    if branch != config.branch:
        raise SourceSyncError(f"Working copy is on '{branch}', expected '{config.branch}'")
