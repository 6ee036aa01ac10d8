"""Invocation options for the lnav WSL build helper.

Options are resolved once into an immutable :class:`Configuration` that every
pipeline stage receives.  Resolution never touches the filesystem, so a bad
invocation fails before any stage runs.
"""

from __future__ import annotations

import argparse
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from build_errors import ValidationError

DEFAULT_REPO = "https://github.com/MikeWise2718/lnav.git"
DEFAULT_BRANCH = "master"
FALLBACK_JOBS = 4

SOURCE_DIR_NAME = "lnav-src"
BUILD_DIR_NAME = "lnav-build"
LOG_FILE_NAME = "lnav-build.log"

# Location of the compiled binary inside the build tree.
ARTIFACT_RELATIVE_PATH = Path("src") / "lnav"

# argparse prefixes its own errors with "argument --flag[/alias]: ".
_ARGPARSE_ERROR_RE = re.compile(r"^argument (?P<flag>[^/:\s]+)")

PIPELINE_DESCRIPTION = """\
The helper will:
  1. Inspect the host (distribution, WSL, packages, Rust toolchain)
  2. Install missing Ubuntu/Debian build packages (requires sudo)
  3. Clone the repository to ~/lnav-src, or force an existing checkout to
     match the remote branch exactly (local changes are discarded)
  4. Configure and build in ~/lnav-build
  5. Optionally install to /usr/local/bin
  6. Smoke-test the resulting binary

Requirements: WSL2 with Ubuntu 22.04 or later, an internet connection and
sudo access for installing dependencies.
"""


@dataclass(frozen=True)
class Configuration:
    """Resolved, immutable invocation options."""

    repo_url: str
    branch: str
    with_rust: bool
    static_build: bool
    clean_build: bool
    install_after_build: bool
    jobs: int
    source_dir: Path
    build_dir: Path
    home: Path

    @property
    def artifact_path(self) -> Path:
        return self.build_dir / ARTIFACT_RELATIVE_PATH

    @property
    def log_path(self) -> Path:
        return self.home / LOG_FILE_NAME

    @property
    def cargo_bin_dir(self) -> Path:
        return self.home / ".cargo" / "bin"


class _RaisingArgumentParser(argparse.ArgumentParser):
    """Argument parser that reports problems as :class:`ValidationError`."""

    def error(self, message: str) -> None:  # type: ignore[override]
        match = _ARGPARSE_ERROR_RE.match(message)
        raise ValidationError(message, token=match.group("flag") if match else None)


def default_jobs(cpu_count: int | None = None) -> int:
    detected = cpu_count if cpu_count is not None else os.cpu_count()
    return detected if detected and detected > 0 else FALLBACK_JOBS


def build_parser() -> argparse.ArgumentParser:
    parser = _RaisingArgumentParser(
        prog="lnav-wsl-build",
        description="Clone lnav and build it in the WSL2 native filesystem.",
        epilog=PIPELINE_DESCRIPTION,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        allow_abbrev=False,
    )
    parser.add_argument("--repo", metavar="URL", default=DEFAULT_REPO, help="Git repository URL (default: %(default)s)")
    parser.add_argument("--branch", metavar="NAME", default=DEFAULT_BRANCH, help="Branch to build (default: %(default)s)")
    parser.add_argument(
        "--with-rust",
        action="store_true",
        help="Include Rust/PRQL support, installing the toolchain if needed (adds ~5min to build)",
    )
    parser.add_argument("--static", action="store_true", help="Build a static binary")
    parser.add_argument(
        "--clean",
        action="store_true",
        help="Remove existing source and build directories and rebuild from scratch",
    )
    parser.add_argument("--install", action="store_true", help="Install after building (requires sudo)")
    parser.add_argument("--jobs", metavar="N", help="Number of parallel jobs (default: auto-detect)")
    return parser


def parse_jobs(value: str) -> int:
    try:
        jobs = int(value)
    except ValueError:
        raise ValidationError(f"--jobs expects a positive integer, got '{value}'", token=value) from None
    if jobs <= 0:
        raise ValidationError(f"--jobs expects a positive integer, got '{value}'", token=value)
    return jobs


def resolve_configuration(
    argv: Sequence[str] | None = None,
    *,
    home: Path | None = None,
    cpu_count: int | None = None,
) -> Configuration:
    """Return the :class:`Configuration` described by *argv*.

    ``--help`` prints the usage text and exits with status 0 via
    :class:`SystemExit`, as argparse always does.  Any other problem raises
    :class:`ValidationError` naming the offending token.
    """

    parser = build_parser()
    args, extras = parser.parse_known_args(argv)
    if extras:
        token = extras[0]
        raise ValidationError(f"Unknown option: {token}", token=token)

    for flag, value in (("--repo", args.repo), ("--branch", args.branch)):
        if not value.strip():
            raise ValidationError(f"{flag} must not be empty", token=flag)

    jobs = parse_jobs(args.jobs) if args.jobs is not None else default_jobs(cpu_count)

    home_dir = home if home is not None else Path.home()
    return Configuration(
        repo_url=args.repo,
        branch=args.branch,
        with_rust=args.with_rust,
        static_build=args.static,
        clean_build=args.clean,
        install_after_build=args.install,
        jobs=jobs,
        source_dir=home_dir / SOURCE_DIR_NAME,
        build_dir=home_dir / BUILD_DIR_NAME,
        home=home_dir,
    )


def describe(config: Configuration) -> list[tuple[str, str]]:
    """Return ``(label, value)`` rows summarising *config* for the log banner."""

    def yes_no(flag: bool) -> str:
        return "Yes" if flag else "No"

    return [
        ("Repository", config.repo_url),
        ("Branch", config.branch),
        ("Source directory", str(config.source_dir)),
        ("Build directory", str(config.build_dir)),
        ("Parallel jobs", str(config.jobs)),
        ("With Rust", yes_no(config.with_rust)),
        ("Static build", yes_no(config.static_build)),
        ("Clean build", yes_no(config.clean_build)),
        ("Install", yes_no(config.install_after_build)),
    ]
