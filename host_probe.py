"""Read-only inspection of the build host.

The prober answers four questions without changing anything on the machine:
which distribution family is running (and therefore which package manager
semantics apply), which required packages are already installed, whether a
Rust toolchain is available, and what state the source checkout is in.
Absence of any of these is a finding, not an error.  Only a filesystem that
cannot be inspected raises :class:`HostEnvironmentError`.
"""

from __future__ import annotations

import enum
import logging
import os
import re
import shlex
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Sequence

from build_config import Configuration
from build_errors import HostEnvironmentError

LOG = logging.getLogger("lnav_wsl_build.probe")

OS_RELEASE_PATH = Path("/etc/os-release")
PROC_VERSION_PATH = Path("/proc/version")

DEBIAN_FAMILY = {"debian", "ubuntu"}
FEDORA_FAMILY = {"fedora", "rhel", "centos"}

APT_REQUIRED_PACKAGES: Sequence[str] = (
    "build-essential",
    "autoconf",
    "automake",
    "libtool",
    "pkg-config",
    "libpcre2-dev",
    "libsqlite3-dev",
    "zlib1g-dev",
    "libbz2-dev",
    "libcurl4-openssl-dev",
    "libarchive-dev",
    "libunistring-dev",
    "libncurses-dev",
    "libreadline-dev",
    "re2c",
    "git",
)

DNF_REQUIRED_PACKAGES: Sequence[str] = (
    "gcc-c++",
    "make",
    "autoconf",
    "automake",
    "libtool",
    "pkgconf-pkg-config",
    "pcre2-devel",
    "sqlite-devel",
    "zlib-devel",
    "bzip2-devel",
    "libcurl-devel",
    "libarchive-devel",
    "libunistring-devel",
    "ncurses-devel",
    "readline-devel",
    "re2c",
    "git",
)

REQUIRED_PACKAGES: dict[str, Sequence[str]] = {
    "apt-get": APT_REQUIRED_PACKAGES,
    "dnf": DNF_REQUIRED_PACKAGES,
}


class WorkingCopyState(str, enum.Enum):
    ABSENT = "absent"
    CLEAN = "clean"
    # Present with local modifications; the update step will reset them.
    DIRTY = "dirty"


@dataclass(frozen=True)
class OsRelease:
    id: str = "unknown"
    name: str = "Unknown"
    version_id: str = ""
    id_like: tuple[str, ...] = ()

    @property
    def is_debian_family(self) -> bool:
        return self.id in DEBIAN_FAMILY or any(like in DEBIAN_FAMILY for like in self.id_like)

    @property
    def is_fedora_family(self) -> bool:
        return self.id in FEDORA_FAMILY or any(like in FEDORA_FAMILY for like in self.id_like)


@dataclass(frozen=True)
class EnvironmentSnapshot:
    """Findings of a single probe; rebuilt on every run and never persisted."""

    os_release: OsRelease
    is_wsl: bool
    package_manager: str
    packages: Mapping[str, bool] = field(default_factory=dict)
    rust_version: str | None = None
    working_copy: WorkingCopyState = WorkingCopyState.ABSENT

    @property
    def is_debian_family(self) -> bool:
        return self.os_release.is_debian_family

    @property
    def missing_packages(self) -> list[str]:
        return [name for name, present in self.packages.items() if not present]

    @property
    def has_rust(self) -> bool:
        return self.rust_version is not None


def parse_os_release(text: str) -> OsRelease:
    values: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, raw_value = line.partition("=")
        try:
            parts = shlex.split(raw_value)
        except ValueError:
            parts = [raw_value.strip("\"'")]
        values[key.strip()] = parts[0] if parts else ""

    return OsRelease(
        id=values.get("ID", "unknown").lower(),
        name=values.get("NAME", "Unknown"),
        version_id=values.get("VERSION_ID", ""),
        id_like=tuple(values.get("ID_LIKE", "").lower().split()),
    )


def read_os_release(path: Path = OS_RELEASE_PATH) -> OsRelease:
    try:
        return parse_os_release(path.read_text())
    except FileNotFoundError:
        return OsRelease()
    except OSError as exc:
        raise HostEnvironmentError(f"Unable to read {path}: {exc}") from exc


def detect_wsl(path: Path = PROC_VERSION_PATH) -> bool:
    try:
        text = path.read_text()
    except OSError:
        return False
    return re.search(r"microsoft|wsl", text, re.IGNORECASE) is not None


def select_package_manager(os_release: OsRelease) -> str:
    if os_release.is_fedora_family and not os_release.is_debian_family:
        return "dnf"
    return "apt-get"


def is_package_installed(manager: str, package: str) -> bool:
    """Return ``True`` when *package* is installed according to *manager*."""

    if manager == "dnf":
        command = ["rpm", "-q", package]
    else:
        command = ["dpkg-query", "-W", "-f=${Status}", package]

    try:
        result = subprocess.run(
            command,
            check=False,
            capture_output=True,
            encoding="utf-8",
            errors="replace",
        )
    except OSError:
        return False

    if result.returncode != 0:
        return False
    if manager == "dnf":
        return True
    return result.stdout.strip().endswith("install ok installed")


def query_packages(manager: str, packages: Sequence[str] | None = None) -> dict[str, bool]:
    names = REQUIRED_PACKAGES[manager] if packages is None else packages
    return {name: is_package_installed(manager, name) for name in names}


def find_cargo(home: Path) -> str | None:
    found = shutil.which("cargo")
    if found:
        return found
    candidate = home / ".cargo" / "bin" / "cargo"
    if candidate.is_file() and os.access(candidate, os.X_OK):
        return str(candidate)
    return None


def probe_rust_toolchain(home: Path) -> str | None:
    """Return the ``cargo --version`` string, or ``None`` without a toolchain."""

    cargo = find_cargo(home)
    if cargo is None:
        return None
    try:
        result = subprocess.run(
            [cargo, "--version"],
            check=False,
            capture_output=True,
            encoding="utf-8",
            errors="replace",
        )
    except OSError:
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def inspect_working_copy(source_dir: Path) -> WorkingCopyState:
    try:
        if not (source_dir / ".git").is_dir():
            return WorkingCopyState.ABSENT
        os.listdir(source_dir)
    except OSError as exc:
        raise HostEnvironmentError(f"Unable to inspect {source_dir}: {exc}") from exc

    try:
        result = subprocess.run(
            ["git", "status", "--porcelain", "--ignored"],
            cwd=source_dir,
            check=False,
            capture_output=True,
            encoding="utf-8",
            errors="replace",
        )
    except OSError:
        # Without git the tree cannot be inspected; the update will reset it anyway.
        return WorkingCopyState.DIRTY
    if result.returncode != 0 or result.stdout.strip():
        return WorkingCopyState.DIRTY
    return WorkingCopyState.CLEAN


def probe_environment(
    config: Configuration,
    *,
    os_release_path: Path = OS_RELEASE_PATH,
    proc_version_path: Path = PROC_VERSION_PATH,
    logger: logging.Logger | None = None,
) -> EnvironmentSnapshot:
    """Inspect the host and return a fresh :class:`EnvironmentSnapshot`."""

    logger = logger or LOG

    is_wsl = detect_wsl(proc_version_path)
    if is_wsl:
        logger.info("WSL2 environment detected")
    else:
        logger.warning("This doesn't appear to be WSL2. The build may still work on native Linux.")

    os_release = read_os_release(os_release_path)
    logger.info("Detected: %s %s", os_release.name, os_release.version_id)
    if not os_release.is_debian_family:
        logger.warning("This helper is optimized for Ubuntu/Debian. Package names may differ.")

    manager = select_package_manager(os_release)
    packages = query_packages(manager)
    for name, present in packages.items():
        if not present:
            logger.info("Missing package: %s", name)

    rust_version = probe_rust_toolchain(config.home)
    if rust_version:
        logger.info("Rust toolchain available: %s", rust_version)

    working_copy = inspect_working_copy(config.source_dir)
    logger.info("Working copy at %s: %s", config.source_dir, working_copy.value)

    return EnvironmentSnapshot(
        os_release=os_release,
        is_wsl=is_wsl,
        package_manager=manager,
        packages=packages,
        rust_version=rust_version,
        working_copy=working_copy,
    )
