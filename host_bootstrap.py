"""Idempotent installation of lnav's host build dependencies.

Only packages the probe reported as missing are installed, in a single
package-manager invocation.  The optional Rust toolchain is acquired with the
official rustup installer and re-verified afterwards.  Failures are never
retried: a broken network or missing privileges will not heal without the
operator, so the error is surfaced verbatim instead.
"""

from __future__ import annotations

import contextlib
import logging
import os
import shutil
import subprocess
import tempfile
import urllib.request
from pathlib import Path
from typing import Sequence

from build_config import Configuration
from build_errors import DependencyInstallError
from command_runner import diagnostic_tail, run_command
from host_probe import EnvironmentSnapshot, probe_rust_toolchain, query_packages

LOG = logging.getLogger("lnav_wsl_build.bootstrap")

RUSTUP_URL = "https://sh.rustup.rs"
RUSTUP_ARGS = ("-y", "--quiet")
DOWNLOAD_CHUNK_SIZE = 64 * 1024


def dependencies_satisfied(config: Configuration, snapshot: EnvironmentSnapshot) -> bool:
    if snapshot.missing_packages:
        return False
    return not (config.with_rust and not snapshot.has_rust)


def install_dependencies(
    config: Configuration,
    snapshot: EnvironmentSnapshot,
    *,
    logger: logging.Logger | None = None,
) -> str:
    """Install whatever *snapshot* reports missing and return a summary."""

    logger = logger or LOG
    actions: list[str] = []

    missing = snapshot.missing_packages
    if missing:
        _install_packages(snapshot.package_manager, missing, logger)
        actions.append(f"installed {len(missing)} package(s): {', '.join(missing)}")
        logger.info("Dependencies installed")
    else:
        logger.info("All required packages already installed")

    if config.with_rust:
        if snapshot.has_rust:
            logger.info("Rust already installed: %s", snapshot.rust_version)
        else:
            version = install_rust_toolchain(config, logger=logger)
            actions.append(f"installed Rust toolchain ({version})")

    return "; ".join(actions) if actions else "nothing to install"


def verify_dependencies(
    config: Configuration,
    snapshot: EnvironmentSnapshot,
    *,
    logger: logging.Logger | None = None,
) -> None:
    """Re-query the required packages and fail if any are still absent."""

    logger = logger or LOG
    packages = query_packages(snapshot.package_manager, list(snapshot.packages))
    still_missing = [name for name, present in packages.items() if not present]
    if still_missing:
        raise DependencyInstallError(
            "Packages still missing after installation: " + ", ".join(still_missing)
        )
    logger.info("Verified %d required package(s)", len(packages))


def install_rust_toolchain(config: Configuration, *, logger: logging.Logger | None = None) -> str:
    """Run the rustup installer and return the verified ``cargo`` version."""

    logger = logger or LOG
    logger.info("Installing Rust toolchain...")

    with tempfile.TemporaryDirectory() as tmpdir:
        installer = Path(tmpdir) / "rustup-init.sh"
        try:
            _download(RUSTUP_URL, installer, logger)
        except OSError as exc:
            raise DependencyInstallError(f"Failed to download the Rust installer from {RUSTUP_URL}: {exc}") from exc

        try:
            run_command(["sh", str(installer), *RUSTUP_ARGS], logger=logger)
        except subprocess.CalledProcessError as exc:
            raise DependencyInstallError(
                f"Rust installer exited with status {exc.returncode}",
                diagnostic=diagnostic_tail(exc.output),
            ) from exc

    version = probe_rust_toolchain(config.home)
    if version is None:
        raise DependencyInstallError(
            f"Rust installer finished but cargo was not found on PATH or in {config.cargo_bin_dir}"
        )
    logger.info("Rust installed: %s", version)
    return version


def _download(url: str, destination: Path, logger: logging.Logger) -> None:
    logger.info("Downloading %s -> %s", url, destination)
    destination.parent.mkdir(parents=True, exist_ok=True)
    with contextlib.closing(urllib.request.urlopen(url)) as response:
        with destination.open("wb") as file_obj:
            while True:
                chunk = response.read(DOWNLOAD_CHUNK_SIZE)
                if not chunk:
                    break
                file_obj.write(chunk)


def _privilege_prefix() -> list[str]:
    if os.geteuid() == 0:
        return []
    sudo = shutil.which("sudo")
    if not sudo:
        raise DependencyInstallError(
            "Installing packages requires root privileges but sudo is unavailable."
        )
    return [sudo]


def package_manager_env() -> dict[str, str]:
    env = os.environ.copy()
    env["DEBIAN_FRONTEND"] = "noninteractive"
    return env


def _install_packages(manager: str, packages: Sequence[str], logger: logging.Logger) -> None:
    if shutil.which(manager) is None:
        raise DependencyInstallError(
            f"Package manager '{manager}' not found. Install manually: {' '.join(packages)}"
        )

    command_prefix = _privilege_prefix() + [manager]
    env = package_manager_env()
    logger.info("Installing missing packages via %s: %s", manager, ", ".join(packages))

    try:
        if manager == "apt-get":
            run_command(command_prefix + ["update", "-qq"], env=env, logger=logger)
            run_command(command_prefix + ["install", "-y", "-qq", *packages], env=env, logger=logger)
        elif manager == "dnf":
            run_command(command_prefix + ["install", "-y", "-q", *packages], env=env, logger=logger)
        else:  # pragma: no cover - guard for future extensions
            raise DependencyInstallError(f"Unsupported package manager: {manager}")
    except subprocess.CalledProcessError as exc:
        raise DependencyInstallError(
            f"{manager} failed with exit code {exc.returncode}",
            diagnostic=diagnostic_tail(exc.output),
        ) from exc
