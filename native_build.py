"""Drive lnav's autotools build: autogen, configure, make and make install."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from pathlib import Path

from build_config import Configuration
from build_errors import BuildError, ConfigureError
from command_runner import diagnostic_tail, run_command

LOG = logging.getLogger("lnav_wsl_build.native")

INSTALL_PREFIX = "/usr/local"
OPTIMIZATION_FLAGS = "-O2"


def derive_configure_args(config: Configuration) -> list[str]:
    """Map *config* onto the arguments passed to lnav's ``configure`` script.

    The compiler flags replace autoconf's ``-g -O2`` default so the build is
    optimized and carries no debug information.
    """

    args: list[str] = []
    if not config.with_rust:
        args.append("--without-cargo")
    if config.static_build:
        args.append("--enable-static")
        args.append("LDFLAGS=-static")
    args.extend(
        [
            f"CPPFLAGS={OPTIMIZATION_FLAGS}",
            f"CXXFLAGS={OPTIMIZATION_FLAGS}",
            f"CFLAGS={OPTIMIZATION_FLAGS}",
            f"--prefix={INSTALL_PREFIX}",
        ]
    )
    return args


def build_env(config: Configuration) -> dict[str, str]:
    env = os.environ.copy()
    if config.with_rust:
        # configure looks for cargo on PATH; rustup installs into ~/.cargo/bin.
        cargo_bin = str(config.cargo_bin_dir)
        path_entries = env.get("PATH", "").split(os.pathsep)
        if cargo_bin not in path_entries:
            env["PATH"] = os.pathsep.join([cargo_bin, *[entry for entry in path_entries if entry]])
    return env


def prepare_build_directory(config: Configuration, *, logger: logging.Logger) -> None:
    path = config.build_dir
    try:
        if config.clean_build and path.exists():
            logger.info("Removing existing build directory: %s", path)
            shutil.rmtree(path)
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ConfigureError(f"Unable to prepare build directory {path}: {exc}") from exc


def run_autogen(config: Configuration, env: dict[str, str], *, logger: logging.Logger) -> None:
    script = config.source_dir / "autogen.sh"
    if not script.exists():
        raise ConfigureError(f"autogen.sh not found in {config.source_dir}")
    try:
        run_command(["./autogen.sh"], cwd=config.source_dir, env=env, logger=logger)
    except subprocess.CalledProcessError as exc:
        raise ConfigureError(
            f"autogen.sh failed with exit code {exc.returncode}",
            diagnostic=diagnostic_tail(exc.output),
        ) from exc
    logger.info("autogen.sh completed")


def run_configure(config: Configuration, env: dict[str, str], *, logger: logging.Logger) -> None:
    args = derive_configure_args(config)
    logger.info("Running configure with: %s", " ".join(args))
    try:
        run_command([str(config.source_dir / "configure"), *args], cwd=config.build_dir, env=env, logger=logger)
    except subprocess.CalledProcessError as exc:
        raise ConfigureError(
            f"configure failed with exit code {exc.returncode}",
            diagnostic=diagnostic_tail(exc.output),
        ) from exc
    logger.info("Configuration completed")


def run_make(config: Configuration, env: dict[str, str], *, logger: logging.Logger) -> None:
    logger.info("Building with %d parallel jobs...", config.jobs)
    logger.info("This may take 3-10 minutes depending on your hardware.")
    try:
        run_command(["make", f"-j{config.jobs}"], cwd=config.build_dir, env=env, logger=logger)
    except subprocess.CalledProcessError as exc:
        raise BuildError(
            f"make failed with exit code {exc.returncode}",
            diagnostic=diagnostic_tail(exc.output),
        ) from exc
    logger.info("Build completed!")


def build_artifact(config: Configuration, *, logger: logging.Logger | None = None) -> Path:
    """Configure and compile lnav, returning the expected binary location.

    The path is returned whether or not the binary exists; checking for it is
    the verifier's job.
    """

    logger = logger or LOG
    env = build_env(config)
    run_autogen(config, env, logger=logger)
    prepare_build_directory(config, logger=logger)
    run_configure(config, env, logger=logger)
    run_make(config, env, logger=logger)
    return config.artifact_path


def install_artifact(config: Configuration, *, logger: logging.Logger | None = None) -> str:
    logger = logger or LOG
    command = ["make", "install"]
    if os.geteuid() != 0:
        command.insert(0, "sudo")
    try:
        run_command(command, cwd=config.build_dir, env=build_env(config), logger=logger)
    except subprocess.CalledProcessError as exc:
        raise BuildError(
            f"make install failed with exit code {exc.returncode}",
            diagnostic=diagnostic_tail(exc.output),
        ) from exc
    destination = Path(INSTALL_PREFIX) / "bin" / "lnav"
    logger.info("lnav installed to %s", destination)
    return f"installed to {destination}"
