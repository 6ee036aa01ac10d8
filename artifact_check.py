"""Post-build verification of the lnav binary.

Verification only reads and executes the binary; it never modifies it.
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path

from build_config import Configuration
from build_errors import VerificationError
from command_runner import CommandResult, diagnostic_tail, run_command

LOG = logging.getLogger("lnav_wsl_build.verify")

SMOKE_TEST_LINE = "Dec 02 12:00:00 testhost myapp[1234]: Build successful - lnav is working!\n"
VERSION_ARGS = ("-V",)
# -n runs lnav headless: it reads stdin, prints the result and exits.
SMOKE_TEST_ARGS = ("-n",)


@dataclass(frozen=True)
class Artifact:
    """The built executable together with its self-reported version."""

    path: Path
    version: str
    size_bytes: int

    @property
    def size_text(self) -> str:
        return format_bytes(self.size_bytes)


def format_bytes(value: float) -> str:
    units = ["B", "KiB", "MiB", "GiB", "TiB"]
    unit_index = 0
    while abs(value) >= 1024 and unit_index < len(units) - 1:
        value /= 1024
        unit_index += 1
    if abs(value) >= 10 or unit_index == 0:
        return f"{value:.0f} {units[unit_index]}"
    return f"{value:.1f} {units[unit_index]}"


def _run_binary(path: Path, args: tuple[str, ...], *, input_text: str | None, logger: logging.Logger) -> CommandResult:
    try:
        return run_command([str(path), *args], capture_output=True, input_text=input_text, logger=logger)
    except subprocess.CalledProcessError as exc:
        raise VerificationError(
            f"'{path.name} {' '.join(args)}' exited with status {exc.returncode}",
            diagnostic=diagnostic_tail(exc.output),
        ) from exc


def verify_artifact(config: Configuration, *, logger: logging.Logger | None = None) -> Artifact:
    """Check the binary exists, report its version and run the smoke test."""

    logger = logger or LOG
    path = config.artifact_path
    if not path.is_file() or not os.access(path, os.X_OK):
        raise VerificationError(
            f"Binary not found at expected location {path}. "
            "The build reported success but produced no executable; check the build output above."
        )
    logger.info("Binary location: %s", path)

    version_result = _run_binary(path, VERSION_ARGS, input_text=None, logger=logger)
    version_lines = [line.strip() for line in version_result.output.splitlines() if line.strip()]
    version = version_lines[0] if version_lines else "unknown"
    logger.info("Version info: %s", version)

    logger.info("Quick functional test:")
    _run_binary(path, SMOKE_TEST_ARGS, input_text=SMOKE_TEST_LINE, logger=logger)

    artifact = Artifact(path=path, version=version, size_bytes=path.stat().st_size)
    logger.info("Binary size: %s", artifact.size_text)
    return artifact
