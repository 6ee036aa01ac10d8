#!/usr/bin/env python3
"""lnav WSL2 build helper.

Clones lnav from GitHub and builds it in WSL2's native filesystem, where
compilation is much faster than on the mounted Windows drives.  A run
performs these stages in order, stopping at the first failure:

* ``probe``: inspect the distribution, installed packages, Rust toolchain
  and the state of the existing checkout.
* ``dependencies``: install missing Ubuntu/Debian packages (and Rust when
  ``--with-rust`` is given).
* ``source``: clone ``~/lnav-src`` or force it to match the remote branch.
* ``build``: run ``autogen.sh``, ``configure`` and ``make`` in ``~/lnav-build``.
* ``install``: ``make install`` into ``/usr/local`` (only with ``--install``).
* ``verify``: confirm the binary exists, report its version and smoke-test it.

Every run can be repeated safely: a second invocation skips what is already
in place.  Console output is mirrored to ``~/lnav-build.log``.
"""

from __future__ import annotations

import logging
import sys
from typing import Sequence

from build_config import Configuration, describe, resolve_configuration
from build_errors import HostEnvironmentError, ValidationError
from build_pipeline import PipelineRun, StageStatus, run_pipeline

LOG = logging.getLogger("lnav_wsl_build")

BANNER = "lnav WSL2 Build Helper"


def setup_logging(config: Configuration) -> None:
    log_path = config.log_path
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, mode="w")
    except OSError as exc:
        raise HostEnvironmentError(f"Unable to open log file {log_path}: {exc}") from exc

    LOG.setLevel(logging.INFO)
    LOG.handlers.clear()

    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")

    file_handler.setFormatter(formatter)
    file_handler.setLevel(logging.INFO)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.setLevel(logging.INFO)

    LOG.addHandler(file_handler)
    LOG.addHandler(console_handler)


def log_configuration(config: Configuration) -> None:
    LOG.info(BANNER)
    for label, value in describe(config):
        LOG.info("%-17s %s", f"{label}:", value)
    LOG.info("Log file:         %s", config.log_path)


def log_summary(run: PipelineRun) -> None:
    """Emit the per-stage outcome followed by success hints or the failure."""

    LOG.info("Stage summary:")
    for result in run.results:
        LOG.info("  %-13s %-9s %s", result.stage, result.status.value, result.detail)

    failure = run.failure
    if failure is not None:
        LOG.error("Build aborted in stage '%s' (%s): %s", failure.stage, failure.error_kind, failure.detail)
        if failure.diagnostic:
            LOG.error("Last lines of tool output:")
            for line in failure.diagnostic.splitlines():
                LOG.error("  %s", line)
        LOG.error("Fix the problem above and re-run; completed work will be reused.")
        return

    artifact = run.artifact
    if artifact is None:  # pragma: no cover - the verify stage always sets it
        return
    LOG.info("Build Complete!")
    LOG.info("Binary location: %s", artifact.path)
    LOG.info("Version:         %s", artifact.version)
    LOG.info("Binary size:     %s", artifact.size_text)
    if run.checkout is not None:
        LOG.info("Commit:          %s - %s", run.checkout.commit, run.checkout.subject)

    LOG.info("Usage examples:")
    LOG.info("  # Run directly:")
    LOG.info("  %s /var/log/syslog", artifact.path)
    LOG.info("  # View Windows log files:")
    LOG.info("  %s /mnt/c/path/to/logfile.log", artifact.path)
    LOG.info("  # Add alias to ~/.bashrc:")
    LOG.info("  echo 'alias lnav=\"%s\"' >> ~/.bashrc", artifact.path)
    installed = any(
        result.stage == "install" and result.status is StageStatus.SUCCEEDED for result in run.results
    )
    if installed:
        LOG.info("  # Or just run (already installed):")
        LOG.info("  lnav /var/log/syslog")
    LOG.info("All done!")


def main(argv: Sequence[str] | None = None) -> int:
    try:
        config = resolve_configuration(argv)
    except ValidationError as exc:
        print(f"error: {exc}", file=sys.stderr)
        print("Use --help for usage information", file=sys.stderr)
        return 1

    try:
        setup_logging(config)
    except HostEnvironmentError as exc:
        print(f"error: {exc.kind}: {exc}", file=sys.stderr)
        return 1
    log_configuration(config)
    run = run_pipeline(config)
    log_summary(run)
    return run.exit_code


if __name__ == "__main__":
    sys.exit(main())
