"""Sequencing of the lnav build stages.

The pipeline walks a fixed order of stages::

    probe -> dependencies -> source -> build -> (install) -> verify

Each stage runs at most once.  A stage whose goal is already satisfied is
recorded as skipped; a disabled stage (``install`` without ``--install``) is
skipped without entering its state.  The first :class:`PipelineError` aborts
the run and no later stage executes.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Callable, Sequence

from artifact_check import Artifact, verify_artifact
from build_config import Configuration
from build_errors import PipelineError
from host_bootstrap import dependencies_satisfied, install_dependencies, verify_dependencies
from host_probe import EnvironmentSnapshot, probe_environment
from native_build import build_artifact, install_artifact
from source_sync import SourceCheckout, synchronize_source, verify_checkout

LOG = logging.getLogger("lnav_wsl_build.pipeline")

STEP_RULE = "━" * 60


class PipelineState(enum.Enum):
    INIT = "init"
    CONFIGURED = "configured"
    PROBED = "probed"
    DEPENDENCIES_READY = "dependencies-ready"
    SOURCE_READY = "source-ready"
    BUILT = "built"
    INSTALLED = "installed"
    VERIFIED = "verified"
    DONE = "done"
    ABORTED = "aborted"


STATE_ORDER = list(PipelineState)


class StageStatus(str, enum.Enum):
    SKIPPED = "skipped"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class StageResult:
    stage: str
    status: StageStatus
    detail: str
    error_kind: str | None = None
    diagnostic: str = ""


@dataclass
class PipelineContext:
    """State accumulated by the stages of one run."""

    config: Configuration
    snapshot: EnvironmentSnapshot | None = None
    checkout: SourceCheckout | None = None
    artifact: Artifact | None = None

    def require_snapshot(self) -> EnvironmentSnapshot:
        if self.snapshot is None:
            raise RuntimeError("environment has not been probed yet")
        return self.snapshot


def _always_enabled(_: Configuration) -> bool:
    return True


def _never_satisfied(_: PipelineContext) -> str | None:
    return None


def _no_postcondition(_: PipelineContext) -> None:
    return None


@dataclass(frozen=True)
class Stage:
    """One named unit of pipeline work.

    ``skip_reason`` is the idempotency predicate: it returns a reason when the
    stage's goal is already met.  ``action`` does the work and returns a short
    detail string; ``verify`` checks the outcome and raises on failure.
    """

    name: str
    title: str
    reaches: PipelineState
    action: Callable[[PipelineContext], str]
    enabled: Callable[[Configuration], bool] = _always_enabled
    skip_reason: Callable[[PipelineContext], str | None] = _never_satisfied
    verify: Callable[[PipelineContext], None] = _no_postcondition
    disabled_reason: str = "not requested"


@dataclass
class PipelineRun:
    results: list[StageResult] = field(default_factory=list)
    state: PipelineState = PipelineState.INIT
    failed_stage: str | None = None
    checkout: SourceCheckout | None = None
    artifact: Artifact | None = None

    @property
    def succeeded(self) -> bool:
        return self.state is PipelineState.DONE

    @property
    def failure(self) -> StageResult | None:
        for result in self.results:
            if result.status is StageStatus.FAILED:
                return result
        return None

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1


# --- stage actions ---------------------------------------------------------


def _probe(context: PipelineContext) -> str:
    snapshot = probe_environment(context.config)
    context.snapshot = snapshot
    missing = len(snapshot.missing_packages)
    rust = snapshot.rust_version or "no Rust toolchain"
    return (
        f"{snapshot.os_release.name} {snapshot.os_release.version_id}".strip()
        + f"; {missing} package(s) missing; {rust}; working copy {snapshot.working_copy.value}"
    )


def _dependencies_skip_reason(context: PipelineContext) -> str | None:
    if dependencies_satisfied(context.config, context.require_snapshot()):
        return "all required packages already installed"
    return None


def _install_dependencies(context: PipelineContext) -> str:
    return install_dependencies(context.config, context.require_snapshot())


def _verify_dependencies(context: PipelineContext) -> None:
    verify_dependencies(context.config, context.require_snapshot())


def _synchronize(context: PipelineContext) -> str:
    checkout = synchronize_source(context.config)
    context.checkout = checkout
    return f"{checkout.action} at {checkout.commit} - {checkout.subject}"


def _verify_source(context: PipelineContext) -> None:
    verify_checkout(context.config)


def _build(context: PipelineContext) -> str:
    path = build_artifact(context.config)
    return f"make -j{context.config.jobs} finished; expecting {path}"


def _install(context: PipelineContext) -> str:
    return install_artifact(context.config)


def _verify(context: PipelineContext) -> str:
    artifact = verify_artifact(context.config)
    context.artifact = artifact
    return f"{artifact.version} ({artifact.size_text})"


def default_stages() -> list[Stage]:
    return [
        Stage("probe", "Inspecting host environment", PipelineState.PROBED, _probe),
        Stage(
            "dependencies",
            "Installing build dependencies",
            PipelineState.DEPENDENCIES_READY,
            _install_dependencies,
            skip_reason=_dependencies_skip_reason,
            verify=_verify_dependencies,
        ),
        Stage(
            "source",
            "Getting source code",
            PipelineState.SOURCE_READY,
            _synchronize,
            verify=_verify_source,
        ),
        Stage("build", "Configuring and building lnav", PipelineState.BUILT, _build),
        Stage(
            "install",
            "Installing lnav",
            PipelineState.INSTALLED,
            _install,
            enabled=lambda config: config.install_after_build,
            disabled_reason="not requested (--install not given)",
        ),
        Stage("verify", "Verifying lnav binary", PipelineState.VERIFIED, _verify),
    ]


def check_stage_order(stages: Sequence[Stage]) -> None:
    """Reject stage lists that repeat a stage or move backwards in state order."""

    seen: set[str] = set()
    previous = STATE_ORDER.index(PipelineState.CONFIGURED)
    for stage in stages:
        if stage.name in seen:
            raise ValueError(f"stage '{stage.name}' appears more than once")
        seen.add(stage.name)
        position = STATE_ORDER.index(stage.reaches)
        if position <= previous or stage.reaches in (PipelineState.DONE, PipelineState.ABORTED):
            raise ValueError(f"stage '{stage.name}' is out of order ({stage.reaches.value})")
        previous = position


def _log_step(index: int, total: int, stage: Stage, logger: logging.Logger) -> None:
    logger.info(STEP_RULE)
    logger.info("  Step %d/%d: %s", index, total, stage.title)
    logger.info(STEP_RULE)


def run_pipeline(
    config: Configuration,
    stages: Sequence[Stage] | None = None,
    *,
    logger: logging.Logger | None = None,
) -> PipelineRun:
    """Run *stages* (the default lnav pipeline when omitted) fail-fast."""

    logger = logger or LOG
    stages = list(stages) if stages is not None else default_stages()
    check_stage_order(stages)

    run = PipelineRun(state=PipelineState.CONFIGURED)
    context = PipelineContext(config=config)
    total = len(stages)

    for index, stage in enumerate(stages, start=1):
        _log_step(index, total, stage, logger)

        if not stage.enabled(config):
            logger.info("Skipping %s: %s", stage.name, stage.disabled_reason)
            run.results.append(StageResult(stage.name, StageStatus.SKIPPED, stage.disabled_reason))
            continue

        try:
            reason = stage.skip_reason(context)
            if reason is not None:
                logger.info("Skipping %s: %s", stage.name, reason)
                result = StageResult(stage.name, StageStatus.SKIPPED, reason)
            else:
                detail = stage.action(context)
                stage.verify(context)
                result = StageResult(stage.name, StageStatus.SUCCEEDED, detail)
        except PipelineError as exc:
            run.results.append(
                StageResult(
                    stage.name,
                    StageStatus.FAILED,
                    str(exc),
                    error_kind=exc.kind,
                    diagnostic=exc.diagnostic,
                )
            )
            run.failed_stage = stage.name
            run.state = PipelineState.ABORTED
            run.checkout = context.checkout
            logger.error("Stage '%s' failed with %s: %s", stage.name, exc.kind, exc)
            return run

        run.results.append(result)
        run.state = stage.reaches
        if result.status is StageStatus.SUCCEEDED:
            logger.info("%s: %s", stage.name, result.detail)

    run.checkout = context.checkout
    run.artifact = context.artifact
    run.state = PipelineState.DONE
    return run
