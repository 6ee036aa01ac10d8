"""Blocking subprocess execution with output mirrored to the build log."""

from __future__ import annotations

import logging
import subprocess
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Sequence

LOG = logging.getLogger("lnav_wsl_build.commands")

DIAGNOSTIC_TAIL_LINES = 20
COMMAND_NOT_FOUND = 127
COMMAND_CANNOT_EXECUTE = 126


@dataclass
class CommandResult:
    """Light-weight wrapper representing the output of ``run_command``."""

    args: list[str]
    returncode: int
    output: str = ""

    def tail(self, lines: int = DIAGNOSTIC_TAIL_LINES) -> str:
        return diagnostic_tail(self.output, lines)


def diagnostic_tail(text: str | None, lines: int = DIAGNOSTIC_TAIL_LINES) -> str:
    """Return the last *lines* non-empty lines of *text*."""

    if not text:
        return ""
    kept = deque((line for line in text.splitlines() if line.strip()), maxlen=lines)
    return "\n".join(kept)


def format_command(command: Sequence[str]) -> str:
    return " ".join(str(part) for part in command)


def run_command(
    command: Sequence[str],
    *,
    check: bool = True,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    capture_output: bool = False,
    input_text: str | None = None,
    logger: logging.Logger | None = None,
) -> CommandResult:
    """Run *command* to completion while mirroring its output to the logger.

    stdout and stderr are merged and decoded as UTF-8, replacing undecodable
    bytes.  With ``capture_output`` the output is only logged once the process
    has exited, otherwise it is streamed line by line.  A command that cannot
    be started is reported as exit status 127 (missing) or 126 (not
    executable) instead of an ``OSError`` so callers can classify every
    failure the same way.
    """

    logger = logger or LOG
    args = [str(part) for part in command]
    logger.info("$ %s", format_command(args))
    env_dict = dict(env) if env is not None else None

    if cwd is not None and not Path(cwd).is_dir():
        output = f"{args[0]}: working directory does not exist: {cwd}"
        logger.error(output)
        return _finish(args, COMMAND_CANNOT_EXECUTE, output, check)

    try:
        if capture_output or input_text is not None:
            completed = subprocess.run(
                args,
                cwd=cwd,
                env=env_dict,
                check=False,
                encoding="utf-8",
                errors="replace",
                input=input_text,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
            )
            output = completed.stdout or ""
            for line in _iter_output_segments(output):
                logger.info(line)
            returncode = completed.returncode
        else:
            output_lines: list[str] = []
            process = subprocess.Popen(
                args,
                cwd=cwd,
                env=env_dict,
                encoding="utf-8",
                errors="replace",
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
            )
            assert process.stdout is not None  # For type-checkers.
            try:
                for raw_line in process.stdout:
                    for segment in _iter_output_segments(raw_line):
                        logger.info(segment)
                        output_lines.append(segment + "\n")
            finally:
                process.stdout.close()
                returncode = process.wait()
            output = "".join(output_lines)
    except FileNotFoundError as exc:
        output = f"{args[0]}: command not found ({exc.strerror})"
        logger.error(output)
        returncode = COMMAND_NOT_FOUND
    except OSError as exc:
        output = f"{args[0]}: cannot execute ({exc.strerror})"
        logger.error(output)
        returncode = COMMAND_CANNOT_EXECUTE

    return _finish(args, returncode, output, check)


def _finish(args: list[str], returncode: int, output: str, check: bool) -> CommandResult:
    if check and returncode != 0:
        raise subprocess.CalledProcessError(returncode, args, output=output)
    return CommandResult(args, returncode, output)


def _iter_output_segments(text: str) -> list[str]:
    """Return sanitized output *text* split into logical display segments."""

    if not text:
        return []
    return [segment.rstrip() for segment in text.replace("\r", "\n").splitlines() if segment.strip()]
