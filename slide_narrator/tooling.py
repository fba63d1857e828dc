from __future__ import annotations

import json
import logging
import subprocess
from pathlib import Path
from typing import Sequence, Type

from .errors import PipelineError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 600.0
STDERR_TAIL = 2000


def run_tool(
    args: Sequence[str],
    *,
    error_cls: Type[PipelineError],
    stage: str,
    timeout: float = DEFAULT_TIMEOUT,
) -> subprocess.CompletedProcess:
    """Run an external program, raising ``error_cls`` for ``stage`` if it fails or times out."""

    command = [str(arg) for arg in args]
    logger.debug("Running %s: %s", stage, " ".join(command))
    try:
        result = subprocess.run(command, capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError as exc:
        raise error_cls(
            f"{command[0]} command not found",
            stage=stage,
            diagnostics={"command": command},
        ) from exc
    except subprocess.TimeoutExpired as exc:
        raise error_cls(
            f"{command[0]} timed out after {timeout:.0f}s",
            stage=stage,
            diagnostics={"command": command, "timeout": timeout},
        ) from exc

    if result.returncode != 0:
        stderr = (result.stderr or "")[-STDERR_TAIL:]
        raise error_cls(
            f"{command[0]} exited with status {result.returncode}",
            stage=stage,
            diagnostics={"command": command, "returncode": result.returncode, "stderr": stderr},
        )
    return result


def ensure_tool(args: Sequence[str], *, error_cls: Type[PipelineError], stage: str, hint: str) -> None:
    """Fail early with an install hint when a required binary is unavailable."""

    try:
        subprocess.run([str(arg) for arg in args], capture_output=True, timeout=30)
    except (FileNotFoundError, subprocess.TimeoutExpired) as exc:
        raise error_cls(f"{args[0]} command not found.\nInstall: {hint}", stage=stage) from exc


def probe_duration(media_path: Path, timeout: float = 60.0) -> float:
    """Return the media duration in seconds, or 0.0 when it cannot be measured."""

    cmd = ["ffprobe", "-v", "quiet", "-print_format", "json", "-show_format", str(media_path)]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
        probe_data = json.loads(result.stdout)
        return float(probe_data["format"]["duration"])
    except (OSError, subprocess.TimeoutExpired, ValueError, KeyError, TypeError) as exc:
        logger.warning("Could not determine duration of %s: %s", media_path, exc)
        return 0.0
