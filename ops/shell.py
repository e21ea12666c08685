"""Thin wrapper around subprocess for aws, kubectl and helm"""
import json
import logging
import shutil
import subprocess
from typing import Any, Dict, Iterable, List, Optional

from ops.errors import CommandError

logger = logging.getLogger(__name__)


def run(argv: List[str], check: bool = True, capture: bool = True,
        timeout: Optional[float] = None, input_text: Optional[str] = None) -> subprocess.CompletedProcess:
    """
    Run a command

    Raises:
        CommandError: the binary is missing, times out, or (with check) exits non-zero
    """
    logger.debug(f"Running: {' '.join(argv)}")
    try:
        result = subprocess.run(
            argv,
            capture_output=capture,
            text=True,
            timeout=timeout,
            input=input_text,
        )
    except FileNotFoundError:
        raise CommandError(argv, 127, f"{argv[0]} not found on PATH")
    except subprocess.TimeoutExpired:
        raise CommandError(argv, -1, f"timed out after {timeout}s")

    if check and result.returncode != 0:
        raise CommandError(argv, result.returncode, result.stderr)
    return result


def run_json(argv: List[str], timeout: Optional[float] = None) -> Any:
    """Run a command that prints JSON and parse its output"""
    result = run(argv, timeout=timeout)
    try:
        return json.loads(result.stdout or "null")
    except json.JSONDecodeError as e:
        raise CommandError(argv, 0, f"invalid JSON output: {e}")


def command_exists(name: str) -> bool:
    return shutil.which(name) is not None


def check_tools(names: Iterable[str]) -> Dict[str, bool]:
    return {name: command_exists(name) for name in names}


def kubectl(*args: str, **kwargs) -> subprocess.CompletedProcess:
    return run(["kubectl", *args], **kwargs)


def kubectl_json(*args: str) -> Any:
    return run_json(["kubectl", *args, "-o", "json"])


def helm(*args: str, **kwargs) -> subprocess.CompletedProcess:
    return run(["helm", *args], **kwargs)
