"""Install script fetching and execution.

Root-management modules and Baseband-guard ship a `setup.sh` that is
downloaded over HTTPS and piped into `bash -s <args>` from the kernel
tree root, where it vendors its sources and wires them into Kbuild.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import httpx

from esk_kernel.errors import ExternalFetchFailure

if TYPE_CHECKING:
    from esk_kernel.plan.models import InstallStep

logger = logging.getLogger(__name__)

# Default timeout for script downloads (seconds)
SCRIPT_FETCH_TIMEOUT = 60.0


class ScriptError(Exception):
    """Raised when an install script exits non-zero."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "script_error",
        output: str = "",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.code = code
        self.output = output


def fetch_script(
    url: str,
    client: httpx.Client | None = None,
    timeout: float = SCRIPT_FETCH_TIMEOUT,
) -> str:
    """Download an install script.

    Args:
        url: Script URL; redirects are followed.
        client: HTTPX client instance (a temporary one is used if omitted).
        timeout: Request timeout in seconds.

    Returns:
        Script text.

    Raises:
        ExternalFetchFailure: If the download fails.
    """
    logger.debug("Fetching install script %s", url)
    own_client = client is None
    if client is None:
        client = httpx.Client(follow_redirects=True)
    try:
        response = client.get(url, timeout=timeout, follow_redirects=True)
        response.raise_for_status()
        return response.text
    except httpx.HTTPStatusError as e:
        raise ExternalFetchFailure(
            url, f"HTTP {e.response.status_code} {e.response.reason_phrase}"
        ) from e
    except httpx.TimeoutException as e:
        raise ExternalFetchFailure(url, "timed out") from e
    except httpx.RequestError as e:
        raise ExternalFetchFailure(url, f"network error: {e}") from e
    finally:
        if own_client:
            client.close()


def run_script(
    script: str,
    cwd: Path,
    args: tuple[str, ...] | list[str] = (),
    quiet: bool = False,
    timeout: int | None = None,
) -> None:
    """Run a shell script with `bash -s` in a directory.

    Raises:
        ScriptError: If the script fails, times out, or bash cannot run.
    """
    cmd = ["bash", "-s", *args]
    logger.info("Running %s in %s", shlex.join(cmd), cwd)
    try:
        result = subprocess.run(
            cmd,
            input=script,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        raise ScriptError(
            f"Script timed out after {timeout}s", exit_code=-1, code="script_timeout"
        ) from e
    except OSError as e:
        raise ScriptError(
            f"Failed to execute bash: {e}", code="execution_error"
        ) from e

    output = (result.stdout or "") + (result.stderr or "")
    if not quiet:
        for line in output.splitlines():
            logger.info("| %s", line)
    if result.returncode != 0:
        raise ScriptError(
            f"Script exited with code {result.returncode}",
            exit_code=result.returncode,
            output=output.strip(),
        )


class Installer(Protocol):
    """Capability to execute an InstallStep inside a kernel tree."""

    def install(self, step: InstallStep, tree: Path) -> None: ...


class ScriptInstaller:
    """Fetch a step's setup script over HTTPS and run it in the tree."""

    def __init__(
        self,
        client: httpx.Client | None = None,
        fetch_timeout: float = SCRIPT_FETCH_TIMEOUT,
        run_timeout: int | None = None,
    ) -> None:
        self.client = client
        self.fetch_timeout = fetch_timeout
        self.run_timeout = run_timeout

    def install(self, step: InstallStep, tree: Path) -> None:
        script = fetch_script(step.script_url, self.client, self.fetch_timeout)
        run_script(
            script,
            cwd=tree,
            args=step.args,
            quiet=step.quiet,
            timeout=self.run_timeout,
        )


__all__ = [
    "SCRIPT_FETCH_TIMEOUT",
    "Installer",
    "ScriptError",
    "ScriptInstaller",
    "fetch_script",
    "run_script",
]
