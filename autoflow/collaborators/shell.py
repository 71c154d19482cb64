"""Build and test runners that shell out to the project's own toolchain."""

import logging
import re
import shlex
import subprocess
import time
from pathlib import Path
from typing import Optional

from autoflow.collaborators.protocols import CollaboratorError
from autoflow.config import get_settings
from autoflow.schema import BuildResult, TestResult

logger = logging.getLogger(__name__)

_MAVEN_SUMMARY = re.compile(
    r"Tests run:\s*(\d+),\s*Failures:\s*(\d+),\s*Errors:\s*(\d+),\s*Skipped:\s*(\d+)"
)
_PYTEST_COUNT = re.compile(r"(\d+) (passed|failed|error|errors|skipped)")
_ERROR_LINE = re.compile(r"\[ERROR\]|error:|Error:|FAILED|Traceback")


def run_command(cmd: str, cwd: str, timeout: int) -> tuple[int, str]:
    """Run a shell command, returning (exit code, combined output).

    Raises:
        CollaboratorError: If the command cannot start or times out.
    """
    logger.info("Running '%s' in %s", cmd, cwd)
    try:
        completed = subprocess.run(
            shlex.split(cmd),
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise CollaboratorError(f"'{cmd}' timed out after {timeout}s") from e
    except OSError as e:
        raise CollaboratorError(f"Cannot run '{cmd}': {e}") from e
    return completed.returncode, (completed.stdout or "") + (completed.stderr or "")


def extract_error_lines(output: str, limit: int = 50) -> str:
    """Keep the lines of a build log that look like errors."""
    lines = [line for line in output.splitlines() if _ERROR_LINE.search(line)]
    return "\n".join(lines[:limit]) if lines else output[-4000:]


class ShellBuildRunner:
    """Compile the workspace with a configured command."""

    def __init__(self, command: Optional[str] = None, timeout: Optional[int] = None):
        settings = get_settings()
        self.command = command or settings.build_command
        self.timeout = timeout or settings.command_timeout_seconds

    def build_and_verify(self, workspace: str) -> BuildResult:
        if not Path(workspace).is_dir():
            raise CollaboratorError(f"Workspace not found: {workspace}")

        started = time.monotonic()
        code, output = run_command(self.command, workspace, self.timeout)
        duration_ms = int((time.monotonic() - started) * 1000)

        if code == 0:
            return BuildResult(success=True, duration_ms=duration_ms)
        return BuildResult(success=False, error_log=extract_error_lines(output), duration_ms=duration_ms)


def parse_test_output(output: str, exit_code: int) -> TestResult:
    """Parse Maven surefire or pytest summaries into a TestResult."""
    passed = failed = skipped = 0

    maven = _MAVEN_SUMMARY.findall(output)
    if maven:
        # Surefire prints a grand total last
        run, failures, errors, skip = (int(n) for n in maven[-1])
        failed = failures + errors
        skipped = skip
        passed = max(run - failed - skipped, 0)
    else:
        for count, label in _PYTEST_COUNT.findall(output):
            if label == "passed":
                passed = int(count)
            elif label == "skipped":
                skipped = int(count)
            else:
                failed += int(count)

    failed_names = [
        line.strip()
        for line in output.splitlines()
        if line.startswith("FAILED ") or line.startswith("ERROR ") or "<<< FAILURE!" in line
    ]

    return TestResult(
        passed=passed,
        failed=failed,
        skipped=skipped,
        failed_names=failed_names,
        log=output[-20000:],
        success=exit_code == 0,
    )


class ShellTestRunner:
    """Run the workspace's test suite with a configured command."""

    __test__ = False

    def __init__(self, command: Optional[str] = None, timeout: Optional[int] = None):
        settings = get_settings()
        self.command = command or settings.test_command
        self.timeout = timeout or settings.command_timeout_seconds

    def run_tests(self, workspace: str) -> TestResult:
        if not Path(workspace).is_dir():
            raise CollaboratorError(f"Workspace not found: {workspace}")
        code, output = run_command(self.command, workspace, self.timeout)
        return parse_test_output(output, code)
