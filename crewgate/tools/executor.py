"""Shell command execution with safety checks and sandboxing."""

import asyncio
import logging
import os
import resource
import signal
import time
from dataclasses import dataclass
from typing import Optional

from crewgate.constants import (
    BASH_ENV_PASSTHROUGH,
    DANGEROUS_PATTERNS,
    DEFAULT_BASH_TIMEOUT_MS,
    MAX_BASH_OUTPUT_BYTES,
)
from crewgate.errors import TurnAborted
from crewgate.tools.base import (
    ToolContext,
    ToolExecutionResult,
    coerce_command,
    error,
    get_int,
    get_string,
)
from crewgate.utils.cancel import CancellationToken
from crewgate.utils.paths import PathGuard

logger = logging.getLogger(__name__)

_READ_CHUNK = 64 * 1024


@dataclass
class ExecResult:
    """Result of command execution."""

    success: bool
    stdout: str
    stderr: str
    exit_code: int
    duration_ms: int
    command: str
    timed_out: bool = False
    truncated: bool = False

    def format_output(self) -> str:
        output = self.stdout
        if self.stderr:
            output += f"\n[stderr]\n{self.stderr}"
        if self.truncated:
            output += "\n[output truncated]"
        return output.strip()


class Executor:
    """Runs shell commands inside the allowed scope with a hard timeout."""

    def __init__(
        self,
        guard: PathGuard,
        timeout_ms: int = DEFAULT_BASH_TIMEOUT_MS,
        max_output_bytes: int = MAX_BASH_OUTPUT_BYTES,
    ):
        """Initialize executor.

        Args:
            guard: Path guard used to vet the working directory
            timeout_ms: Private upper bound on any command's runtime
            max_output_bytes: Cap on captured stdout and stderr, each
        """
        self.guard = guard
        self.timeout_ms = timeout_ms
        self.max_output_bytes = max_output_bytes

    async def bash(self, params: dict, context: ToolContext) -> ToolExecutionResult:
        """Bash tool entry point."""
        command = coerce_command(params)
        if not command:
            return error("Bash tool requires command.")

        requested_cwd = get_string(params.get("cwd"))
        if requested_cwd:
            cwd = requested_cwd if os.path.isabs(requested_cwd) else os.path.join(context.cwd, requested_cwd)
            cwd = os.path.normpath(cwd)
        else:
            cwd = context.cwd

        if not self.guard.is_path_allowed(cwd):
            return error(f"Bash cwd is not allowed: {cwd}")

        requested_ms = get_int(params, "timeout_ms", "timeoutMs", default=self.timeout_ms)
        timeout_ms = min(requested_ms, self.timeout_ms) if requested_ms > 0 else self.timeout_ms

        result = await self.run(command, cwd, timeout_ms / 1000, context.cancel)
        if result.success:
            return ToolExecutionResult(
                content=result.format_output() or "Command completed with no output."
            )

        if result.timed_out:
            reason = f"Command timed out after {timeout_ms / 1000:g}s"
        elif result.exit_code == -1:
            reason = result.stderr
        else:
            reason = f"Command failed with exit code {result.exit_code}"
        output = result.format_output() if result.exit_code != -1 else ""
        return error(f"Bash failed: {reason}" + (f"\n{output}" if output else ""))

    async def run(
        self,
        command: str,
        cwd: str,
        timeout: float,
        cancel: Optional[CancellationToken] = None,
    ) -> ExecResult:
        """Run a command.

        Args:
            command: Command to execute
            cwd: Working directory (already validated)
            timeout: Timeout in seconds
            cancel: Turn cancellation token

        Returns:
            ExecResult with execution details

        Raises:
            TurnAborted: If the token is cancelled while the command runs
        """
        cancel = cancel or CancellationToken()

        is_dangerous, reason = self.is_dangerous(command)
        if is_dangerous:
            return ExecResult(
                success=False,
                stdout="",
                stderr=f"Command blocked: {reason}",
                exit_code=-1,
                duration_ms=0,
                command=command,
            )

        start_time = time.monotonic()
        try:
            process = await asyncio.create_subprocess_shell(
                command,
                cwd=cwd,
                env=self._prepare_env(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                preexec_fn=self._setup_sandbox,
                start_new_session=True,
            )
        except OSError as e:
            return ExecResult(
                success=False,
                stdout="",
                stderr=f"Execution error: {e}",
                exit_code=-1,
                duration_ms=int((time.monotonic() - start_time) * 1000),
                command=command,
            )

        async def collect() -> tuple[tuple[bytes, bool], tuple[bytes, bool], int]:
            return await asyncio.gather(
                self._read_capped(process.stdout),
                self._read_capped(process.stderr),
                process.wait(),
            )

        try:
            (stdout, out_cut), (stderr, err_cut), exit_code = await cancel.run(
                collect(), timeout=timeout
            )
        except asyncio.TimeoutError:
            await self._kill(process)
            return ExecResult(
                success=False,
                stdout="",
                stderr="",
                exit_code=-1,
                duration_ms=int((time.monotonic() - start_time) * 1000),
                command=command,
                timed_out=True,
            )
        except TurnAborted:
            logger.debug("Killing cancelled command: %s", command)
            await self._kill(process)
            raise

        return ExecResult(
            success=exit_code == 0,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            exit_code=exit_code,
            duration_ms=int((time.monotonic() - start_time) * 1000),
            command=command,
            truncated=out_cut or err_cut,
        )

    def is_dangerous(self, command: str) -> tuple[bool, str]:
        """Check if a command matches dangerous patterns.

        Args:
            command: Command to check

        Returns:
            Tuple of (is_dangerous, reason)
        """
        for pattern, reason in DANGEROUS_PATTERNS:
            if pattern.search(command):
                return True, reason

        return False, ""

    async def _read_capped(self, stream: Optional[asyncio.StreamReader]) -> tuple[bytes, bool]:
        """Drain a pipe, keeping at most max_output_bytes."""
        if stream is None:
            return b"", False
        kept = bytearray()
        truncated = False
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                break
            room = self.max_output_bytes - len(kept)
            if room > 0:
                kept.extend(chunk[:room])
            if len(chunk) > room:
                truncated = True
        return bytes(kept), truncated

    async def _kill(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            try:
                os.killpg(process.pid, signal.SIGKILL)
            except (ProcessLookupError, PermissionError):
                process.kill()
        await process.wait()

    def _prepare_env(self) -> dict[str, str]:
        """Prepare environment variables for sandboxed execution.

        Returns:
            Dictionary of environment variables
        """
        return {var: os.environ[var] for var in BASH_ENV_PASSTHROUGH if var in os.environ}

    def _setup_sandbox(self) -> None:
        """Setup resource limits for sandboxed execution.

        Called via preexec_fn before command execution.
        """
        cpu_seconds = max(int(self.timeout_ms / 1000) + 5, 10)
        try:
            resource.setrlimit(resource.RLIMIT_CPU, (cpu_seconds, cpu_seconds))
            resource.setrlimit(resource.RLIMIT_CORE, (0, 0))
        except (ValueError, OSError):
            # Already limited more tightly by the parent
            pass
