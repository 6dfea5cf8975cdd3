"""
winnode/utils/async_command_runner.py

Provides a reusable asynchronous command runner with retry logic. Both the
cluster access layer (kubectl) and the remote configuration layer (ssh/scp)
go through `run_command`, so every subprocess failure surfaces as a
CommandError carrying the exit code and the captured stderr.

Usage example:
    from winnode.utils.async_command_runner import run_command, CommandError

    try:
        output = await run_command(["kubectl", "get", "nodes", "-o", "json"], retries=0)
    except CommandError as err:
        print(f"Command failed: {err} ({err.stderr})")
"""

from __future__ import annotations

import os
import asyncio
from typing import Dict, List, Optional

from winnode.utils.async_retry import async_retry


class CommandError(Exception):
    """Represents a failure when executing a shell command.

    Attributes:
        message (str): The error message describing the command failure.
        return_code (Optional[int]): The exit code if available.
        stderr (str): Captured standard error, empty when not captured.
    """

    def __init__(
        self, message: str, return_code: Optional[int] = None, stderr: str = ""
    ) -> None:
        super().__init__(message)
        self.return_code = return_code
        self.stderr = stderr


async def run_command(
    command: List[str],
    *,
    sensitive: bool = True,
    env: Optional[Dict[str, str]] = None,
    cwd: Optional[str] = None,
    input_data: Optional[str] = None,
    successful_return_codes: Optional[List[int]] = None,
    retries: int = 3,
    retry_delay: float = 1.0,
) -> str:
    """
    Executes a local command in a subprocess, asynchronously, with optional retries.

    If the command fails (return code not in successful_return_codes), we raise
    CommandError. When `sensitive=True`, we omit the command and stdout from the
    error message; stderr is always kept on the exception so callers can
    classify the failure.

    Args:
        command (List[str]):
            The command and arguments to execute.
        sensitive (bool):
            If True, hides command details in the raised error message.
        env (Optional[Dict[str, str]]):
            Additional environment variables to add or override.
        cwd (Optional[str]):
            Working directory for the command.
        input_data (Optional[str]):
            If provided, passed to stdin.
        successful_return_codes (Optional[List[int]]):
            Which return codes won't be treated as errors. Defaults to [0].
        retries (int):
            Total number of attempts; 0 or 1 means a single attempt.
        retry_delay (float):
            Delay in seconds between retries.

    Returns:
        str: The captured stdout of the command on success.

    Raises:
        CommandError: If the command fails after all retries.
    """
    ok_codes = successful_return_codes or [0]

    @async_retry(retries=max(retries, 1), delay=retry_delay, retry_on=(CommandError,))
    async def _inner_run_command() -> str:
        proc_env = None
        if env:
            proc_env = os.environ.copy()
            proc_env.update(env)

        stdin = asyncio.subprocess.PIPE if input_data else asyncio.subprocess.DEVNULL

        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdin=stdin,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=proc_env,
                cwd=cwd,
            )
        except OSError as exc:
            raise CommandError(f"Unable to start {command[0]}: {exc}") from exc

        stdout_bytes, stderr_bytes = await proc.communicate(
            input=input_data.encode() if input_data else None
        )
        stdout_str = stdout_bytes.decode(errors="replace").strip()
        stderr_str = stderr_bytes.decode(errors="replace").strip()

        if proc.returncode not in ok_codes:
            detail = f"\nStderr: {stderr_str}"
            if not sensitive:
                detail = (
                    f"\nCommand: {' '.join(command)}"
                    f"\nStdout: {stdout_str}"
                    f"\nStderr: {stderr_str}"
                )
            raise CommandError(
                f"Command failed with return code {proc.returncode}.{detail}",
                proc.returncode,
                stderr_str,
            )

        return stdout_str

    return await _inner_run_command()
