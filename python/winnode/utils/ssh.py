"""
winnode/utils/ssh.py

Provides SSH/SCP operations against Windows instances, leveraging ephemeral
known_hosts and private keys stored in /dev/shm. This includes:
  - ssh_get_server_key: minimal handshake to retrieve server host key (TOFU).
  - run_ssh_command: strict host-key-checking SSH (expects host_keys in SSHConfig).
  - scp_to_remote: strict host-key-checking file copy to the instance.
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, List, Optional, Tuple

import aiofiles
import aiofiles.ospath

from winnode.models.ssh import SSHConfig
from winnode.utils.async_command_runner import run_command, CommandError
from winnode.utils.ephemeral_file import ephemeral_manager

KNOWN_HOSTS = "ssh_known_hosts"
ID_KEY = "ssh_idkey"


@asynccontextmanager
async def _ssh_credentials(cfg: SSHConfig) -> AsyncGenerator[Tuple[str, str], None]:
    """
    Write the private key (and known host keys, if any) to ephemeral files.

    Yields:
        (known_hosts_path, private_key_path)
    """
    async with ephemeral_manager([KNOWN_HOSTS, ID_KEY], prefix="winnode-ssh-") as paths:
        kh_path, pk_path = paths[KNOWN_HOSTS], paths[ID_KEY]

        async with aiofiles.open(kh_path, "w", encoding="utf-8") as fkh:
            for line in cfg.host_keys or []:
                await fkh.write(line + "\n")

        async with aiofiles.open(pk_path, "wb") as fpk:
            await fpk.write(cfg.private_key.encode("utf-8"))
        os.chmod(pk_path, 0o600)

        yield kh_path, pk_path


def _ssh_options(kh_path: str, pk_path: str, strict: str) -> List[str]:
    return [
        "-i",
        pk_path,
        "-o",
        "BatchMode=yes",
        "-o",
        f"StrictHostKeyChecking={strict}",
        "-o",
        f"UserKnownHostsFile={kh_path}",
        "-o",
        "GlobalKnownHostsFile=/dev/null",
    ]


async def ssh_get_server_key(
    cfg: SSHConfig,
    *,
    retries: int = 3,
    retry_delay: float = 1.0,
) -> List[str]:
    """
    Perform a minimal SSH handshake with StrictHostKeyChecking=accept-new
    to retrieve the server's host key lines (TOFU).

    Args:
      cfg: SSHConfig with user, hostname, port, private_key.
      retries: times to retry if error
      retry_delay: seconds between retries

    Returns:
      A list of lines from ephemeral known_hosts (the server's keys).

    Raises:
      CommandError: if handshake fails or no host keys found
    """
    async with _ssh_credentials(cfg.model_copy(update={"host_keys": None})) as (
        kh_path,
        pk_path,
    ):
        ssh_cmd = (
            ["ssh", "-p", str(cfg.port)]
            + _ssh_options(kh_path, pk_path, "accept-new")
            + [cfg.destination, "exit", "0"]
        )
        await run_command(ssh_cmd, retries=retries, retry_delay=retry_delay)

        lines: List[str] = []
        if await aiofiles.ospath.exists(kh_path):
            async with aiofiles.open(kh_path, "r", encoding="utf-8") as fkh:
                content = await fkh.readlines()
                lines = [ln.strip() for ln in content if ln.strip()]

        if not lines:
            raise CommandError(
                "ssh_get_server_key found no lines; server key not retrieved."
            )
        return lines


async def run_ssh_command(
    ssh_config: SSHConfig,
    remote_command: str,
    *,
    sensitive: bool = True,
    retries: int = 3,
    retry_delay: float = 1.0,
    successful_return_codes: Optional[List[int]] = None,
) -> str:
    """
    Run a command on the instance in strict host-key-checking mode.

    Windows OpenSSH hands the command line to the default shell unchanged, so
    `remote_command` is passed through as a single string.

    Returns:
      captured stdout from the remote command

    Raises:
      CommandError: if host_keys empty or the command fails.
    """
    if not ssh_config.host_keys:
        raise CommandError("run_ssh_command requires non-empty host_keys.")

    async with _ssh_credentials(ssh_config) as (kh_path, pk_path):
        ssh_cmd = (
            ["ssh", "-p", str(ssh_config.port)]
            + _ssh_options(kh_path, pk_path, "yes")
            + [ssh_config.destination, remote_command]
        )
        return await run_command(
            ssh_cmd,
            sensitive=sensitive,
            retries=retries,
            retry_delay=retry_delay,
            successful_return_codes=successful_return_codes,
        )


async def scp_to_remote(
    ssh_config: SSHConfig,
    files: Dict[str, str],
    *,
    retries: int = 3,
    retry_delay: float = 1.0,
) -> None:
    """
    Copy local files to the instance.

    Args:
      ssh_config: Must have host_keys.
      files: local path -> remote path.

    Raises:
      CommandError: if host_keys empty or any copy fails.
    """
    if not ssh_config.host_keys:
        raise CommandError("scp_to_remote requires non-empty host_keys.")

    async with _ssh_credentials(ssh_config) as (kh_path, pk_path):
        for local_path, remote_path in files.items():
            scp_cmd = (
                ["scp", "-P", str(ssh_config.port)]
                + _ssh_options(kh_path, pk_path, "yes")
                + [
                    local_path,
                    f"{ssh_config.destination}:{remote_path}",
                ]
            )
            await run_command(scp_cmd, retries=retries, retry_delay=retry_delay)
