"""
winnode/bootstrap/remote.py

Defines the remote configuration capability used by the orchestrator:
  - RemoteConfigurator: abstract base (configure, configure_network)
  - SSHRemoteConfigurator: OpenSSH-based implementation

The SSH implementation learns the instance's host key on first contact
(TOFU), copies the node payload to the instance, and runs the Windows
machine config bootstrapper to turn it into a kubelet-running node.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from typing import Dict, List

from pydantic import BaseModel, Field

from winnode.bootstrap.errors import RemoteConfigurationError
from winnode.models.ssh import SSHConfig
from winnode.models.vm import WindowsVM
from winnode.utils.async_command_runner import CommandError
from winnode.utils.ssh import run_ssh_command, scp_to_remote, ssh_get_server_key

logger = logging.getLogger(__name__)

REMOTE_DIR = "C:\\Windows\\Temp"
REMOTE_CNI_DIR = REMOTE_DIR + "\\cni"
REMOTE_CNI_CONFIG = REMOTE_CNI_DIR + "\\config\\cni.conf"


class RemoteConfigurator(ABC):
    """Configures a provisioned Windows instance so its kubelet joins the cluster."""

    @abstractmethod
    async def configure(self, vm: WindowsVM) -> None:
        """
        Run the node setup on the instance.

        Raises:
            RemoteConfigurationError: If any step fails.
        """
        pass

    @abstractmethod
    async def configure_network(self, vm: WindowsVM, cni_config_path: str) -> None:
        """
        Push the patched CNI configuration to the instance and apply it.

        Raises:
            RemoteConfigurationError: If any step fails.
        """
        pass


class RemotePlan(BaseModel):
    """
    What the SSH configurator copies and runs.

    Attributes:
        payload: local path -> remote path, copied before `commands` run.
        commands: run in order during configure().
        network_commands: run in order after the CNI config has been copied.
        cni_remote_path: where the CNI config lands on the instance.
    """

    payload: Dict[str, str] = Field(default_factory=dict)
    commands: List[str] = Field(default_factory=list)
    network_commands: List[str] = Field(default_factory=list)
    cni_remote_path: str = REMOTE_CNI_CONFIG


def default_plan(payload_dir: str) -> RemotePlan:
    """The standard payload layout and bootstrapper invocations."""

    def local(*parts: str) -> str:
        return os.path.join(payload_dir, *parts)

    return RemotePlan(
        payload={
            local("wmcb.exe"): REMOTE_DIR + "\\wmcb.exe",
            local("kube-node", "kubelet.exe"): REMOTE_DIR + "\\kubelet.exe",
            local("worker.ign"): REMOTE_DIR + "\\worker.ign",
            local("hybrid-overlay", "hybrid-overlay-node.exe"): REMOTE_DIR
            + "\\hybrid-overlay-node.exe",
            local("cni", "host-local.exe"): REMOTE_CNI_DIR + "\\host-local.exe",
            local("cni", "win-overlay.exe"): REMOTE_CNI_DIR + "\\win-overlay.exe",
        },
        commands=[
            "powershell -Command New-Item -ItemType Directory -Force -Path "
            + REMOTE_CNI_DIR
            + "\\config",
            REMOTE_DIR
            + "\\wmcb.exe initialize-kubelet --ignition-file "
            + REMOTE_DIR
            + "\\worker.ign --kubelet-path "
            + REMOTE_DIR
            + "\\kubelet.exe",
        ],
        network_commands=[
            REMOTE_DIR
            + "\\wmcb.exe configure-cni --cni-dir "
            + REMOTE_CNI_DIR
            + "\\ --cni-config "
            + REMOTE_CNI_CONFIG,
        ],
    )


class SSHRemoteConfigurator(RemoteConfigurator):
    """Configures instances over OpenSSH with the bootstrapper's private key."""

    def __init__(
        self,
        private_key: str,
        plan: RemotePlan,
        *,
        user: str = "Administrator",
        port: int = 22,
        retries: int = 3,
        retry_delay: float = 5.0,
    ) -> None:
        self._private_key = private_key
        self._plan = plan
        self._user = user
        self._port = port
        self._retries = retries
        self._retry_delay = retry_delay
        # host keys learned per instance, so repeated reconciles keep strict checking
        self._host_keys: Dict[str, List[str]] = {}

    async def _ssh_config(self, vm: WindowsVM) -> SSHConfig:
        cfg = SSHConfig(
            user=self._user,
            hostname=vm.address,
            port=self._port,
            private_key=self._private_key,
            host_keys=self._host_keys.get(vm.instance_id),
        )
        if not cfg.host_keys:
            cfg.host_keys = await ssh_get_server_key(
                cfg, retries=self._retries, retry_delay=self._retry_delay
            )
            self._host_keys[vm.instance_id] = cfg.host_keys
        return cfg

    def _forget_host_key(self, vm: WindowsVM) -> None:
        # a rebuilt instance presents a new key; the next attempt learns it again
        if self._host_keys.pop(vm.instance_id, None) is not None:
            logger.debug("dropped cached host key for %s", vm.instance_id)

    async def _run(self, cfg: SSHConfig, commands: List[str]) -> None:
        for command in commands:
            await run_ssh_command(
                cfg,
                command,
                retries=self._retries,
                retry_delay=self._retry_delay,
            )

    async def configure(self, vm: WindowsVM) -> None:
        logger.debug("configuring the Windows VM %s", vm.instance_id)
        try:
            cfg = await self._ssh_config(vm)
            if self._plan.payload:
                await scp_to_remote(
                    cfg,
                    self._plan.payload,
                    retries=self._retries,
                    retry_delay=self._retry_delay,
                )
            await self._run(cfg, self._plan.commands)
        except CommandError as ex:
            self._forget_host_key(vm)
            raise RemoteConfigurationError(
                f"configuring the Windows VM {vm.instance_id} failed: {ex}"
            ) from ex

    async def configure_network(self, vm: WindowsVM, cni_config_path: str) -> None:
        try:
            cfg = await self._ssh_config(vm)
            await scp_to_remote(
                cfg,
                {cni_config_path: self._plan.cni_remote_path},
                retries=self._retries,
                retry_delay=self._retry_delay,
            )
            await self._run(cfg, self._plan.network_commands)
        except CommandError as ex:
            self._forget_host_key(vm)
            raise RemoteConfigurationError(
                f"configuring the network of Windows VM {vm.instance_id} failed: {ex}"
            ) from ex
