import asyncio
import os

import pytest

from winnode.bootstrap import remote as remote_mod
from winnode.bootstrap.errors import RemoteConfigurationError
from winnode.bootstrap.remote import (
    REMOTE_CNI_CONFIG,
    SSHRemoteConfigurator,
    default_plan,
)
from winnode.models.k8s import ObjectRef
from winnode.models.ssh import SSHConfig
from winnode.models.vm import WindowsVM
from winnode.utils.async_command_runner import CommandError

VM = WindowsVM(
    machine=ObjectRef(namespace="openshift-machine-api", name="winworker-a"),
    instance_id="i-078285fdadccb2eaa",
    address="10.0.1.5",
)


class FakeSSH:
    def __init__(self, fail_on=None):
        self.fail_on = fail_on
        self.handshakes = []
        self.copies = []
        self.commands = []

    async def get_key(self, cfg, **kwargs):
        self.handshakes.append(cfg.hostname)
        return [f"{cfg.hostname} ssh-ed25519 AAAAC3Nza"]

    async def scp(self, cfg, files, **kwargs):
        assert cfg.host_keys
        self.copies.append(dict(files))

    async def run(self, cfg, command, **kwargs):
        assert cfg.host_keys
        if self.fail_on and self.fail_on in command:
            raise CommandError("exit status 1", 1, "wmcb failed")
        self.commands.append(command)
        return ""


@pytest.fixture
def fake_ssh(monkeypatch):
    fake = FakeSSH()
    monkeypatch.setattr(remote_mod, "ssh_get_server_key", fake.get_key)
    monkeypatch.setattr(remote_mod, "scp_to_remote", fake.scp)
    monkeypatch.setattr(remote_mod, "run_ssh_command", fake.run)
    return fake


def test_default_plan_layout():
    plan = default_plan("/payload")

    assert plan.payload[os.path.join("/payload", "wmcb.exe")] == "C:\\Windows\\Temp\\wmcb.exe"
    assert any("initialize-kubelet" in c for c in plan.commands)
    assert any("configure-cni" in c for c in plan.network_commands)
    assert plan.cni_remote_path == REMOTE_CNI_CONFIG


def test_configure_copies_payload_then_runs_commands(fake_ssh):
    plan = default_plan("/payload")
    configurator = SSHRemoteConfigurator("PRIVATE KEY", plan)

    asyncio.run(configurator.configure(VM))
    asyncio.run(configurator.configure_network(VM, "/payload/cni/cni-conf-template.json"))

    # host key learned once, then reused
    assert fake_ssh.handshakes == ["10.0.1.5"]
    assert fake_ssh.copies[0] == plan.payload
    assert fake_ssh.copies[1] == {"/payload/cni/cni-conf-template.json": REMOTE_CNI_CONFIG}
    assert fake_ssh.commands == plan.commands + plan.network_commands


def test_command_failure_is_wrapped(fake_ssh):
    fake_ssh.fail_on = "initialize-kubelet"
    configurator = SSHRemoteConfigurator("PRIVATE KEY", default_plan("/payload"))

    with pytest.raises(RemoteConfigurationError, match="i-078285fdadccb2eaa"):
        asyncio.run(configurator.configure(VM))


def test_ssh_config_destination():
    cfg = SSHConfig(hostname="10.0.1.5", private_key="KEY")

    assert cfg.destination == "Administrator@10.0.1.5"
    with pytest.raises(ValueError):
        SSHConfig(hostname=" ", private_key="KEY")


def test_failed_command_drops_cached_host_key(fake_ssh):
    configurator = SSHRemoteConfigurator("PRIVATE KEY", default_plan("/payload"))
    asyncio.run(configurator.configure(VM))

    fake_ssh.fail_on = "configure-cni"
    with pytest.raises(RemoteConfigurationError, match="network"):
        asyncio.run(configurator.configure_network(VM, "/payload/cni/cni-conf-template.json"))

    fake_ssh.fail_on = None
    asyncio.run(configurator.configure_network(VM, "/payload/cni/cni-conf-template.json"))

    # the key is learned again after the failure instead of reusing a stale one
    assert fake_ssh.handshakes == ["10.0.1.5", "10.0.1.5"]
