import asyncio
import json

import pytest

from conftest import RecordingRemote, csr, machine, node
from winnode.bootstrap.csr import BOOTSTRAP_REQUESTOR, NODE_REQUESTOR, CertificateManager
from winnode.bootstrap.errors import (
    NodeNotFoundError,
    RemoteConfigurationError,
    UserDataError,
)
from winnode.bootstrap.events import REASON_SETUP, REASON_SETUP_FAILURE
from winnode.bootstrap.network import NetworkConfigurator
from winnode.bootstrap.node import (
    HYBRID_OVERLAY_SUBNET_ANNOTATION,
    WORKER_LABEL,
    NodeRegistrar,
)
from winnode.bootstrap.orchestrator import Orchestrator, Outcome, windows_vm_for
from winnode.models.k8s import Machine, ObjectRef
from winnode.models.retry import RetryPolicy
from winnode.utils.k8s import KubeApiError

FAST = RetryPolicy(attempts=2, interval_seconds=0)
REF = ObjectRef(namespace="openshift-machine-api", name="winworker-a")
NODE_NAME = "ip-10-0-1-5.ec2.internal"


def build(kube, rsa_key, remote, **kwargs):
    return Orchestrator(
        kube,
        rsa_key,
        remote,
        certificates=CertificateManager(kube, discovery=FAST),
        registrar=NodeRegistrar(kube),
        host_subnet_retry=FAST,
        **kwargs,
    )


def events(kube):
    return [(e["type"], e["reason"]) for e in kube.of_kind("Event")]


def pending_csrs(kube):
    kube.add(csr("csr-boot", BOOTSTRAP_REQUESTOR))
    kube.add(csr("csr-node", NODE_REQUESTOR + NODE_NAME))


def approved(kube, name):
    conditions = kube.find("CertificateSigningRequest", name)["status"]["conditions"]
    return any(c["type"] == "Approved" for c in conditions)


@pytest.mark.parametrize(
    "overrides",
    [
        {"phase": None},
        {"phase": "Provisioning"},
        {"phase": "Running"},
        {"addresses": []},
        {"addresses": [{"type": "ExternalDNS", "address": "a.example.com"}]},
        {"provider_id": None},
        {"provider_id": "aws:///us-east-1e/"},
    ],
)
def test_ineligible_machines_are_skipped_without_mutation(kube, rsa_key, remote, overrides):
    kube.add(machine(**overrides))
    pending_csrs(kube)
    kube.add(node())

    result = asyncio.run(build(kube, rsa_key, remote).reconcile(REF))

    assert result.outcome == Outcome.skipped
    assert remote.configured == []
    assert kube.of_kind("Secret") == []
    assert not approved(kube, "csr-boot")
    assert WORKER_LABEL not in kube.find("Node", NODE_NAME)["metadata"]["labels"]
    assert events(kube) == []
    assert windows_vm_for(Machine.model_validate(machine(**overrides))) is None


def test_machine_not_found_is_terminal(kube, rsa_key, remote):
    result = asyncio.run(build(kube, rsa_key, remote).reconcile(REF))

    assert result.outcome == Outcome.not_found
    assert remote.configured == []
    assert kube.of_kind("Secret") == []


def test_end_to_end_success(kube, rsa_key, remote):
    kube.add(machine())
    pending_csrs(kube)
    kube.add(node())

    result = asyncio.run(build(kube, rsa_key, remote).reconcile(REF))

    assert result.outcome == Outcome.configured
    assert result.instance_id == "i-078285fdadccb2eaa"
    assert result.node_name == NODE_NAME
    assert remote.configured == ["i-078285fdadccb2eaa"]
    assert len(kube.of_kind("Secret")) == 1
    assert approved(kube, "csr-boot") and approved(kube, "csr-node")
    assert kube.find("Node", NODE_NAME)["metadata"]["labels"][WORKER_LABEL] == ""
    assert events(kube) == [("Normal", REASON_SETUP)]
    (event,) = kube.of_kind("Event")
    assert event["involvedObject"]["name"] == "winworker-a"
    assert event["involvedObject"]["uid"] == "uid-winworker-a"


def test_rerun_after_success_is_harmless(kube, rsa_key, remote):
    kube.add(machine())
    pending_csrs(kube)
    kube.add(node())
    orchestrator = build(kube, rsa_key, remote)
    asyncio.run(orchestrator.reconcile(REF))
    # the kubelet asks again, e.g. after a certificate rotation
    kube.add(csr("csr-boot-2", BOOTSTRAP_REQUESTOR))
    kube.add(csr("csr-node-2", NODE_REQUESTOR + NODE_NAME))

    result = asyncio.run(orchestrator.reconcile(REF))

    assert result.outcome == Outcome.configured
    assert len(kube.of_kind("Secret")) == 1
    assert kube.find("Node", NODE_NAME)["metadata"]["labels"][WORKER_LABEL] == ""


def test_remote_failure_touches_nothing(kube, rsa_key):
    remote = RecordingRemote(fail=True)
    kube.add(machine())
    pending_csrs(kube)
    kube.add(node())

    with pytest.raises(RemoteConfigurationError, match="i-078285fdadccb2eaa"):
        asyncio.run(build(kube, rsa_key, remote).reconcile(REF))

    assert not approved(kube, "csr-boot")
    assert not approved(kube, "csr-node")
    assert WORKER_LABEL not in kube.find("Node", NODE_NAME)["metadata"]["labels"]
    assert events(kube) == [("Warning", REASON_SETUP_FAILURE)]


def test_unexpected_remote_error_is_wrapped_with_warning(kube, rsa_key):
    class BrokenRemote(RecordingRemote):
        async def configure(self, vm):
            raise OSError("ssh binary not found")

    kube.add(machine())
    pending_csrs(kube)
    kube.add(node())

    with pytest.raises(RemoteConfigurationError, match="ssh binary not found") as info:
        asyncio.run(build(kube, rsa_key, BrokenRemote()).reconcile(REF))

    assert isinstance(info.value.__cause__, OSError)
    assert not approved(kube, "csr-boot")
    assert events(kube) == [("Warning", REASON_SETUP_FAILURE)]


def test_user_data_secret_failure_records_warning(kube, rsa_key, remote):
    kube.add(machine())
    kube.fail_next[("get", "secret")] = [KubeApiError("Unauthorized", 1)]

    with pytest.raises(UserDataError):
        asyncio.run(build(kube, rsa_key, remote).reconcile(REF))

    assert remote.configured == []
    assert events(kube) == [("Warning", REASON_SETUP_FAILURE)]


def test_missing_node_fails_with_warning(kube, rsa_key, remote):
    kube.add(machine())
    pending_csrs(kube)
    kube.add(node("other", "aws:///us-east-1a/i-999"))

    with pytest.raises(NodeNotFoundError, match="unable to find node for instance"):
        asyncio.run(build(kube, rsa_key, remote).reconcile(REF))
    assert events(kube) == [("Warning", REASON_SETUP_FAILURE)]


def test_event_failure_does_not_fail_reconcile(kube, rsa_key, remote):
    kube.add(machine())
    pending_csrs(kube)
    kube.add(node())
    kube.fail_next[("create", "event")] = [KubeApiError("forbidden", 1)]

    result = asyncio.run(build(kube, rsa_key, remote).reconcile(REF))

    assert result.outcome == Outcome.configured


def test_network_step_patches_and_pushes_cni(kube, rsa_key, remote, tmp_path):
    template = tmp_path / "cni.json"
    template.write_text(
        json.dumps(
            {
                "cniVersion": "0.2.0",
                "ipam": {"type": "host-local", "subnet": ""},
                "policies": [
                    {"name": "EndpointPolicy", "value": {"Type": "OutBoundNAT", "ExceptionList": [""]}},
                    {"name": "EndpointPolicy", "value": {"Type": "ROUTE", "DestinationPrefix": ""}},
                ],
            }
        )
    )
    kube.add(machine())
    pending_csrs(kube)
    kube.add(node(annotations={HYBRID_OVERLAY_SUBNET_ANNOTATION: "10.132.0.0/23"}))

    orchestrator = build(
        kube,
        rsa_key,
        remote,
        network=NetworkConfigurator(str(template)),
        service_network_cidr="172.30.0.0/16",
    )
    asyncio.run(orchestrator.reconcile(REF))

    written = json.loads(template.read_text())
    assert written["ipam"]["subnet"] == "10.132.0.0/23"
    assert written["policies"][1]["value"]["DestinationPrefix"] == "172.30.0.0/16"
    assert remote.networked == [("i-078285fdadccb2eaa", str(template))]
