"""
Shared fixtures: an in-memory stand-in for KubectlClient, a throwaway RSA key,
and a RemoteConfigurator that only records what it was asked to do.
"""

from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional, Tuple

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from winnode.bootstrap.errors import RemoteConfigurationError
from winnode.bootstrap.remote import RemoteConfigurator
from winnode.models.vm import WindowsVM
from winnode.utils.k8s import (
    AlreadyExistsError,
    ConflictError,
    KubeApiError,
    NotFoundError,
)

Key = Tuple[str, Optional[str], str]


def _kind(kind: str) -> str:
    """Normalize 'nodes', 'Node' and 'machines.machine.openshift.io' style kinds."""
    short = kind.split(".")[0].lower()
    return short[:-1] if short.endswith("s") else short


class FakeKubectl:
    """Duck-typed KubectlClient backed by a dict.

    Objects carry a resourceVersion that is bumped on every write; a replace
    with a stale resourceVersion raises ConflictError. Failures can be queued
    per (operation, kind) through `fail_next`.
    """

    def __init__(self) -> None:
        self.objects: Dict[Key, Dict[str, Any]] = {}
        self.calls: List[Tuple[str, str]] = []
        self.fail_next: Dict[Tuple[str, str], List[Exception]] = {}
        self._version = 0

    # ------------------------------------------------------------------
    # test helpers
    # ------------------------------------------------------------------

    def add(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        obj = copy.deepcopy(obj)
        meta = obj.setdefault("metadata", {})
        self._version += 1
        meta["resourceVersion"] = str(self._version)
        self.objects[(_kind(obj["kind"]), meta.get("namespace"), meta["name"])] = obj
        return obj

    def find(self, kind: str, name: str, namespace: Optional[str] = None) -> Optional[Dict[str, Any]]:
        return self.objects.get((_kind(kind), namespace, name))

    def of_kind(self, kind: str) -> List[Dict[str, Any]]:
        return [o for (k, _, _), o in self.objects.items() if k == _kind(kind)]

    def _maybe_fail(self, op: str, kind: str) -> None:
        self.calls.append((op, _kind(kind)))
        queued = self.fail_next.get((op, _kind(kind)))
        if queued:
            raise queued.pop(0)

    # ------------------------------------------------------------------
    # KubectlClient surface
    # ------------------------------------------------------------------

    async def get(self, kind: str, name: str, namespace: Optional[str] = None) -> Dict[str, Any]:
        self._maybe_fail("get", kind)
        obj = self.find(kind, name, namespace)
        if obj is None:
            raise NotFoundError(f'{kind} "{name}" not found (NotFound)', 1)
        return copy.deepcopy(obj)

    async def list(
        self,
        kind: str,
        namespace: Optional[str] = None,
        label_selector: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        self._maybe_fail("list", kind)
        wanted: Dict[str, str] = {}
        if label_selector:
            for term in label_selector.split(","):
                key, _, value = term.partition("=")
                wanted[key] = value
        items = []
        for (k, ns, _), obj in self.objects.items():
            if k != _kind(kind) or (namespace and ns != namespace):
                continue
            labels = obj["metadata"].get("labels", {})
            if all(labels.get(key) == value for key, value in wanted.items()):
                items.append(copy.deepcopy(obj))
        return items

    async def create(self, manifest: Dict[str, Any]) -> Dict[str, Any]:
        self._maybe_fail("create", manifest["kind"])
        meta = manifest.get("metadata", {})
        name = meta.get("name")
        if not name:
            name = f"{meta.get('generateName', 'obj-')}{self._version + 1}"
            manifest = copy.deepcopy(manifest)
            manifest["metadata"]["name"] = name
        if self.find(manifest["kind"], name, meta.get("namespace")) is not None:
            raise AlreadyExistsError(f'"{name}" already exists (AlreadyExists)', 1)
        return self.add(manifest)

    async def replace(self, manifest: Dict[str, Any]) -> Dict[str, Any]:
        self._maybe_fail("replace", manifest["kind"])
        meta = manifest["metadata"]
        current = self.find(manifest["kind"], meta["name"], meta.get("namespace"))
        if current is None:
            raise NotFoundError(f'"{meta["name"]}" not found (NotFound)', 1)
        if meta.get("resourceVersion") != current["metadata"]["resourceVersion"]:
            raise ConflictError(
                "Operation cannot be fulfilled: the object has been modified (Conflict)", 1
            )
        return self.add(manifest)

    async def replace_raw(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        if "/certificatesigningrequests/" not in path:
            raise KubeApiError(f"unexpected raw path {path}", 1)
        return await self.replace(body)


@pytest.fixture
def kube() -> FakeKubectl:
    return FakeKubectl()


@pytest.fixture
def rsa_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def key_file(tmp_path, rsa_key) -> str:
    path = tmp_path / "private-key.pem"
    path.write_bytes(
        rsa_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.TraditionalOpenSSL,
            serialization.NoEncryption(),
        )
    )
    return str(path)


class RecordingRemote(RemoteConfigurator):
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.configured: List[str] = []
        self.networked: List[Tuple[str, str]] = []

    async def configure(self, vm: WindowsVM) -> None:
        if self.fail:
            raise RemoteConfigurationError(f"ssh to {vm.address} refused")
        self.configured.append(vm.instance_id)

    async def configure_network(self, vm: WindowsVM, cni_config_path: str) -> None:
        self.networked.append((vm.instance_id, cni_config_path))


@pytest.fixture
def remote() -> RecordingRemote:
    return RecordingRemote()


# ----------------------------------------------------------------------
# object builders
# ----------------------------------------------------------------------


def machine(
    name: str = "winworker-a",
    *,
    phase: Optional[str] = "Provisioned",
    provider_id: Optional[str] = "aws:///us-east-1e/i-078285fdadccb2eaa",
    addresses: Optional[List[Dict[str, str]]] = None,
) -> Dict[str, Any]:
    if addresses is None:
        addresses = [{"type": "InternalIP", "address": "10.0.1.5"}]
    obj: Dict[str, Any] = {
        "apiVersion": "machine.openshift.io/v1beta1",
        "kind": "Machine",
        "metadata": {
            "name": name,
            "namespace": "openshift-machine-api",
            "uid": f"uid-{name}",
            "labels": {"machine.openshift.io/os-id": "Windows"},
        },
        "spec": {},
        "status": {"addresses": addresses},
    }
    if provider_id is not None:
        obj["spec"]["providerID"] = provider_id
    if phase is not None:
        obj["status"]["phase"] = phase
    return obj


def node(
    name: str = "ip-10-0-1-5.ec2.internal",
    provider_id: str = "aws:///us-east-1e/i-078285fdadccb2eaa",
    annotations: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Node",
        "metadata": {
            "name": name,
            "labels": {"node.openshift.io/os_id": "Windows"},
            "annotations": annotations or {},
        },
        "spec": {"providerID": provider_id},
    }


def csr(
    name: str, username: str, conditions: Optional[List[Dict[str, str]]] = None
) -> Dict[str, Any]:
    return {
        "apiVersion": "certificates.k8s.io/v1",
        "kind": "CertificateSigningRequest",
        "metadata": {"name": name},
        "spec": {"username": username, "request": "LS0tLS1CRUdJTi..."},
        "status": {"conditions": conditions or []},
    }
