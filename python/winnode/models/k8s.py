"""
winnode/models/k8s.py

Defines Pydantic models for the cluster objects this bootstrapper reads and
writes: Machines, Nodes, CertificateSigningRequests and Secrets.

Only the fields the bootstrapper consumes are declared. Unknown fields are
kept (extra="allow") so an object fetched from the API server can be dumped
back with `to_manifest()` for a full-object update without losing data.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class KubeModel(BaseModel):
    """Base for API objects: camelCase aliases, unknown fields preserved."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_manifest(self) -> Dict[str, Any]:
        """Dump back to the API server's JSON shape."""
        return self.model_dump(by_alias=True, exclude_none=True)


class ObjectRef(BaseModel):
    """Identifies a namespaced object by namespace and name."""

    namespace: str = Field(..., description="Kubernetes namespace.")
    name: str = Field(..., description="Object name.")

    class Config:
        frozen = True

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


class ObjectMeta(KubeModel):
    name: str = ""
    namespace: Optional[str] = None
    uid: Optional[str] = None
    resource_version: Optional[str] = Field(default=None, alias="resourceVersion")
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)


# ----------------------------------------------------------------------
# Machine (machine.openshift.io/v1beta1)
# ----------------------------------------------------------------------


class MachineAddress(KubeModel):
    type: str
    address: str


class MachineSpec(KubeModel):
    provider_id: Optional[str] = Field(default=None, alias="providerID")


class MachineStatus(KubeModel):
    phase: Optional[str] = None
    addresses: List[MachineAddress] = Field(default_factory=list)


class Machine(KubeModel):
    api_version: str = Field(default="machine.openshift.io/v1beta1", alias="apiVersion")
    kind: str = "Machine"
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: MachineSpec = Field(default_factory=MachineSpec)
    status: MachineStatus = Field(default_factory=MachineStatus)

    def internal_ip(self) -> Optional[str]:
        """Return the last InternalIP address reported for this Machine, if any."""
        found = [a.address for a in self.status.addresses if a.type == "InternalIP"]
        return found[-1] if found else None


# ----------------------------------------------------------------------
# Node (v1)
# ----------------------------------------------------------------------


class NodeSpec(KubeModel):
    provider_id: Optional[str] = Field(default=None, alias="providerID")


class Node(KubeModel):
    api_version: str = Field(default="v1", alias="apiVersion")
    kind: str = "Node"
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: NodeSpec = Field(default_factory=NodeSpec)


# ----------------------------------------------------------------------
# CertificateSigningRequest (certificates.k8s.io/v1)
# ----------------------------------------------------------------------


CSR_APPROVED = "Approved"
CSR_DENIED = "Denied"


class CSRCondition(KubeModel):
    type: str
    status: str = "True"
    reason: Optional[str] = None
    message: Optional[str] = None
    last_update_time: Optional[str] = Field(default=None, alias="lastUpdateTime")


class CSRSpec(KubeModel):
    username: str = ""


class CSRStatus(KubeModel):
    conditions: List[CSRCondition] = Field(default_factory=list)


class CertificateSigningRequest(KubeModel):
    api_version: str = Field(default="certificates.k8s.io/v1", alias="apiVersion")
    kind: str = "CertificateSigningRequest"
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: CSRSpec = Field(default_factory=CSRSpec)
    status: CSRStatus = Field(default_factory=CSRStatus)

    def is_approved(self) -> bool:
        return any(c.type == CSR_APPROVED for c in self.status.conditions)

    def is_handled(self) -> bool:
        """True once the request carries an Approved or Denied condition."""
        return any(
            c.type in (CSR_APPROVED, CSR_DENIED) for c in self.status.conditions
        )


# ----------------------------------------------------------------------
# Secret (v1)
# ----------------------------------------------------------------------


class Secret(KubeModel):
    api_version: str = Field(default="v1", alias="apiVersion")
    kind: str = "Secret"
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    type: str = "Opaque"
    data: Dict[str, str] = Field(default_factory=dict)
