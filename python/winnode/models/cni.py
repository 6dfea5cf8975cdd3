"""
winnode/models/cni.py

Models for the CNI configuration template pushed to Windows nodes, and the
NetworkOptions value object that carries the per-invocation inputs for
patching it.
"""

from __future__ import annotations

import ipaddress
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# value.Type of the policy whose ExceptionList excludes the service network from NAT
OUTBOUND_NAT_POLICY = "OutBoundNAT"
# value.Type of the policy routing the service network through the overlay
ROUTE_POLICY = "ROUTE"


class CNIModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class CNICapabilities(CNIModel):
    dns: bool = False


class CNIIpam(CNIModel):
    type: str = ""
    subnet: str = ""


class CNIPolicyValue(CNIModel):
    type: str = Field(default="", alias="Type")
    exception_list: Optional[List[str]] = Field(default=None, alias="ExceptionList")
    destination_prefix: Optional[str] = Field(default=None, alias="DestinationPrefix")
    need_encap: Optional[bool] = Field(default=None, alias="NeedEncap")


class CNIPolicy(CNIModel):
    name: str = ""
    value: CNIPolicyValue = Field(default_factory=CNIPolicyValue)


class CNIConfig(CNIModel):
    """The CNI configuration document read from and written back to disk."""

    cni_version: str = Field(default="", alias="cniVersion")
    name: str = ""
    type: str = ""
    capabilities: CNICapabilities = Field(default_factory=CNICapabilities)
    ipam: CNIIpam = Field(default_factory=CNIIpam)
    policies: List[CNIPolicy] = Field(default_factory=list)

    def find_policy(self, policy_type: str) -> Optional[CNIPolicy]:
        """Return the first policy whose value.Type matches, case-insensitively."""
        wanted = policy_type.lower()
        return next(
            (p for p in self.policies if p.value.type.lower() == wanted), None
        )


class NetworkOptions(BaseModel):
    """
    Inputs for one CNI patch: the cluster-wide service network and the node's
    host subnet. Built per invocation and passed explicitly.
    """

    service_network_cidr: str
    host_subnet: str

    class Config:
        frozen = True

    @field_validator("service_network_cidr", "host_subnet")
    @classmethod
    def validate_cidr(cls, val: str) -> str:
        try:
            ipaddress.ip_network(val, strict=False)
        except ValueError as ex:
            raise ValueError(f"'{val}' is not a valid CIDR: {ex}") from ex
        return val
