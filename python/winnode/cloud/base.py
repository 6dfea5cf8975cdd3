"""
winnode/cloud/base.py

The cloud infrastructure resolver contract: given the cluster's infrastructure
id, return the network and identity resources a Windows worker instance must
be launched with.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from winnode.bootstrap.errors import CloudResourceError
from winnode.utils.async_command_runner import CommandError
from winnode.utils.k8s import KubectlClient

INFRASTRUCTURE_KIND = "infrastructures.config.openshift.io"


class PlatformType(str, Enum):
    aws = "AWS"
    azure = "Azure"
    gcp = "GCP"
    vsphere = "VSphere"
    none = "None"


class ClusterInfrastructure(BaseModel):
    """Identity of the cluster's cloud footprint."""

    infra_id: str
    platform: PlatformType
    region: Optional[str] = None

    class Config:
        frozen = True


class CloudResources(BaseModel):
    """Validated identifiers for launching a Windows worker instance."""

    subnet_id: str
    availability_zone: str
    security_group_id: str
    iam_instance_profile_arn: str


class CloudInfrastructureResolver(ABC):
    """Resolves cloud resources for Windows workers on one provider."""

    @abstractmethod
    async def resolve(self, infra_id: str) -> CloudResources:
        """
        Return subnet, security group and IAM profile for the cluster `infra_id`.

        Raises:
            CloudResourceError: If any of them cannot be found.
        """
        pass


async def get_infrastructure(client: KubectlClient) -> ClusterInfrastructure:
    """
    Read infra id, platform and region from the cluster Infrastructure object.

    Raises:
        CloudResourceError: If the object cannot be read or lacks the infra id.
    """
    try:
        raw = await client.get(INFRASTRUCTURE_KIND, "cluster")
    except CommandError as ex:
        raise CloudResourceError(
            f"error getting cluster infrastructure object: {ex}"
        ) from ex

    status = raw.get("status", {})
    infra_id = status.get("infrastructureName", "")
    if not infra_id:
        raise CloudResourceError("cluster infrastructure object has no infrastructureName")

    platform_status = status.get("platformStatus", {})
    platform_raw = platform_status.get("type") or status.get("platform") or "None"
    try:
        platform = PlatformType(platform_raw)
    except ValueError as ex:
        raise CloudResourceError(f"unknown platform type '{platform_raw}'") from ex

    region = platform_status.get("aws", {}).get("region")
    return ClusterInfrastructure(infra_id=infra_id, platform=platform, region=region)
