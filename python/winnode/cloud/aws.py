"""
winnode/cloud/aws.py

AWS implementation of CloudInfrastructureResolver, using boto3:
  - the private subnet of the cluster VPC in a zone offering the instance type
  - the worker security group
  - the worker IAM instance profile
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from winnode.bootstrap.errors import CloudResourceError
from winnode.cloud.base import CloudInfrastructureResolver, CloudResources

logger = logging.getLogger(__name__)

INFRA_ID_TAG_KEY_PREFIX = "kubernetes.io/cluster/"
INFRA_ID_TAG_VALUE = "owned"
DEFAULT_INSTANCE_TYPE = "m5a.large"


class AWSInfrastructureResolver(CloudInfrastructureResolver):
    """Resolves Windows worker resources in the cluster's AWS account."""

    def __init__(
        self,
        region: str,
        instance_type: str = DEFAULT_INSTANCE_TYPE,
        *,
        ec2: Optional[Any] = None,
        iam: Optional[Any] = None,
    ) -> None:
        self.region = region
        self.instance_type = instance_type
        self._ec2 = ec2 or boto3.client("ec2", region_name=region)
        self._iam = iam or boto3.client("iam", region_name=region)

    def _vpc_id(self, infra_id: str) -> str:
        res = self._ec2.describe_vpcs(
            Filters=[
                {
                    "Name": "tag:" + INFRA_ID_TAG_KEY_PREFIX + infra_id,
                    "Values": [INFRA_ID_TAG_VALUE],
                },
                {"Name": "state", "Values": ["available"]},
            ]
        )
        vpcs: List[Dict[str, Any]] = res.get("Vpcs", [])
        if not vpcs:
            raise CloudResourceError("failed to find the VPC of the infrastructure")
        if len(vpcs) > 1:
            logger.warning("more than one VPC is found, using %s", vpcs[0]["VpcId"])
        return str(vpcs[0]["VpcId"])

    def _subnet(self, infra_id: str) -> Dict[str, Any]:
        vpc_id = self._vpc_id(infra_id)
        subnets = self._ec2.describe_subnets(
            Filters=[{"Name": "vpc-id", "Values": [vpc_id]}]
        ).get("Subnets", [])

        offerings = self._ec2.describe_reserved_instances_offerings(
            Filters=[{"Name": "scope", "Values": ["Availability Zone"]}],
            IncludeMarketplace=False,
            InstanceType=self.instance_type,
            ProductDescription="Windows",
        ).get("ReservedInstancesOfferings")
        if not offerings:
            raise CloudResourceError(
                f"no instance offerings returned for {self.instance_type}"
            )
        zones = {o["AvailabilityZone"] for o in offerings if o.get("AvailabilityZone")}

        wanted = infra_id + "-private-"
        private = [
            s
            for s in subnets
            if any(
                t.get("Key") == "Name" and wanted in t.get("Value", "")
                for t in s.get("Tags", [])
            )
        ]
        if not private:
            raise CloudResourceError(
                f"could not find the required subnet in VPC: {vpc_id}"
            )
        for subnet in private:
            if subnet.get("AvailabilityZone") in zones:
                return subnet
        raise CloudResourceError(
            "could not find the required subnet in a zone that supports "
            f"{self.instance_type} instance type"
        )

    def _security_group_id(self, infra_id: str) -> str:
        groups = self._ec2.describe_security_groups(
            Filters=[
                {"Name": "tag:Name", "Values": [f"{infra_id}-worker-sg"]},
                {
                    "Name": "tag:" + INFRA_ID_TAG_KEY_PREFIX + infra_id,
                    "Values": [INFRA_ID_TAG_VALUE],
                },
            ]
        ).get("SecurityGroups", [])
        if not groups:
            raise CloudResourceError(
                "no security group is found for the cluster worker nodes"
            )
        return str(groups[0]["GroupId"])

    def _instance_profile_arn(self, infra_id: str) -> str:
        profile = self._iam.get_instance_profile(
            InstanceProfileName=f"{infra_id}-worker-profile"
        )
        return str(profile["InstanceProfile"]["Arn"])

    def _resolve_sync(self, infra_id: str) -> CloudResources:
        try:
            arn = self._instance_profile_arn(infra_id)
            sg_id = self._security_group_id(infra_id)
            subnet = self._subnet(infra_id)
        except (BotoCoreError, ClientError) as ex:
            raise CloudResourceError(
                f"error resolving AWS resources for {infra_id}: {ex}"
            ) from ex
        return CloudResources(
            subnet_id=subnet["SubnetId"],
            availability_zone=subnet["AvailabilityZone"],
            security_group_id=sg_id,
            iam_instance_profile_arn=arn,
        )

    async def resolve(self, infra_id: str) -> CloudResources:
        return await asyncio.to_thread(self._resolve_sync, infra_id)
