"""
winnode/cli/resources.py

Thin CLI that resolves the cloud resources Windows worker instances must be
launched with (subnet, security group, IAM instance profile) and prints them
as JSON, for use when authoring a Windows MachineSet.

Usage:
  python -m winnode.cli.resources
  python -m winnode.cli.resources --instance-type m5a.xlarge --infra-id mycluster-x7k2p
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import List, Optional

from winnode.bootstrap.errors import CloudResourceError
from winnode.cloud import ClusterInfrastructure, get_infrastructure, new_resolver
from winnode.cloud.aws import DEFAULT_INSTANCE_TYPE
from winnode.models.settings import BootstrapSettings
from winnode.utils.k8s import KubectlClient


async def resolve_resources(args: argparse.Namespace) -> str:
    settings = BootstrapSettings()
    client = KubectlClient(kubectl=settings.kubectl, kubeconfig=settings.kubeconfig)
    infra: ClusterInfrastructure = await get_infrastructure(client)
    if args.infra_id:
        infra = infra.model_copy(update={"infra_id": args.infra_id})
    if args.region:
        infra = infra.model_copy(update={"region": args.region})

    resolver = new_resolver(infra, args.instance_type)
    resources = await resolver.resolve(infra.infra_id)
    return resources.model_dump_json(indent=2)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Print the cloud resources for Windows worker instances."
    )
    parser.add_argument("--instance-type", default=DEFAULT_INSTANCE_TYPE)
    parser.add_argument("--infra-id", help="Override the cluster infrastructure id.")
    parser.add_argument("--region", help="Override the cluster region.")
    args = parser.parse_args(argv)

    try:
        print(asyncio.run(resolve_resources(args)))
    except CloudResourceError as ex:
        print(f"Error: {ex}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
