"""
Networking references for node group templates.
"""

from typing import Any, List

from troposphere import ImportValue, Split

from config import ClusterConfig
from naming import StackNaming


class StackConfigImporter:
    """Imports subnets and security groups exported by the cluster stack."""

    def __init__(self, cluster_name: str):
        self.cluster_stack_name = StackNaming.cluster_stack_name(cluster_name)

    def _import(self, output: str) -> ImportValue:
        return ImportValue(f"{self.cluster_stack_name}::{output}")

    def subnets(self, private: bool) -> Any:
        output = "SubnetsPrivate" if private else "SubnetsPublic"
        return Split(",", self._import(output))

    def security_groups(self) -> List[Any]:
        return [self._import("SharedNodeSecurityGroup")]


class SpecConfigImporter:
    """Uses the subnet and security group IDs written in the cluster config.

    Needed for clusters whose control plane stack is not owned by this tool.
    """

    def __init__(self, spec: ClusterConfig):
        self.vpc = spec.vpc

    def subnets(self, private: bool) -> List[str]:
        subnets = self.vpc.private_subnets if private else self.vpc.public_subnets
        if not subnets:
            kind = "private" if private else "public"
            raise ValueError(f"no {kind} subnets defined in cluster config")
        return list(subnets)

    def security_groups(self) -> List[str]:
        return [self.vpc.security_group] if self.vpc.security_group else []
