"""
Naming convention utilities for cluster and node group stacks.

This module holds the stack naming patterns and the reserved tag keys that
carry meaning on node group stacks, including the legacy variants written
by older releases.
"""

import re
from typing import Dict, Optional


STACK_PREFIX = "eksctl"

# Reserved tag keys
CLUSTER_NAME_TAG = "alpha.eksctl.io/cluster-name"
OLD_CLUSTER_NAME_TAG = "eksctl.cluster.k8s.io/v1alpha1/cluster-name"
NODEGROUP_NAME_TAG = "alpha.eksctl.io/nodegroup-name"
OLD_NODEGROUP_NAME_TAG = "eksctl.cluster.k8s.io/v1alpha1/nodegroup-name"
OLD_NODEGROUP_ID_TAG = "eksctl.io/v1alpha2/nodegroup-name"
NODEGROUP_TYPE_TAG = "alpha.eksctl.io/nodegroup-type"
EKSCTL_VERSION_TAG = "alpha.eksctl.io/eksctl-version"

NODEGROUP_NAME_TAGS = (NODEGROUP_NAME_TAG, OLD_NODEGROUP_NAME_TAG, OLD_NODEGROUP_ID_TAG)

# Identifiers for node groups created before name tags existed
LEGACY_NODEGROUP_SUFFIXES: Dict[str, str] = {
    "-nodegroup-0": "legacy-nodegroup-0",
    "-DefaultNodeGroup": "legacy-default",
}


class StackNaming:
    """Manages stack names for a cluster and its node groups."""

    @classmethod
    def cluster_stack_name(cls, cluster_name: str) -> str:
        """Get the name of the stack that owns the cluster control plane."""
        return f"{STACK_PREFIX}-{cluster_name}-cluster"

    @classmethod
    def nodegroup_stack_name(cls, cluster_name: str, nodegroup_name: str) -> str:
        """
        Get the stack name of a node group.

        Pattern: eksctl-[cluster]-nodegroup-[nodegroup]

        Args:
            cluster_name: Name of the cluster owning the node group
            nodegroup_name: Name of the node group

        Returns:
            Stack name, unique per node group within a cluster
        """
        return f"{STACK_PREFIX}-{cluster_name}-nodegroup-{nodegroup_name}"

    @classmethod
    def cluster_stacks_pattern(cls, cluster_name: str) -> re.Pattern:
        """
        Get a pattern matching every stack that belongs to a cluster.

        Both current and legacy ("EKS-" prefixed) stack names are matched.
        """
        name = re.escape(cluster_name)
        return re.compile(
            rf"^({STACK_PREFIX}|EKS)-{name}-"
            r"((cluster|nodegroup-.+|addon-.+|fargate)"
            r"|(VPC|ServiceRole|ControlPlane|DefaultNodeGroup))$"
        )

    @classmethod
    def legacy_nodegroup_name(cls, stack_name: str) -> Optional[str]:
        """
        Infer a node group identifier from a legacy stack name suffix.

        Returns:
            Fixed legacy identifier, or None if no legacy suffix matches
        """
        for suffix, identifier in LEGACY_NODEGROUP_SUFFIXES.items():
            if stack_name.endswith(suffix):
                return identifier
        return None
