"""
Cluster configuration for node group stack management.

Loads the cluster definition (metadata, networking and node groups) from a
YAML file and validates it before any stack operation runs.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import jsonschema
import yaml


class NodeGroupType(Enum):
    """Type of a node group, as recorded in its stack tags."""
    MANAGED = "managed"
    UNMANAGED = "unmanaged"


IPV4_FAMILY = "IPv4"
IPV6_FAMILY = "IPv6"

_NODEGROUP_PROPERTIES: Dict[str, Any] = {
    "name": {"type": "string", "pattern": "^[a-zA-Z][a-zA-Z0-9-]*$"},
    "instanceType": {"type": "string"},
    "amiFamily": {"type": "string"},
    "ami": {"type": "string"},
    "desiredCapacity": {"type": "integer", "minimum": 0},
    "minSize": {"type": "integer", "minimum": 0},
    "maxSize": {"type": "integer", "minimum": 0},
    "privateNetworking": {"type": "boolean"},
    "labels": {"type": "object", "additionalProperties": {"type": "string"}},
    "tags": {"type": "object", "additionalProperties": {"type": "string"}},
    "preBootstrapCommands": {"type": "array", "items": {"type": "string"}},
}

CLUSTER_CONFIG_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["metadata"],
    "properties": {
        "metadata": {
            "type": "object",
            "required": ["name"],
            "properties": {
                "name": {"type": "string", "minLength": 1},
                "region": {"type": "string"},
                "version": {"type": "string"},
                "tags": {"type": "object", "additionalProperties": {"type": "string"}},
            },
        },
        "kubernetesNetworkConfig": {
            "type": "object",
            "properties": {"ipFamily": {"enum": [IPV4_FAMILY, IPV6_FAMILY]}},
        },
        "vpc": {
            "type": "object",
            "properties": {
                "subnets": {
                    "type": "object",
                    "properties": {
                        "private": {"type": "array", "items": {"type": "string"}},
                        "public": {"type": "array", "items": {"type": "string"}},
                    },
                },
                "securityGroup": {"type": "string"},
            },
        },
        "nodeGroups": {
            "type": "array",
            "items": {"type": "object", "required": ["name"], "properties": _NODEGROUP_PROPERTIES},
        },
        "managedNodeGroups": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name"],
                "properties": {
                    **_NODEGROUP_PROPERTIES,
                    "disableASGTagPropagation": {"type": "boolean"},
                    "launchTemplate": {
                        "type": "object",
                        "required": ["id"],
                        "properties": {"id": {"type": "string"}, "version": {"type": "string"}},
                    },
                },
            },
        },
    },
}


class ConfigValidationError(ValueError):
    """Raised when a cluster configuration is invalid."""


@dataclass
class ClusterMeta:
    """Cluster identification."""
    name: str
    region: str = "us-west-2"
    version: Optional[str] = None
    tags: Dict[str, str] = field(default_factory=dict)


@dataclass
class ClusterVPC:
    """Networking references used when the cluster stack is not owned."""
    private_subnets: List[str] = field(default_factory=list)
    public_subnets: List[str] = field(default_factory=list)
    security_group: Optional[str] = None


@dataclass
class LaunchTemplateRef:
    """A user supplied launch template for a managed node group."""
    id: str
    version: Optional[str] = None


@dataclass
class NodeGroup:
    """An unmanaged node group."""
    name: str
    instance_type: str = "m5.large"
    ami_family: str = "AmazonLinux2"
    ami: Optional[str] = None
    desired_capacity: int = 2
    min_size: Optional[int] = None
    max_size: Optional[int] = None
    private_networking: bool = False
    labels: Dict[str, str] = field(default_factory=dict)
    tags: Dict[str, str] = field(default_factory=dict)
    pre_bootstrap_commands: List[str] = field(default_factory=list)

    @property
    def scaling(self) -> Dict[str, int]:
        """Min, max and desired sizes with defaults filled in."""
        min_size = self.desired_capacity if self.min_size is None else self.min_size
        max_size = self.desired_capacity if self.max_size is None else self.max_size
        return {"min": min_size, "max": max_size, "desired": self.desired_capacity}


@dataclass
class ManagedNodeGroup(NodeGroup):
    """A node group whose lifecycle is partly handled by EKS."""
    launch_template: Optional[LaunchTemplateRef] = None
    disable_asg_tag_propagation: Optional[bool] = None


@dataclass
class ClusterConfig:
    """Configuration of a cluster and its node groups."""
    metadata: ClusterMeta
    ip_family: str = IPV4_FAMILY
    vpc: ClusterVPC = field(default_factory=ClusterVPC)
    nodegroups: List[NodeGroup] = field(default_factory=list)
    managed_nodegroups: List[ManagedNodeGroup] = field(default_factory=list)

    def ipv6_enabled(self) -> bool:
        """Check if the cluster runs IPv6-only networking."""
        return self.ip_family == IPV6_FAMILY

    def find_managed_nodegroup(self, name: str) -> Optional[ManagedNodeGroup]:
        """Look up a managed node group by name."""
        for ng in self.managed_nodegroups:
            if ng.name == name:
                return ng
        return None

    def nodegroup_names(self) -> List[str]:
        """Names of all node groups, unmanaged first."""
        return [ng.name for ng in self.nodegroups] + [ng.name for ng in self.managed_nodegroups]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClusterConfig":
        """Create config from a dictionary in the YAML file layout."""
        validate_cluster_config(data)

        meta = data["metadata"]
        subnets = data.get("vpc", {}).get("subnets", {})
        return cls(
            metadata=ClusterMeta(
                name=meta["name"],
                region=meta.get("region", "us-west-2"),
                version=meta.get("version"),
                tags=dict(meta.get("tags", {})),
            ),
            ip_family=data.get("kubernetesNetworkConfig", {}).get("ipFamily", IPV4_FAMILY),
            vpc=ClusterVPC(
                private_subnets=list(subnets.get("private", [])),
                public_subnets=list(subnets.get("public", [])),
                security_group=data.get("vpc", {}).get("securityGroup"),
            ),
            nodegroups=[NodeGroup(**_nodegroup_kwargs(ng)) for ng in data.get("nodeGroups", [])],
            managed_nodegroups=[_managed_nodegroup(ng) for ng in data.get("managedNodeGroups", [])],
        )


def _nodegroup_kwargs(data: Dict[str, Any]) -> Dict[str, Any]:
    keys = {
        "name": "name",
        "instanceType": "instance_type",
        "amiFamily": "ami_family",
        "ami": "ami",
        "desiredCapacity": "desired_capacity",
        "minSize": "min_size",
        "maxSize": "max_size",
        "privateNetworking": "private_networking",
        "labels": "labels",
        "tags": "tags",
        "preBootstrapCommands": "pre_bootstrap_commands",
    }
    return {attr: data[key] for key, attr in keys.items() if key in data}


def _managed_nodegroup(data: Dict[str, Any]) -> ManagedNodeGroup:
    kwargs = _nodegroup_kwargs(data)
    if "launchTemplate" in data:
        template = data["launchTemplate"]
        kwargs["launch_template"] = LaunchTemplateRef(id=template["id"], version=template.get("version"))
    if "disableASGTagPropagation" in data:
        kwargs["disable_asg_tag_propagation"] = data["disableASGTagPropagation"]
    return ManagedNodeGroup(**kwargs)


def validate_cluster_config(data: Dict[str, Any]) -> None:
    """
    Validate a raw cluster configuration.

    Raises:
        ConfigValidationError: If the schema is violated, or if two node
            groups share a name (their stack names would collide)
    """
    validator = jsonschema.Draft7Validator(CLUSTER_CONFIG_SCHEMA)
    errors = sorted(validator.iter_errors(data), key=lambda e: list(e.path))
    if errors:
        messages = []
        for error in errors:
            path = ".".join(str(p) for p in error.path) or "(root)"
            messages.append(f"{path}: {error.message}")
        raise ConfigValidationError("invalid cluster config: " + "; ".join(messages))

    seen = set()
    for ng in data.get("nodeGroups", []) + data.get("managedNodeGroups", []):
        if ng["name"] in seen:
            raise ConfigValidationError(f"invalid cluster config: duplicate node group name {ng['name']!r}")
        seen.add(ng["name"])


def load_cluster_config(path: Union[str, Path]) -> ClusterConfig:
    """Load and validate a cluster configuration file."""
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        data = yaml.safe_load(f) or {}

    return ClusterConfig.from_dict(data)
