"""
Node group identity resolved from stack tags.

Everything here is a pure function of a stack dict or its ``Tags`` list as
returned by ``describe_stacks``.
"""

import logging
from typing import Any, Dict, List, Tuple

import semver

from config import NodeGroupType
from naming import (
    CLUSTER_NAME_TAG,
    EKSCTL_VERSION_TAG,
    NODEGROUP_NAME_TAGS,
    NODEGROUP_TYPE_TAG,
    OLD_CLUSTER_NAME_TAG,
    StackNaming,
)
from version import parse_eksctl_version

from .errors import MissingIdentityTagError, VersionParseError

logger = logging.getLogger(__name__)

Tags = List[Dict[str, str]]


def get_nodegroup_tag_name(tags: Tags) -> str:
    """Get the node group name from tags, taking legacy tags into account."""
    values = {tag["Key"]: tag["Value"] for tag in tags or []}
    for key in NODEGROUP_NAME_TAGS:
        if values.get(key):
            return values[key]
    return ""


def get_nodegroup_type(tags: Tags) -> NodeGroupType:
    """
    Get the node group type from tags.

    Stacks created before the type tag existed are unmanaged, as are stacks
    whose type tag is empty or holds an unknown value.

    Raises:
        MissingIdentityTagError: If no node group name tag is present
    """
    if not get_nodegroup_tag_name(tags):
        raise MissingIdentityTagError("failed to find the nodegroup name tag")

    for tag in tags:
        if tag["Key"] == NODEGROUP_TYPE_TAG:
            value = tag["Value"]
            if not value:
                break
            try:
                return NodeGroupType(value)
            except ValueError:
                logger.warning(f"unknown nodegroup type {value!r}, treating it as unmanaged")
                break

    return NodeGroupType.UNMANAGED


def get_nodegroup_name(stack: Dict[str, Any]) -> str:
    """Get the node group name of a stack, or "" if it is not a node group stack."""
    tag_name = get_nodegroup_tag_name(stack.get("Tags", []))
    if tag_name:
        return tag_name
    return StackNaming.legacy_nodegroup_name(stack["StackName"]) or ""


def get_eksctl_version_from_tags(tags: Tags) -> Tuple[semver.Version, bool]:
    """
    Get the tool version that created a stack.

    Returns:
        Tuple of (version, found); version is 0.0.0 when not found

    Raises:
        VersionParseError: If the version tag is present but malformed
    """
    for tag in tags or []:
        if tag["Key"] == EKSCTL_VERSION_TAG:
            try:
                return parse_eksctl_version(tag["Value"]), True
            except ValueError as e:
                raise VersionParseError(
                    f"unexpected error parsing eksctl version {tag['Value']!r}: {e}"
                ) from e
    return semver.Version(0, 0, 0), False


def get_cluster_name_tag(stack: Dict[str, Any]) -> str:
    """Get the cluster name a stack is tagged with."""
    for tag in stack.get("Tags", []):
        if tag["Key"] in (CLUSTER_NAME_TAG, OLD_CLUSTER_NAME_TAG):
            return tag["Value"]
    return ""


def classify_nodegroup_stacks(stacks: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Keep the stacks that represent live node groups.

    Deleted stacks are skipped. Stacks that failed to delete are skipped
    with a warning, as they need manual cleanup.
    """
    nodegroup_stacks = []
    for stack in stacks:
        status = stack["StackStatus"]
        if status == "DELETE_COMPLETE":
            continue
        if status == "DELETE_FAILED":
            logger.warning(f"stack's status of nodegroup named {stack['StackName']} is {status}")
            continue
        if get_nodegroup_name(stack):
            nodegroup_stacks.append(stack)

    logger.debug(f"nodegroups = {[s['StackName'] for s in nodegroup_stacks]}")
    return nodegroup_stacks
