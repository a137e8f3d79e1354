"""
Node group stacks: creation, listing and ASG tag propagation.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from botocore.exceptions import ClientError

from config import ManagedNodeGroup, NodeGroup, NodeGroupType
from naming import NODEGROUP_NAME_TAG, NODEGROUP_TYPE_TAG, OLD_NODEGROUP_NAME_TAG, StackNaming

from .bootstrap import ManagedBootstrapper, new_bootstrapper
from .builder import (
    MAXIMUM_CREATED_TAG_NUMBER_PER_CALL,
    MAXIMUM_TAG_NUMBER,
    LaunchTemplateFetcher,
    ManagedNodeGroupResourceSet,
    NodeGroupResourceSet,
)
from .errors import ConfigurationConflictError, ExternalServiceError, QuotaExceededError
from .metadata import (
    classify_nodegroup_stacks,
    get_cluster_name_tag,
    get_nodegroup_name,
    get_nodegroup_type,
)
from .stack_manager import StackManager
from .tag_batcher import build_asg_tag_records, chunk_tags
from .tasks import ResultChannel, run_async
from .vpc import StackConfigImporter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NodeGroupStack:
    """A node group stack with its resolved identity."""
    nodegroup_name: str
    type: NodeGroupType
    stack: Dict[str, Any]


@dataclass
class StackInfo:
    """A node group stack with all of its resources."""
    stack: Dict[str, Any]
    resources: List[Dict[str, Any]]


class NodeGroupOrchestrator:
    """Create and inspect the node group stacks of a cluster."""

    def __init__(self, stack_manager: StackManager):
        self.stack_manager = stack_manager
        self.spec = stack_manager.spec

    def make_nodegroup_stack_name(self, name: str) -> str:
        return StackNaming.nodegroup_stack_name(self.spec.metadata.name, name)

    def create_nodegroup_task(
        self,
        results: ResultChannel,
        ng: NodeGroup,
        force_add_cni_policy: bool,
        vpc_importer: Any,
    ) -> None:
        """
        Build and submit the stack of an unmanaged node group.

        Errors raised here happen before submission; the creation outcome
        is sent to ``results``.
        """
        name = self.make_nodegroup_stack_name(ng.name)
        logger.info(f"building nodegroup stack {name!r}")

        bootstrapper = new_bootstrapper(self.spec, ng)
        resource_set = NodeGroupResourceSet(self.spec, ng, bootstrapper, force_add_cni_policy, vpc_importer)
        resource_set.add_all_resources()

        ng.tags[NODEGROUP_NAME_TAG] = ng.name
        ng.tags[OLD_NODEGROUP_NAME_TAG] = ng.name
        ng.tags[NODEGROUP_TYPE_TAG] = NodeGroupType.UNMANAGED.value

        self.stack_manager.create_stack(name, resource_set, ng.tags, None, results)

    def create_managed_nodegroup_task(
        self,
        results: ResultChannel,
        ng: ManagedNodeGroup,
        force_add_cni_policy: bool,
        vpc_importer: Any,
    ) -> None:
        """
        Build and submit the stack of a managed node group.

        Raises:
            ConfigurationConflictError: If the cluster is IPv6 and its stack
                is not owned by this tool
        """
        name = self.make_nodegroup_stack_name(ng.name)
        cluster_stack = self.stack_manager.get_cluster_stack_if_exists()
        if cluster_stack is None and self.spec.ipv6_enabled():
            raise ConfigurationConflictError("managed nodegroups cannot be created on IPv6 unowned clusters")

        logger.info(f"building managed nodegroup stack {name!r}")
        bootstrapper = ManagedBootstrapper(self.spec, ng)
        resource_set = ManagedNodeGroupResourceSet(
            self.spec,
            ng,
            LaunchTemplateFetcher(self.stack_manager.ec2),
            bootstrapper,
            force_add_cni_policy,
            vpc_importer,
        )
        resource_set.add_all_resources()

        ng.tags[NODEGROUP_NAME_TAG] = ng.name
        ng.tags[NODEGROUP_TYPE_TAG] = NodeGroupType.MANAGED.value

        self.stack_manager.create_stack(name, resource_set, ng.tags, None, results)

    def create_nodegroups(
        self,
        nodegroups: Optional[List[NodeGroup]] = None,
        managed_nodegroups: Optional[List[ManagedNodeGroup]] = None,
        force_add_cni_policy: bool = False,
        vpc_importer: Any = None,
        timeout: Optional[float] = None,
    ) -> List[BaseException]:
        """
        Create node group stacks concurrently.

        All stacks are submitted before any is waited on. A failing node
        group does not stop the others. Tags of managed node groups are
        propagated to their ASGs once their stacks are created.

        Args:
            nodegroups: Unmanaged node groups (defaults to the cluster's)
            managed_nodegroups: Managed node groups (defaults to the cluster's)
            force_add_cni_policy: Attach the CNI policy to IPv6 node roles
            vpc_importer: Network references for the templates
            timeout: Seconds to wait for each outcome

        Returns:
            Errors of all failed node groups, empty on success
        """
        if nodegroups is None:
            nodegroups = self.spec.nodegroups
        if managed_nodegroups is None:
            managed_nodegroups = self.spec.managed_nodegroups
        if vpc_importer is None:
            vpc_importer = StackConfigImporter(self.spec.metadata.name)

        errors: List[BaseException] = []
        results = ResultChannel()
        submitted = 0

        for ng in nodegroups:
            try:
                self.create_nodegroup_task(results, ng, force_add_cni_policy, vpc_importer)
                submitted += 1
            except Exception as e:
                logger.error(f"failed to create nodegroup {ng.name!r}: {e}")
                errors.append(e)

        managed = []
        for ng in managed_nodegroups:
            channel = ResultChannel()
            try:
                self.create_managed_nodegroup_task(channel, ng, force_add_cni_policy, vpc_importer)
                managed.append((ng, channel))
            except Exception as e:
                logger.error(f"failed to create managed nodegroup {ng.name!r}: {e}")
                errors.append(e)

        errors.extend(results.drain(submitted, timeout=timeout))

        tag_results = ResultChannel()
        propagating = 0
        for ng, channel in managed:
            error = channel.receive(timeout=timeout)
            if error is not None:
                errors.append(error)
                continue
            try:
                self.propagate_managed_nodegroup_tags_to_asg_task(tag_results, ng)
                propagating += 1
            except Exception as e:
                logger.error(f"failed to propagate tags of managed nodegroup {ng.name!r}: {e}")
                errors.append(e)

        errors.extend(tag_results.drain(propagating, timeout=timeout))
        return errors

    def propagate_managed_nodegroup_tags_to_asg(
        self,
        nodegroup_name: str,
        tags: Dict[str, str],
        asg_names: List[str],
        results: ResultChannel,
    ) -> None:
        """
        Copy managed node group tags to its ASGs in the background.

        Exactly one value is sent to ``results``.
        """
        ng = self.spec.find_managed_nodegroup(nodegroup_name)
        if ng is not None and ng.disable_asg_tag_propagation:
            logger.info(f"tag propagation to ASGs is disabled for managed nodegroup {nodegroup_name!r}")
            results.send(None)
            return None

        tags = dict(tags)
        asg_names = list(asg_names)
        run_async(
            lambda: self._propagate_tags(nodegroup_name, tags, asg_names),
            results,
            self.stack_manager.executor,
            name=f"propagate tags of {nodegroup_name}",
        )
        return None

    def _existing_asg_tag_keys(self, asg_name: str) -> Set[str]:
        keys = set()
        try:
            paginator = self.stack_manager.autoscaling.get_paginator("describe_tags")
            pages = paginator.paginate(Filters=[{"Name": "auto-scaling-group", "Values": [asg_name]}])
            for page in pages:
                for tag in page["Tags"]:
                    keys.add(tag["Key"])
        except ClientError as e:
            raise ExternalServiceError("describing tags of asg", asg_name, e) from e
        return keys

    def _propagate_tags(self, nodegroup_name: str, tags: Dict[str, str], asg_names: List[str]) -> None:
        if len(tags) > MAXIMUM_TAG_NUMBER:
            raise QuotaExceededError(
                f"number of tags is exceeding the maximum amount for asg {MAXIMUM_TAG_NUMBER}, was: {len(tags)}"
            )

        for asg_name in asg_names:
            total = len(self._existing_asg_tag_keys(asg_name) | set(tags))
            if total > MAXIMUM_TAG_NUMBER:
                raise QuotaExceededError(
                    f"number of tags on {asg_name} would exceed the maximum amount for asg "
                    f"{MAXIMUM_TAG_NUMBER}, was: {total}"
                )

        records = build_asg_tag_records(tags, asg_names)
        for batch in chunk_tags(records, MAXIMUM_CREATED_TAG_NUMBER_PER_CALL):
            try:
                self.stack_manager.autoscaling.create_or_update_tags(Tags=batch)
            except ClientError as e:
                raise ExternalServiceError(
                    "creating or updating asg tags for managed nodegroup", nodegroup_name, e
                ) from e

        logger.info(f"propagated {len(tags)} tag(s) of managed nodegroup {nodegroup_name!r} to {len(asg_names)} ASG(s)")

    def get_managed_nodegroup_asg_names(self, cluster_name: str, nodegroup_name: str) -> List[str]:
        """
        Get the ASGs EKS created for a managed node group.

        Raises:
            ExternalServiceError: If the node group cannot be described
        """
        try:
            response = self.stack_manager.eks.describe_nodegroup(
                clusterName=cluster_name,
                nodegroupName=nodegroup_name,
            )
        except ClientError as e:
            raise ExternalServiceError("couldn't get managed nodegroup details for nodegroup", nodegroup_name, e) from e

        resources = response["nodegroup"].get("resources") or {}
        return [asg["name"] for asg in resources.get("autoScalingGroups", [])]

    def propagate_managed_nodegroup_tags_to_asg_task(self, results: ResultChannel, ng: ManagedNodeGroup) -> None:
        """Propagate the tags of a managed node group to the ASGs EKS created for it."""
        if ng.disable_asg_tag_propagation:
            results.send(None)
            return None

        asg_names = self.get_managed_nodegroup_asg_names(self.spec.metadata.name, ng.name)
        self.propagate_managed_nodegroup_tags_to_asg(ng.name, ng.tags, asg_names, results)
        return None

    def describe_nodegroup_stacks(self) -> List[Dict[str, Any]]:
        """Get the live node group stacks of the cluster."""
        return classify_nodegroup_stacks(self.stack_manager.describe_stacks())

    def list_nodegroup_stacks(self) -> List[NodeGroupStack]:
        """
        Get the node group stacks of the cluster with their names and types.

        Raises:
            MissingIdentityTagError: If a stack lacks a node group name tag
        """
        return [
            NodeGroupStack(
                nodegroup_name=get_nodegroup_name(stack),
                type=get_nodegroup_type(stack.get("Tags", [])),
                stack=stack,
            )
            for stack in self.describe_nodegroup_stacks()
        ]

    def describe_nodegroup_stacks_and_resources(self) -> Dict[str, StackInfo]:
        """Get node group stacks and their resources, keyed by node group name."""
        all_resources = {}
        for stack in self.describe_nodegroup_stacks():
            resources = self.stack_manager.describe_stack_resources(stack["StackName"])
            all_resources[get_nodegroup_name(stack)] = StackInfo(stack=stack, resources=resources)
        return all_resources

    def describe_nodegroup_stack(self, nodegroup_name: str) -> Dict[str, Any]:
        return self.stack_manager.describe_stack(self.make_nodegroup_stack_name(nodegroup_name))

    def get_nodegroup_stack_type(
        self,
        nodegroup_name: Optional[str] = None,
        stack: Optional[Dict[str, Any]] = None,
    ) -> NodeGroupType:
        """Get the type of a node group from a given stack, or by looking its stack up."""
        if stack is None:
            if not nodegroup_name:
                raise ValueError("either nodegroup_name or stack must be provided")
            stack = self.describe_nodegroup_stack(nodegroup_name)
        return get_nodegroup_type(stack.get("Tags", []))

    def get_autoscaling_group_name(self, stack: Dict[str, Any]) -> str:
        """Get the ASG name(s) of a node group stack; managed groups may have several, joined by commas."""
        if get_nodegroup_type(stack.get("Tags", [])) == NodeGroupType.MANAGED:
            return self._get_managed_nodegroup_autoscaling_group_name(stack)
        return self.get_unmanaged_nodegroup_autoscaling_group_name(stack)

    def get_unmanaged_nodegroup_autoscaling_group_name(self, stack: Dict[str, Any]) -> str:
        resource = self.stack_manager.describe_stack_resource(stack["StackName"], "NodeGroup")
        return resource["PhysicalResourceId"]

    def _get_managed_nodegroup_autoscaling_group_name(self, stack: Dict[str, Any]) -> str:
        try:
            asg_names = self.get_managed_nodegroup_asg_names(get_cluster_name_tag(stack), get_nodegroup_name(stack))
        except ExternalServiceError:
            logger.warning(f"couldn't get managed nodegroup details for stack {stack['StackName']!r}")
            return ""
        return ",".join(asg_names)

    def get_autoscaling_group_desired_capacity(self, name: str) -> Dict[str, Any]:
        """
        Get an ASG by name.

        Raises:
            ExternalServiceError: If the ASG cannot be described or does not exist
        """
        try:
            response = self.stack_manager.autoscaling.describe_auto_scaling_groups(
                AutoScalingGroupNames=[name],
            )
        except ClientError as e:
            raise ExternalServiceError("couldn't describe ASG", name, e) from e

        groups = response.get("AutoScalingGroups", [])
        if len(groups) != 1:
            logger.warning(f"couldn't find ASG {name}")
            raise ExternalServiceError("couldn't describe ASG", name, message=f"found {len(groups)} groups")
        return groups[0]
