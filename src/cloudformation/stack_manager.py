"""
CloudFormation stack management operations.
"""

import logging
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import ClientError

from config import ClusterConfig
from naming import CLUSTER_NAME_TAG, EKSCTL_VERSION_TAG, OLD_CLUSTER_NAME_TAG, StackNaming
from version import __version__

from .builder import ResourceSet
from .errors import (
    ChangeSetFailedError,
    ExternalServiceError,
    NoChangesError,
    StackNotFoundError,
    StackOperationError,
    TemplateRenderError,
)
from .metadata import get_cluster_name_tag
from .tasks import ResultChannel, run_async
from .waiters import DEFAULT_DELAY, DEFAULT_MAX_ATTEMPTS, poll_until

logger = logging.getLogger(__name__)

Tags = List[Dict[str, str]]

# Every status except DELETE_COMPLETE
LIVE_STACK_STATUSES = [
    "CREATE_IN_PROGRESS",
    "CREATE_FAILED",
    "CREATE_COMPLETE",
    "ROLLBACK_IN_PROGRESS",
    "ROLLBACK_FAILED",
    "ROLLBACK_COMPLETE",
    "DELETE_IN_PROGRESS",
    "DELETE_FAILED",
    "UPDATE_IN_PROGRESS",
    "UPDATE_COMPLETE_CLEANUP_IN_PROGRESS",
    "UPDATE_COMPLETE",
    "UPDATE_FAILED",
    "UPDATE_ROLLBACK_IN_PROGRESS",
    "UPDATE_ROLLBACK_FAILED",
    "UPDATE_ROLLBACK_COMPLETE_CLEANUP_IN_PROGRESS",
    "UPDATE_ROLLBACK_COMPLETE",
    "REVIEW_IN_PROGRESS",
    "IMPORT_IN_PROGRESS",
    "IMPORT_COMPLETE",
    "IMPORT_ROLLBACK_IN_PROGRESS",
    "IMPORT_ROLLBACK_FAILED",
    "IMPORT_ROLLBACK_COMPLETE",
]

CREATE_PENDING_STATUSES = {"CREATE_IN_PROGRESS", "REVIEW_IN_PROGRESS", "ROLLBACK_IN_PROGRESS"}
UPDATE_TERMINAL_STATUSES = {
    "UPDATE_COMPLETE",
    "UPDATE_FAILED",
    "UPDATE_ROLLBACK_COMPLETE",
    "UPDATE_ROLLBACK_FAILED",
}
CHANGE_SET_TERMINAL_STATUSES = {"CREATE_COMPLETE", "FAILED", "DELETE_COMPLETE", "DELETE_FAILED"}

# Status reasons of a change set that would not modify its stack
NO_CHANGES_REASONS = ("didn't contain changes", "No updates are to be performed")


@dataclass
class UpdateStackOptions:
    """Options for a change set based stack update."""
    change_set_name: str
    stack_name: Optional[str] = None
    stack: Optional[Dict[str, Any]] = None
    description: str = ""
    template_body: Optional[str] = None
    template_url: Optional[str] = None
    parameters: Dict[str, str] = field(default_factory=dict)
    tags: Dict[str, str] = field(default_factory=dict)
    wait: bool = False


def to_cfn_tags(tags: Dict[str, str]) -> Tags:
    """Convert a tag mapping to the CloudFormation list form."""
    return [{"Key": key, "Value": value} for key, value in tags.items()]


def merge_tags(tags: Tags, extra: Tags, replace: bool = True) -> Tags:
    """
    Merge two tag lists into one with unique keys.

    Args:
        tags: Base tags, order preserved
        extra: Tags to add
        replace: If False, extra tags only fill keys missing from the base
    """
    merged = {tag["Key"]: tag["Value"] for tag in tags}
    for tag in extra:
        if replace or tag["Key"] not in merged:
            merged[tag["Key"]] = tag["Value"]
    return to_cfn_tags(merged)


class StackManager:
    """Manage the CloudFormation stacks of a cluster."""

    def __init__(
        self,
        spec: ClusterConfig,
        region: Optional[str] = None,
        profile: Optional[str] = None,
        waiter_delay: float = DEFAULT_DELAY,
        waiter_max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        max_workers: int = 8,
    ):
        """
        Initialize stack manager.

        Args:
            spec: Cluster configuration the stacks belong to
            region: AWS region (defaults to the cluster's region)
            profile: AWS profile to use
            waiter_delay: Seconds between status polls
            waiter_max_attempts: Status polls before a wait gives up
            max_workers: Threads available to background stack tasks
        """
        self.spec = spec
        self.region = region or spec.metadata.region
        self.profile = profile
        self.waiter_delay = waiter_delay
        self.waiter_max_attempts = waiter_max_attempts

        # Initialize AWS clients
        session_args = {"region_name": self.region}
        if profile:
            session_args["profile_name"] = profile

        session = boto3.Session(**session_args)
        self.cloudformation = session.client("cloudformation")
        self.autoscaling = session.client("autoscaling")
        self.eks = session.client("eks")
        self.ec2 = session.client("ec2")

        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="stack-task")
        self.cancel_event = threading.Event()

    def cancel(self) -> None:
        """Stop pending waits at their next poll."""
        self.cancel_event.set()

    def close(self, wait: bool = True) -> None:
        """Release the background task threads."""
        self.executor.shutdown(wait=wait)

    def shared_tags(self) -> Tags:
        """Tags every stack of this cluster carries."""
        name = self.spec.metadata.name
        tags = [
            {"Key": CLUSTER_NAME_TAG, "Value": name},
            {"Key": OLD_CLUSTER_NAME_TAG, "Value": name},
            {"Key": EKSCTL_VERSION_TAG, "Value": __version__},
        ]
        return merge_tags(tags, to_cfn_tags(self.spec.metadata.tags))

    def _poll(self, describe, is_terminal, description: str) -> Any:
        return poll_until(
            describe,
            is_terminal,
            delay=self.waiter_delay,
            max_attempts=self.waiter_max_attempts,
            cancel=self.cancel_event,
            description=description,
        )

    def describe_stack(self, stack_name: str) -> Dict[str, Any]:
        """
        Get a stack by name or ID.

        Raises:
            StackNotFoundError: If the stack does not exist
        """
        try:
            response = self.cloudformation.describe_stacks(StackName=stack_name)
        except ClientError as e:
            if "does not exist" in str(e):
                raise StackNotFoundError(stack_name) from e
            raise ExternalServiceError("describing stack", stack_name, e) from e

        stacks = response.get("Stacks", [])
        if not stacks:
            raise StackNotFoundError(stack_name)
        return stacks[0]

    def describe_stacks(self) -> List[Dict[str, Any]]:
        """Get all stacks that belong to this cluster."""
        pattern = StackNaming.cluster_stacks_pattern(self.spec.metadata.name)
        stacks = []

        try:
            paginator = self.cloudformation.get_paginator("describe_stacks")
            for page in paginator.paginate():
                for stack in page["Stacks"]:
                    if pattern.match(stack["StackName"]):
                        stacks.append(stack)
        except ClientError as e:
            raise ExternalServiceError("describing stacks", self.spec.metadata.name, e) from e

        return stacks

    def list_stacks_matching(self, pattern: str, statuses: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        """List stack summaries whose names match a regular expression."""
        regex = re.compile(pattern)
        summaries = []

        try:
            paginator = self.cloudformation.get_paginator("list_stacks")
            for page in paginator.paginate(StackStatusFilter=statuses or LIVE_STACK_STATUSES):
                for summary in page["StackSummaries"]:
                    if regex.match(summary["StackName"]):
                        summaries.append(summary)
        except ClientError as e:
            raise ExternalServiceError("listing stacks", pattern, e) from e

        return summaries

    def describe_stack_resources(self, stack_name: str) -> List[Dict[str, Any]]:
        """Get all resources of a stack."""
        try:
            response = self.cloudformation.describe_stack_resources(StackName=stack_name)
        except ClientError as e:
            if "does not exist" in str(e):
                raise StackNotFoundError(stack_name) from e
            raise ExternalServiceError("getting all resources for stack", stack_name, e) from e
        return response["StackResources"]

    def describe_stack_resource(self, stack_name: str, logical_id: str) -> Dict[str, Any]:
        """Get one resource of a stack by logical ID."""
        try:
            response = self.cloudformation.describe_stack_resource(
                StackName=stack_name,
                LogicalResourceId=logical_id,
            )
        except ClientError as e:
            if "does not exist" in str(e):
                raise StackNotFoundError(
                    stack_name, f"resource {logical_id} not found in stack {stack_name}"
                ) from e
            raise ExternalServiceError("describing stack resource", f"{stack_name}/{logical_id}", e) from e
        return response["StackResourceDetail"]

    def get_cluster_stack_if_exists(self) -> Optional[Dict[str, Any]]:
        """Get the cluster's own stack, or None if the cluster was not created by this tool."""
        name = StackNaming.cluster_stack_name(self.spec.metadata.name)
        if not self.list_stacks_matching(rf"^{re.escape(name)}$"):
            return None
        return self.describe_stack(name)

    def has_cluster_stack_from_list(self, stack_names: List[str], cluster_name: str) -> bool:
        """
        Check if a list of stack names holds the stack of a given cluster.

        Raises:
            StackNotFoundError: If the cluster stack is listed but cannot be described
        """
        cluster_stack_name = StackNaming.cluster_stack_name(cluster_name)
        if cluster_stack_name not in stack_names:
            return False
        stack = self.describe_stack(cluster_stack_name)
        return get_cluster_name_tag(stack) == cluster_name

    def create_stack(
        self,
        stack_name: str,
        resource_set: ResourceSet,
        tags: Optional[Dict[str, str]],
        parameters: Optional[Dict[str, str]],
        results: ResultChannel,
    ) -> str:
        """
        Submit a new stack and watch its creation in the background.

        The template is rendered and the stack submitted before this returns;
        the outcome of the creation is sent to ``results`` once.

        Returns:
            ID of the submitted stack

        Raises:
            TemplateRenderError: If the template cannot be rendered
            ExternalServiceError: If CloudFormation rejects the request
        """
        try:
            template_body = resource_set.render_json()
        except (TypeError, ValueError, AttributeError) as e:
            raise TemplateRenderError(f"rendering template for stack {stack_name!r}: {e}") from e

        stack_tags = merge_tags(self.shared_tags(), to_cfn_tags(tags or {}))
        request: Dict[str, Any] = {
            "StackName": stack_name,
            "TemplateBody": template_body,
            "Tags": stack_tags,
            "Capabilities": list(resource_set.capabilities),
            "DisableRollback": False,
        }
        if parameters:
            request["Parameters"] = [
                {"ParameterKey": key, "ParameterValue": value} for key, value in parameters.items()
            ]

        logger.info(f"deploying stack {stack_name!r}")
        try:
            response = self.cloudformation.create_stack(**request)
        except ClientError as e:
            raise ExternalServiceError("creating stack", stack_name, e) from e

        run_async(
            lambda: self._wait_until_stack_is_created(stack_name, resource_set),
            results,
            self.executor,
            name=f"create stack {stack_name}",
        )
        return response["StackId"]

    def _wait_until_stack_is_created(self, stack_name: str, resource_set: ResourceSet) -> None:
        stack = self._poll(
            lambda: self.describe_stack(stack_name),
            lambda s: s["StackStatus"] not in CREATE_PENDING_STATUSES,
            f"stack {stack_name!r} creation",
        )

        if stack["StackStatus"] != "CREATE_COMPLETE":
            self._log_failed_events(stack_name)
            raise StackOperationError(
                "creating stack", stack_name, stack["StackStatus"], stack.get("StackStatusReason")
            )

        resource_set.get_all_outputs(stack)
        logger.info(f"created stack {stack_name!r}")

    def _log_failed_events(self, stack_name: str) -> None:
        """Log the resources that failed in a stack operation."""
        try:
            response = self.cloudformation.describe_stack_events(StackName=stack_name)
        except ClientError as e:
            logger.warning(f"could not retrieve stack events for {stack_name!r}: {e}")
            return

        for event in response["StackEvents"]:
            if event["ResourceStatus"].endswith("_FAILED"):
                logger.error(
                    f"{event['ResourceType']}/{event['LogicalResourceId']}: {event['ResourceStatus']} "
                    f"\"{event.get('ResourceStatusReason', 'No reason provided')}\""
                )

    def update_stack(self, options: UpdateStackOptions) -> None:
        """
        Update a stack through a change set.

        A change set that would not modify the stack counts as success and is
        not executed. With ``options.wait`` unset, this returns as soon as the
        change set execution is accepted.

        Raises:
            StackNotFoundError: If the stack does not exist
            ChangeSetFailedError: If the change set could not be created
            StackOperationError: If the stack update fails while waiting
        """
        if (options.template_body is None) == (options.template_url is None):
            raise ValueError("exactly one of template_body or template_url must be provided")
        if options.stack is None and not options.stack_name:
            raise ValueError("either stack or stack_name must be provided")

        stack = options.stack if options.stack is not None else self.describe_stack(options.stack_name)
        stack_name = stack["StackName"]

        tags = merge_tags(stack.get("Tags", []), to_cfn_tags(options.tags))
        tags = merge_tags(tags, self.shared_tags(), replace=False)

        self._create_change_set(stack, options, tags)
        try:
            self._wait_for_change_set(stack_name, options.change_set_name)
        except NoChangesError as e:
            logger.info(f"nothing to update for stack {stack_name!r}: {e}")
            return None

        self._execute_change_set(stack_name, options.change_set_name)
        if not options.wait:
            return None

        self._wait_until_stack_is_updated(stack_name)
        return None

    def _create_change_set(self, stack: Dict[str, Any], options: UpdateStackOptions, tags: Tags) -> None:
        stack_name = stack["StackName"]
        capabilities = list(stack.get("Capabilities") or [])
        if "CAPABILITY_IAM" not in capabilities:
            capabilities.append("CAPABILITY_IAM")

        request: Dict[str, Any] = {
            "StackName": stack_name,
            "ChangeSetName": options.change_set_name,
            "Description": options.description,
            "ChangeSetType": "UPDATE",
            "Capabilities": capabilities,
            "Tags": tags,
            "Parameters": [
                {"ParameterKey": key, "ParameterValue": value} for key, value in options.parameters.items()
            ],
        }
        if options.template_body is not None:
            request["TemplateBody"] = options.template_body
        else:
            request["TemplateURL"] = options.template_url

        logger.info(f"creating change set {options.change_set_name!r} for stack {stack_name!r}")
        try:
            self.cloudformation.create_change_set(**request)
        except ClientError as e:
            raise ExternalServiceError("creating change set", stack_name, e) from e

    def _describe_change_set(self, stack_name: str, change_set_name: str) -> Dict[str, Any]:
        try:
            return self.cloudformation.describe_change_set(
                ChangeSetName=change_set_name,
                StackName=stack_name,
            )
        except ClientError as e:
            raise ExternalServiceError("describing change set", f"{stack_name}/{change_set_name}", e) from e

    def _wait_for_change_set(self, stack_name: str, change_set_name: str) -> Dict[str, Any]:
        """
        Wait until a change set is ready to execute.

        Raises:
            NoChangesError: If the change set would not modify the stack
            ChangeSetFailedError: If the change set failed for any other reason
        """
        change_set = self._poll(
            lambda: self._describe_change_set(stack_name, change_set_name),
            lambda c: c.get("Status") in CHANGE_SET_TERMINAL_STATUSES,
            f"change set {change_set_name!r}",
        )

        if change_set.get("Status") == "CREATE_COMPLETE":
            return change_set

        reason = change_set.get("StatusReason", "")
        if change_set.get("Status") == "FAILED" and any(r in reason for r in NO_CHANGES_REASONS):
            raise NoChangesError(reason)
        raise ChangeSetFailedError(stack_name, change_set_name, reason)

    def _execute_change_set(self, stack_name: str, change_set_name: str) -> None:
        try:
            self.cloudformation.execute_change_set(
                ChangeSetName=change_set_name,
                StackName=stack_name,
            )
        except ClientError as e:
            raise ExternalServiceError("executing change set", f"{stack_name}/{change_set_name}", e) from e

    def _wait_until_stack_is_updated(self, stack_name: str) -> None:
        stack = self._poll(
            lambda: self.describe_stack(stack_name),
            lambda s: s["StackStatus"] in UPDATE_TERMINAL_STATUSES,
            f"stack {stack_name!r} update",
        )

        if stack["StackStatus"] != "UPDATE_COMPLETE":
            self._log_failed_events(stack_name)
            raise StackOperationError(
                "updating stack", stack_name, stack["StackStatus"], stack.get("StackStatusReason")
            )
        logger.info(f"updated stack {stack_name!r}")
