"""
CloudFormation resource sets for node group stacks.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Tuple

from botocore.exceptions import ClientError
from troposphere import GetAtt, Output, Ref, Sub, Template
from troposphere import autoscaling, ec2, eks, iam

from config import ClusterConfig, LaunchTemplateRef, ManagedNodeGroup, NodeGroup, NodeGroupType
from naming import CLUSTER_NAME_TAG, NODEGROUP_NAME_TAG, NODEGROUP_TYPE_TAG

from .bootstrap import Bootstrapper, ManagedBootstrapper
from .errors import ExternalServiceError

# Auto Scaling quotas
MAXIMUM_TAG_NUMBER = 50
MAXIMUM_CREATED_TAG_NUMBER_PER_CALL = 25

NODE_POLICIES = [
    "AmazonEKSWorkerNodePolicy",
    "AmazonEC2ContainerRegistryReadOnly",
    "AmazonSSMManagedInstanceCore",
]
CNI_POLICY = "AmazonEKS_CNI_Policy"

CNI_IPV6_POLICY_DOCUMENT = {
    "Version": "2012-10-17",
    "Statement": [{
        "Effect": "Allow",
        "Action": [
            "ec2:AssignIpv6Addresses",
            "ec2:DescribeInstances",
            "ec2:DescribeTags",
            "ec2:DescribeNetworkInterfaces",
            "ec2:DescribeInstanceTypes",
        ],
        "Resource": "*",
    }, {
        "Effect": "Allow",
        "Action": ["ec2:CreateTags"],
        "Resource": Sub("arn:${AWS::Partition}:ec2:*:*:network-interface/*"),
    }],
}


def _managed_policy_arn(name: str) -> Sub:
    return Sub(f"arn:${{AWS::Partition}}:iam::aws:policy/{name}")


class ResourceSet(ABC):
    """A template under construction, plus the outputs read back after creation."""

    capabilities: Tuple[str, ...] = ("CAPABILITY_IAM",)

    def __init__(self, spec: ClusterConfig):
        self.spec = spec
        self.template = Template()
        self.outputs: Dict[str, str] = {}

    @abstractmethod
    def add_all_resources(self) -> None:
        """Add every resource and output to the template."""

    def render_json(self) -> str:
        return self.template.to_json()

    def get_all_outputs(self, stack: Dict[str, Any]) -> Dict[str, str]:
        """Collect the outputs of a created stack."""
        for output in stack.get("Outputs", []):
            self.outputs[output["OutputKey"]] = output["OutputValue"]
        return self.outputs

    def _add_node_role(self, force_add_cni_policy: bool) -> iam.Role:
        policies = [_managed_policy_arn(name) for name in NODE_POLICIES]
        inline_policies = []

        # IPv6 clusters run the VPC CNI with its own service account role
        if not self.spec.ipv6_enabled():
            policies.append(_managed_policy_arn(CNI_POLICY))
        elif force_add_cni_policy:
            inline_policies.append(iam.Policy(PolicyName="CNIIPv6", PolicyDocument=CNI_IPV6_POLICY_DOCUMENT))

        role_props: Dict[str, Any] = {
            "AssumeRolePolicyDocument": {
                "Version": "2012-10-17",
                "Statement": [{
                    "Effect": "Allow",
                    "Principal": {"Service": [Sub("ec2.${AWS::URLSuffix}")]},
                    "Action": ["sts:AssumeRole"],
                }],
            },
            "ManagedPolicyArns": policies,
            "Path": "/",
        }
        if inline_policies:
            role_props["Policies"] = inline_policies

        role = self.template.add_resource(iam.Role("NodeInstanceRole", **role_props))
        self.template.add_output(Output(
            "InstanceRoleARN",
            Value=GetAtt(role, "Arn"),
        ))
        return role


class NodeGroupResourceSet(ResourceSet):
    """Resources of an unmanaged node group: role, launch template and ASG."""

    def __init__(
        self,
        spec: ClusterConfig,
        ng: NodeGroup,
        bootstrapper: Bootstrapper,
        force_add_cni_policy: bool,
        vpc_importer: Any,
    ):
        super().__init__(spec)
        self.ng = ng
        self.bootstrapper = bootstrapper
        self.force_add_cni_policy = force_add_cni_policy
        self.vpc_importer = vpc_importer

    def _validate(self) -> None:
        scaling = self.ng.scaling
        if not scaling["min"] <= scaling["desired"] <= scaling["max"]:
            raise ValueError(
                f"nodegroup {self.ng.name!r}: desiredCapacity {scaling['desired']} "
                f"must be within minSize {scaling['min']} and maxSize {scaling['max']}"
            )
        if not self.ng.ami:
            raise ValueError(f"nodegroup {self.ng.name!r}: no AMI set")

    def add_all_resources(self) -> None:
        self._validate()
        self.template.set_description(
            f"EKS nodes (AMI family: {self.ng.ami_family}) [created by eksctl]"
        )

        role = self._add_node_role(self.force_add_cni_policy)
        profile = self.template.add_resource(iam.InstanceProfile(
            "NodeInstanceProfile",
            Path="/",
            Roles=[Ref(role)],
        ))

        launch_template = self.template.add_resource(ec2.LaunchTemplate(
            "NodeGroupLaunchTemplate",
            LaunchTemplateName=Sub("${AWS::StackName}"),
            LaunchTemplateData=ec2.LaunchTemplateData(
                ImageId=self.ng.ami,
                InstanceType=self.ng.instance_type,
                UserData=self.bootstrapper.user_data(),
                IamInstanceProfile=ec2.IamInstanceProfile(Arn=GetAtt(profile, "Arn")),
                SecurityGroupIds=self.vpc_importer.security_groups(),
                MetadataOptions=ec2.MetadataOptions(HttpTokens="required", HttpPutResponseHopLimit=2),
            ),
        ))

        scaling = self.ng.scaling
        asg_tags = [
            {"Key": "Name", "Value": f"{self.spec.metadata.name}-{self.ng.name}-Node", "PropagateAtLaunch": True},
            {"Key": f"kubernetes.io/cluster/{self.spec.metadata.name}", "Value": "owned", "PropagateAtLaunch": True},
        ]
        self.template.add_resource(autoscaling.AutoScalingGroup(
            "NodeGroup",
            LaunchTemplate=autoscaling.LaunchTemplateSpecification(
                LaunchTemplateId=Ref(launch_template),
                Version=GetAtt(launch_template, "LatestVersionNumber"),
            ),
            MinSize=str(scaling["min"]),
            MaxSize=str(scaling["max"]),
            DesiredCapacity=str(scaling["desired"]),
            VPCZoneIdentifier=self.vpc_importer.subnets(private=self.ng.private_networking),
            Tags=asg_tags,
        ))

        self.template.add_output(Output("InstanceProfileARN", Value=GetAtt(profile, "Arn")))


class LaunchTemplateFetcher:
    """Looks up user supplied launch templates."""

    def __init__(self, ec2_api: Any):
        self.ec2_api = ec2_api

    def fetch(self, ref: LaunchTemplateRef) -> Dict[str, Any]:
        """
        Get a launch template version.

        Raises:
            ExternalServiceError: If the launch template cannot be described
            ValueError: If the requested version does not exist
        """
        version = ref.version or "$Default"
        try:
            response = self.ec2_api.describe_launch_template_versions(
                LaunchTemplateId=ref.id,
                Versions=[version],
            )
        except ClientError as e:
            raise ExternalServiceError("describing launch template", ref.id, e) from e

        versions = response.get("LaunchTemplateVersions", [])
        if not versions:
            raise ValueError(f"launch template {ref.id} has no version {version}")
        return versions[0]


class ManagedNodeGroupResourceSet(ResourceSet):
    """Resources of a managed node group: role, launch template and EKS node group."""

    def __init__(
        self,
        spec: ClusterConfig,
        ng: ManagedNodeGroup,
        launch_template_fetcher: LaunchTemplateFetcher,
        bootstrapper: ManagedBootstrapper,
        force_add_cni_policy: bool,
        vpc_importer: Any,
    ):
        super().__init__(spec)
        self.ng = ng
        self.launch_template_fetcher = launch_template_fetcher
        self.bootstrapper = bootstrapper
        self.force_add_cni_policy = force_add_cni_policy
        self.vpc_importer = vpc_importer

    def _launch_template(self) -> Dict[str, Any]:
        """Get the launch template specification and whether it sets an instance type."""
        if self.ng.launch_template:
            version = self.launch_template_fetcher.fetch(self.ng.launch_template)
            data = version.get("LaunchTemplateData", {})
            return {
                "spec": eks.LaunchTemplateSpecification(
                    Id=self.ng.launch_template.id,
                    Version=str(version["VersionNumber"]),
                ),
                "sets_instance_type": "InstanceType" in data,
            }

        template_data: Dict[str, Any] = {
            "MetadataOptions": ec2.MetadataOptions(HttpTokens="required", HttpPutResponseHopLimit=2),
        }
        user_data = self.bootstrapper.user_data()
        if user_data:
            template_data["UserData"] = user_data
        if self.ng.ami:
            template_data["ImageId"] = self.ng.ami
        security_groups = self.vpc_importer.security_groups()
        if security_groups:
            template_data["SecurityGroupIds"] = security_groups

        launch_template = self.template.add_resource(ec2.LaunchTemplate(
            "LaunchTemplate",
            LaunchTemplateName=Sub("${AWS::StackName}"),
            LaunchTemplateData=ec2.LaunchTemplateData(**template_data),
        ))
        return {
            "spec": eks.LaunchTemplateSpecification(
                Id=Ref(launch_template),
                Version=GetAtt(launch_template, "LatestVersionNumber"),
            ),
            "sets_instance_type": False,
        }

    def add_all_resources(self) -> None:
        scaling = self.ng.scaling
        if not scaling["min"] <= scaling["desired"] <= scaling["max"]:
            raise ValueError(
                f"managed nodegroup {self.ng.name!r}: desiredCapacity {scaling['desired']} "
                f"must be within minSize {scaling['min']} and maxSize {scaling['max']}"
            )
        self.template.set_description("EKS Managed Nodes (SSH access: false) [created by eksctl]")

        role = self._add_node_role(self.force_add_cni_policy)
        launch_template = self._launch_template()

        nodegroup_props: Dict[str, Any] = {
            "ClusterName": self.spec.metadata.name,
            "NodegroupName": self.ng.name,
            "NodeRole": GetAtt(role, "Arn"),
            "Subnets": self.vpc_importer.subnets(private=self.ng.private_networking),
            "ScalingConfig": eks.ScalingConfig(
                MinSize=scaling["min"],
                MaxSize=scaling["max"],
                DesiredSize=scaling["desired"],
            ),
            "LaunchTemplate": launch_template["spec"],
            "Labels": {CLUSTER_NAME_TAG: self.spec.metadata.name, NODEGROUP_NAME_TAG: self.ng.name, **self.ng.labels},
            "Tags": {NODEGROUP_NAME_TAG: self.ng.name, NODEGROUP_TYPE_TAG: NodeGroupType.MANAGED.value, **self.ng.tags},
        }
        if not launch_template["sets_instance_type"]:
            nodegroup_props["InstanceTypes"] = [self.ng.instance_type]

        self.template.add_resource(eks.Nodegroup("ManagedNodeGroup", **nodegroup_props))

