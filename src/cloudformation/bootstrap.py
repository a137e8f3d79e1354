"""
Instance user data for node groups.
"""

import base64
from typing import List

from config import ClusterConfig, ManagedNodeGroup, NodeGroup

SUPPORTED_AMI_FAMILIES = ("AmazonLinux2", "AmazonLinux2023", "Ubuntu2004", "Ubuntu2204")

MIME_BOUNDARY = "//"


def _encode(script: str) -> str:
    return base64.b64encode(script.encode("utf-8")).decode("ascii")


class Bootstrapper:
    """Builds the user data that joins an unmanaged node to the cluster."""

    def __init__(self, spec: ClusterConfig, ng: NodeGroup):
        self.spec = spec
        self.ng = ng

    def _kubelet_args(self) -> str:
        labels = ",".join(f"{k}={v}" for k, v in sorted(self.ng.labels.items()))
        args = [f"--node-labels={labels}"] if labels else []
        return " ".join(args)

    def user_data(self) -> str:
        """Get the base64 encoded boot script."""
        lines: List[str] = ["#!/bin/bash", "set -o errexit"]
        lines.extend(self.ng.pre_bootstrap_commands)

        command = f"/etc/eks/bootstrap.sh {self.spec.metadata.name}"
        kubelet_args = self._kubelet_args()
        if kubelet_args:
            command += f" --kubelet-extra-args '{kubelet_args}'"
        if self.spec.ipv6_enabled():
            command += " --ip-family ipv6"
        lines.append(command)
        return _encode("\n".join(lines) + "\n")


class ManagedBootstrapper:
    """Builds optional user data for managed node groups.

    EKS merges this with its own bootstrap, so only the commands to run
    beforehand are included.
    """

    def __init__(self, spec: ClusterConfig, ng: ManagedNodeGroup):
        self.spec = spec
        self.ng = ng

    def user_data(self) -> str:
        if not self.ng.pre_bootstrap_commands:
            return ""

        script = "\n".join(["#!/bin/bash", "set -o errexit", *self.ng.pre_bootstrap_commands])
        parts = [
            "MIME-Version: 1.0",
            f'Content-Type: multipart/mixed; boundary="{MIME_BOUNDARY}"',
            "",
            f"--{MIME_BOUNDARY}",
            'Content-Type: text/x-shellscript; charset="us-ascii"',
            "",
            script,
            "",
            f"--{MIME_BOUNDARY}--",
            "",
        ]
        return _encode("\n".join(parts))


def new_bootstrapper(spec: ClusterConfig, ng: NodeGroup) -> Bootstrapper:
    """
    Create the bootstrapper for an unmanaged node group.

    Raises:
        ValueError: If the node group's AMI family is not supported
    """
    if ng.ami_family not in SUPPORTED_AMI_FAMILIES:
        raise ValueError(f"unsupported AMI family {ng.ami_family!r} for nodegroup {ng.name!r}")
    return Bootstrapper(spec, ng)
