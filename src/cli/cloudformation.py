#!/usr/bin/env python3
"""
Node group stack management CLI commands.
"""

import json
import logging
import sys
import time
from pathlib import Path
from typing import Dict, Optional, Tuple

import click

from cloudformation import NodeGroupOrchestrator, ResultChannel, StackManager, UpdateStackOptions
from config import load_cluster_config


def _parse_pairs(values: Tuple[str, ...], option: str) -> Dict[str, str]:
    pairs = {}
    for value in values:
        key, sep, val = value.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {value!r}", param_hint=option)
        pairs[key] = val
    return pairs


def _create_manager(config_file: str, region: Optional[str], profile: Optional[str]) -> StackManager:
    spec = load_cluster_config(config_file)
    return StackManager(spec, region=region, profile=profile)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def main(verbose: bool) -> None:
    """Node group stack management commands."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )


@main.command("list-nodegroups")
@click.option("--config-file", "-f", required=True, help="Cluster config file")
@click.option("--region", help="AWS region")
@click.option("--profile", help="AWS profile to use")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
def list_nodegroups(config_file, region, profile, output_json) -> None:
    """List the node group stacks of a cluster."""
    try:
        manager = _create_manager(config_file, region, profile)
        stacks = NodeGroupOrchestrator(manager).list_nodegroup_stacks()

        if output_json:
            rows = [
                {
                    "name": s.nodegroup_name,
                    "type": s.type.value,
                    "stack": s.stack["StackName"],
                    "status": s.stack["StackStatus"],
                }
                for s in stacks
            ]
            click.echo(json.dumps(rows, indent=2))
            return

        if not stacks:
            click.echo("No nodegroup stacks found")
            return

        click.echo(f"{'NODEGROUP':<30} {'TYPE':<10} {'STATUS':<25} STACK")
        for s in stacks:
            click.echo(f"{s.nodegroup_name:<30} {s.type.value:<10} {s.stack['StackStatus']:<25} {s.stack['StackName']}")

    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@main.command("create-nodegroups")
@click.option("--config-file", "-f", required=True, help="Cluster config file")
@click.option("--region", help="AWS region")
@click.option("--profile", help="AWS profile to use")
@click.option("--force-add-cni-policy", is_flag=True, help="Attach the CNI policy to IPv6 node roles")
@click.option("--timeout", type=float, help="Seconds to wait for each node group")
def create_nodegroups(config_file, region, profile, force_add_cni_policy, timeout) -> None:
    """Create the stacks of every node group in the cluster config."""
    try:
        manager = _create_manager(config_file, region, profile)
        orchestrator = NodeGroupOrchestrator(manager)

        names = manager.spec.nodegroup_names()
        if not names:
            click.echo("No nodegroups defined in config")
            return

        click.echo(f"Creating {len(names)} nodegroup stack(s): {', '.join(names)}")
        errors = orchestrator.create_nodegroups(force_add_cni_policy=force_add_cni_policy, timeout=timeout)

        if errors:
            for error in errors:
                click.echo(f"  - {error}", err=True)
            click.echo(f"❌ {len(errors)} nodegroup task(s) failed", err=True)
            sys.exit(1)

        click.echo("✅ All nodegroup stacks created")

    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@main.command("update-stack")
@click.option("--config-file", "-f", required=True, help="Cluster config file")
@click.option("--stack-name", "-s", required=True, help="CloudFormation stack name")
@click.option("--template-file", type=click.Path(exists=True, dir_okay=False), help="Template file")
@click.option("--template-url", help="Template URL in S3")
@click.option("--change-set-name", help="Change set name (generated if omitted)")
@click.option("--description", default="", help="Change set description")
@click.option("--tag", "tags", multiple=True, help="Stack tag as KEY=VALUE")
@click.option("--parameter", "parameters", multiple=True, help="Stack parameter as KEY=VALUE")
@click.option("--wait", is_flag=True, help="Wait for the update to complete")
@click.option("--region", help="AWS region")
@click.option("--profile", help="AWS profile to use")
def update_stack(
    config_file, stack_name, template_file, template_url, change_set_name, description,
    tags, parameters, wait, region, profile,
) -> None:
    """Update a stack through a change set."""
    try:
        if bool(template_file) == bool(template_url):
            raise click.UsageError("Exactly one of --template-file or --template-url must be provided")

        manager = _create_manager(config_file, region, profile)
        options = UpdateStackOptions(
            stack_name=stack_name,
            change_set_name=change_set_name or f"eksctl-update-{int(time.time())}",
            description=description,
            template_body=Path(template_file).read_text() if template_file else None,
            template_url=template_url,
            parameters=_parse_pairs(parameters, "--parameter"),
            tags=_parse_pairs(tags, "--tag"),
            wait=wait,
        )
        manager.update_stack(options)
        click.echo(f"✅ Stack {stack_name} updated" if wait else f"Update of stack {stack_name} started")

    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@main.command("propagate-tags")
@click.option("--config-file", "-f", required=True, help="Cluster config file")
@click.option("--nodegroup", "-n", "nodegroup_name", required=True, help="Managed nodegroup name")
@click.option("--region", help="AWS region")
@click.option("--profile", help="AWS profile to use")
def propagate_tags(config_file, nodegroup_name, region, profile) -> None:
    """Copy the tags of a managed node group to its Auto Scaling groups."""
    try:
        manager = _create_manager(config_file, region, profile)
        ng = manager.spec.find_managed_nodegroup(nodegroup_name)
        if ng is None:
            raise click.UsageError(f"Managed nodegroup {nodegroup_name!r} not found in config")

        results = ResultChannel()
        NodeGroupOrchestrator(manager).propagate_managed_nodegroup_tags_to_asg_task(results, ng)
        error = results.receive()
        if error is not None:
            raise error

        click.echo(f"✅ Tags of {nodegroup_name} propagated")

    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
