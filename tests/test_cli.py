"""
Tests for the node group stack CLI commands.
"""

import json
from unittest.mock import patch

import pytest
import yaml
from click.testing import CliRunner

from cli.__main__ import cli
from cli.cloudformation import main
from cloudformation.errors import StackNotFoundError
from cloudformation.nodegroup import NodeGroupStack
from config import ClusterConfig, NodeGroupType


CONFIG = {
    "metadata": {"name": "test-cluster", "region": "us-west-2"},
    "managedNodeGroups": [{"name": "mng-1", "tags": {"team": "platform"}}],
}


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "cluster.yaml"
    path.write_text(yaml.dump(CONFIG))
    return str(path)


@pytest.fixture
def stack_manager():
    with patch("cli.cloudformation.StackManager") as manager_class:
        manager = manager_class.return_value
        manager.spec = ClusterConfig.from_dict(CONFIG)
        yield manager


@pytest.fixture
def orchestrator():
    with patch("cli.cloudformation.NodeGroupOrchestrator") as orchestrator_class:
        yield orchestrator_class.return_value


class TestListNodeGroups:
    """Test the list-nodegroups command."""

    def test_json(self, runner, config_file, stack_manager, orchestrator):
        orchestrator.list_nodegroup_stacks.return_value = [
            NodeGroupStack(
                nodegroup_name="mng-1",
                type=NodeGroupType.MANAGED,
                stack={"StackName": "eksctl-test-cluster-nodegroup-mng-1", "StackStatus": "CREATE_COMPLETE"},
            ),
        ]

        result = runner.invoke(main, ["list-nodegroups", "-f", config_file, "--json"])

        assert result.exit_code == 0
        assert json.loads(result.output) == [{
            "name": "mng-1",
            "type": "managed",
            "stack": "eksctl-test-cluster-nodegroup-mng-1",
            "status": "CREATE_COMPLETE",
        }]

    def test_empty(self, runner, config_file, stack_manager, orchestrator):
        orchestrator.list_nodegroup_stacks.return_value = []

        result = runner.invoke(main, ["list-nodegroups", "-f", config_file])

        assert result.exit_code == 0
        assert "No nodegroup stacks found" in result.output

    def test_missing_config(self, runner, tmp_path):
        result = runner.invoke(main, ["list-nodegroups", "-f", str(tmp_path / "missing.yaml")])

        assert result.exit_code == 1
        assert "Configuration file not found" in result.output


class TestCreateNodeGroups:
    """Test the create-nodegroups command."""

    def test_success(self, runner, config_file, stack_manager, orchestrator):
        orchestrator.create_nodegroups.return_value = []

        result = runner.invoke(main, ["create-nodegroups", "-f", config_file, "--force-add-cni-policy"])

        assert result.exit_code == 0
        assert "Creating 1 nodegroup stack(s): mng-1" in result.output
        orchestrator.create_nodegroups.assert_called_once_with(force_add_cni_policy=True, timeout=None)

    def test_failures_exit_nonzero(self, runner, config_file, stack_manager, orchestrator):
        orchestrator.create_nodegroups.return_value = [RuntimeError("stack failed")]

        result = runner.invoke(main, ["create-nodegroups", "-f", config_file])

        assert result.exit_code == 1
        assert "stack failed" in result.output


class TestUpdateStack:
    """Test the update-stack command."""

    def test_update_from_file(self, runner, config_file, stack_manager, tmp_path):
        template = tmp_path / "template.json"
        template.write_text('{"Resources": {}}')

        result = runner.invoke(main, [
            "update-stack", "-f", config_file,
            "--stack-name", "eksctl-test-cluster-nodegroup-mng-1",
            "--template-file", str(template),
            "--change-set-name", "my-change",
            "--tag", "team=data",
            "--parameter", "Size=3",
            "--wait",
        ])

        assert result.exit_code == 0
        options = stack_manager.update_stack.call_args.args[0]
        assert options.stack_name == "eksctl-test-cluster-nodegroup-mng-1"
        assert options.change_set_name == "my-change"
        assert options.template_body == '{"Resources": {}}'
        assert options.template_url is None
        assert options.tags == {"team": "data"}
        assert options.parameters == {"Size": "3"}
        assert options.wait is True

    def test_requires_template(self, runner, config_file, stack_manager):
        result = runner.invoke(main, ["update-stack", "-f", config_file, "--stack-name", "s"])

        assert result.exit_code == 1
        assert "Exactly one of --template-file or --template-url" in result.output
        stack_manager.update_stack.assert_not_called()

    def test_bad_tag(self, runner, config_file, stack_manager):
        result = runner.invoke(main, [
            "update-stack", "-f", config_file, "--stack-name", "s",
            "--template-url", "https://example.com/t.json", "--tag", "novalue",
        ])

        assert result.exit_code == 1
        assert "expected KEY=VALUE" in result.output

    def test_stack_not_found(self, runner, config_file, stack_manager):
        stack_manager.update_stack.side_effect = StackNotFoundError("s")

        result = runner.invoke(main, [
            "update-stack", "-f", config_file, "--stack-name", "s",
            "--template-url", "https://example.com/t.json",
        ])

        assert result.exit_code == 1
        assert "no CloudFormation stack found for s" in result.output


class TestPropagateTags:
    """Test the propagate-tags command."""

    def test_propagate(self, runner, config_file, stack_manager, orchestrator):
        orchestrator.propagate_managed_nodegroup_tags_to_asg_task.side_effect = (
            lambda results, ng: results.send(None)
        )

        result = runner.invoke(main, ["propagate-tags", "-f", config_file, "-n", "mng-1"])

        assert result.exit_code == 0
        assert "Tags of mng-1 propagated" in result.output

    def test_propagate_error(self, runner, config_file, stack_manager, orchestrator):
        orchestrator.propagate_managed_nodegroup_tags_to_asg_task.side_effect = (
            lambda results, ng: results.send(RuntimeError("maximum amount for asg"))
        )

        result = runner.invoke(main, ["propagate-tags", "-f", config_file, "-n", "mng-1"])

        assert result.exit_code == 1
        assert "maximum amount for asg" in result.output

    def test_unknown_nodegroup(self, runner, config_file, stack_manager, orchestrator):
        result = runner.invoke(main, ["propagate-tags", "-f", config_file, "-n", "other"])

        assert result.exit_code == 1
        assert "not found in config" in result.output


class TestMainGroup:
    """Test the top level command group."""

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert "0.3.0" in result.output

    def test_cloudformation_group(self, runner):
        result = runner.invoke(cli, ["cloudformation", "--help"])

        assert result.exit_code == 0
        assert "create-nodegroups" in result.output
