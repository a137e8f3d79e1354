"""
Shared fixtures for stack management tests.
"""

from unittest.mock import Mock, patch

import pytest

from cloudformation.stack_manager import StackManager
from config import ClusterConfig


def make_spec(**overrides) -> ClusterConfig:
    """Build a cluster config from the YAML layout."""
    data = {
        "metadata": {"name": "test-cluster", "region": "us-west-2"},
        "nodeGroups": [
            {"name": "ng-1", "ami": "ami-0123456789", "desiredCapacity": 2},
        ],
        "managedNodeGroups": [
            {"name": "mng-1", "tags": {"team": "platform"}},
        ],
    }
    data.update(overrides)
    return ClusterConfig.from_dict(data)


def create_manager(spec: ClusterConfig) -> StackManager:
    """Create a test manager with mocked AWS clients."""
    with patch("boto3.Session"):
        manager = StackManager(spec, waiter_delay=0, waiter_max_attempts=5)

    # Mock AWS clients
    manager.cloudformation = Mock()
    manager.autoscaling = Mock()
    manager.eks = Mock()
    manager.ec2 = Mock()
    manager.cloudformation.describe_stack_events.return_value = {"StackEvents": []}
    return manager


@pytest.fixture
def spec() -> ClusterConfig:
    return make_spec()


@pytest.fixture
def manager(spec):
    manager = create_manager(spec)
    yield manager
    manager.close()


@pytest.fixture
def spec_factory():
    return make_spec


@pytest.fixture
def manager_factory():
    managers = []

    def _create(spec: ClusterConfig) -> StackManager:
        manager = create_manager(spec)
        managers.append(manager)
        return manager

    yield _create
    for manager in managers:
        manager.close()
