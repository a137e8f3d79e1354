"""
Tag records for Auto Scaling groups, split into call-sized batches.
"""

from typing import Any, Dict, List, Sequence, TypeVar

from .builder import MAXIMUM_CREATED_TAG_NUMBER_PER_CALL

T = TypeVar("T")

ASG_RESOURCE_TYPE = "auto-scaling-group"


def chunk_tags(records: Sequence[T], max_size: int = MAXIMUM_CREATED_TAG_NUMBER_PER_CALL) -> List[List[T]]:
    """
    Split records into consecutive batches of at most ``max_size``.

    The last batch may be smaller; concatenating the batches gives back the
    input in order.

    Raises:
        ValueError: If max_size is not positive
    """
    if max_size <= 0:
        raise ValueError(f"batch size must be positive, got {max_size}")
    return [list(records[i:i + max_size]) for i in range(0, len(records), max_size)]


def build_asg_tag_records(tags: Dict[str, str], asg_names: Sequence[str]) -> List[Dict[str, Any]]:
    """
    Build one tag record per (Auto Scaling group, tag key) pair.

    Keys are sorted so that batch membership is the same on every run.
    Tags are not propagated to instances launched by the group.
    """
    return [
        {
            "ResourceId": asg_name,
            "ResourceType": ASG_RESOURCE_TYPE,
            "Key": key,
            "Value": tags[key],
            "PropagateAtLaunch": False,
        }
        for asg_name in asg_names
        for key in sorted(tags)
    ]
