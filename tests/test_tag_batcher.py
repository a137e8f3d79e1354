"""
Tests for ASG tag records and batching.
"""

import pytest

from cloudformation.tag_batcher import build_asg_tag_records, chunk_tags


class TestChunkTags:
    """Test chunk_tags."""

    @pytest.mark.parametrize("count,sizes", [
        (0, []),
        (1, [1]),
        (25, [25]),
        (26, [25, 1]),
        (30, [25, 5]),
        (100, [25, 25, 25, 25]),
    ])
    def test_batch_sizes(self, count, sizes):
        batches = chunk_tags(list(range(count)))
        assert [len(b) for b in batches] == sizes

    def test_order_preserved(self):
        records = list(range(7))
        batches = chunk_tags(records, max_size=3)

        assert batches == [[0, 1, 2], [3, 4, 5], [6]]
        assert [r for b in batches for r in b] == records

    @pytest.mark.parametrize("max_size", [0, -1])
    def test_invalid_size(self, max_size):
        with pytest.raises(ValueError):
            chunk_tags([1], max_size=max_size)


class TestBuildAsgTagRecords:
    """Test build_asg_tag_records."""

    def test_one_record_per_asg_and_key(self):
        records = build_asg_tag_records({"b": "2", "a": "1"}, ["asg-1", "asg-2"])

        assert [(r["ResourceId"], r["Key"]) for r in records] == [
            ("asg-1", "a"), ("asg-1", "b"), ("asg-2", "a"), ("asg-2", "b"),
        ]
        assert records[0] == {
            "ResourceId": "asg-1",
            "ResourceType": "auto-scaling-group",
            "Key": "a",
            "Value": "1",
            "PropagateAtLaunch": False,
        }

    def test_no_asgs(self):
        assert build_asg_tag_records({"a": "1"}, []) == []
