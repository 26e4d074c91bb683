import numpy as np
import pytest

from ar_pipeline.ip_types import SlotDescriptor
from marker_tracker.multimarker import MultiMarkerAggregator, MultiMarkerRegistry


def test_sync_registers_analyzer_groups_once(analyzer, three_slot_group):
    analyzer.add_group(three_slot_group)
    registry = MultiMarkerRegistry()

    added = registry.sync(analyzer)
    assert [g.group_id for g in added] == [0]
    assert registry.get(0).slots == tuple(three_slot_group)

    assert registry.sync(analyzer) == []
    analyzer.add_group([SlotDescriptor("barcode", 1)])
    assert [g.group_id for g in registry.sync(analyzer)] == [1]
    assert len(registry) == 2


def test_duplicate_registration_rejected():
    registry = MultiMarkerRegistry()
    registry.register(0, [])
    with pytest.raises(ValueError):
        registry.register(0, [])


def test_one_visible_slot_makes_group_visible(analyzer, three_slot_group):
    gid = analyzer.add_group(three_slot_group)
    registry = MultiMarkerRegistry()
    registry.sync(analyzer)
    analyzer.queue([], groups={gid: [-1, 0, -1]})
    analyzer.detect("img")

    result = MultiMarkerAggregator(analyzer, registry).evaluate(gid)

    assert result.visible is True
    assert [s.slot_index for s in result.sub_results] == [0, 1, 2]
    assert [s.slot.visible for s in result.sub_results] == [-1, 0, -1]
    assert np.allclose(registry.get(gid).pose, result.pose)


def test_invisible_group_has_no_sub_results(analyzer, three_slot_group):
    gid = analyzer.add_group(three_slot_group)
    registry = MultiMarkerRegistry()
    registry.sync(analyzer)
    analyzer.queue([], groups={gid: [-1, -1, -1]})
    analyzer.detect("img")

    result = MultiMarkerAggregator(analyzer, registry).evaluate(gid)

    assert result.visible is False
    assert result.sub_results == []
    assert np.allclose(registry.get(gid).pose, 0.0)


def test_unknown_group_raises(analyzer):
    with pytest.raises(KeyError):
        MultiMarkerAggregator(analyzer, MultiMarkerRegistry()).evaluate(3)
