"""Multi-marker group registry and per-frame visibility aggregation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterator, Optional

import numpy as np

from ar_pipeline.ip_types import GroupSlot, SlotDescriptor
from ar_pipeline.strategies.analyzer import ImageAnalyzer


logger = logging.getLogger(__name__)


@dataclass
class MultiMarkerGroup:
    group_id: int
    slots: tuple[SlotDescriptor, ...]
    pose: np.ndarray = field(default_factory=lambda: np.zeros((3, 4)))


@dataclass(frozen=True)
class SubResult:
    slot_index: int
    slot: GroupSlot


@dataclass
class GroupResult:
    group_id: int
    visible: bool
    pose: np.ndarray
    sub_results: list[SubResult] = field(default_factory=list)


class MultiMarkerRegistry:
    """Groups known to the controller, in registration order."""

    def __init__(self):
        self._groups: dict[int, MultiMarkerGroup] = {}

    def register(self, group_id: int, slots) -> MultiMarkerGroup:
        if group_id in self._groups:
            raise ValueError(f"multi-marker group {group_id} already registered")
        group = MultiMarkerGroup(group_id, tuple(slots))
        self._groups[group_id] = group
        return group

    def sync(self, analyzer: ImageAnalyzer) -> list[MultiMarkerGroup]:
        """Register every analyzer group not yet known; returns the new ones."""
        added = []
        for group_id in range(analyzer.get_group_count()):
            if group_id in self._groups:
                continue
            count = analyzer.get_group_slot_count(group_id)
            if count < 0:
                logger.warning("analyzer reports no slots for group %d", group_id)
                continue
            slots = [analyzer.get_group_slot(group_id, j).descriptor for j in range(count)]
            added.append(self.register(group_id, slots))
        return added

    def get(self, group_id: int) -> Optional[MultiMarkerGroup]:
        return self._groups.get(group_id)

    def clear(self) -> None:
        self._groups.clear()

    def __iter__(self) -> Iterator[MultiMarkerGroup]:
        return iter(list(self._groups.values()))

    def __len__(self) -> int:
        return len(self._groups)


class MultiMarkerAggregator:
    """
    Folds sub-marker visibility into one group decision.

    A group is visible while any one of its slots is seen. When visible,
    every slot is reported in slot order, seen or not, so consumers can tell
    an occluded slot from a missing one.
    """

    def __init__(self, analyzer: ImageAnalyzer, registry: MultiMarkerRegistry):
        self.analyzer = analyzer
        self.registry = registry

    def evaluate(self, group_id: int) -> GroupResult:
        group = self.registry.get(group_id)
        if group is None:
            raise KeyError(f"unknown multi-marker group {group_id}")

        pose = np.asarray(self.analyzer.get_group_pose(group_id), dtype=np.float64).reshape(3, 4)
        slots = [self.analyzer.get_group_slot(group_id, j) for j in range(len(group.slots))]
        visible = any(slot.visible >= 0 for slot in slots)

        if not visible:
            return GroupResult(group_id, False, pose)

        group.pose[:, :] = pose
        subs = [SubResult(j, slot) for j, slot in enumerate(slots)]
        return GroupResult(group_id, True, pose, subs)
