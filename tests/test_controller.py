import numpy as np
import pytest

from marker_tracker.classify import MarkerKind
from marker_tracker.controller import FrameState, FrameStatus, MarkerController
from marker_tracker.events import EventKind


def _record_all(controller):
    events = []
    for kind in EventKind:
        controller.add_listener(kind, lambda e, k=kind: events.append((k, e)))
    return events


def _kinds(events):
    return [k for k, _ in events]


def test_ready_event_emitted_once(analyzer):
    controller = MarkerController(analyzer)
    events = _record_all(controller)

    controller.initialize()
    controller.process("img")
    controller.initialize()

    assert _kinds(events).count(EventKind.CONTROLLER_READY) == 1


def test_process_initializes_lazily(analyzer):
    controller = MarkerController(analyzer)
    events = _record_all(controller)
    analyzer.queue([])

    controller.process("img")

    assert _kinds(events) == [EventKind.CONTROLLER_READY, EventKind.MARKER_COUNT]


def test_event_order_for_markers_then_groups(analyzer, detection, three_slot_group):
    gid = analyzer.add_group(three_slot_group)
    controller = MarkerController(analyzer)
    controller.initialize()
    events = _record_all(controller)
    analyzer.queue(
        [detection(id_patt=5), detection(id_matrix=11)],
        groups={gid: [-1, 1, -1]},
    )

    result = controller.process("img")

    assert result.ok
    assert _kinds(events) == [
        EventKind.MARKER_COUNT,
        EventKind.MARKER_POSE,
        EventKind.MARKER_POSE,
        EventKind.GROUP_POSE,
        EventKind.GROUP_SUB_POSE,
        EventKind.GROUP_SUB_POSE,
        EventKind.GROUP_SUB_POSE,
    ]
    assert events[0][1].count == 2
    assert (events[1][1].marker_kind, events[1][1].identity) == (MarkerKind.PATTERN, 5)
    assert (events[2][1].marker_kind, events[2][1].identity) == (MarkerKind.BARCODE, 11)
    assert [e.sub_index for _, e in events[4:]] == [0, 1, 2]
    assert result.tracked == [(MarkerKind.PATTERN, 5), (MarkerKind.BARCODE, 11)]
    assert result.visible_groups == [gid]


def test_sub_pose_composes_slot_local_pose(analyzer, three_slot_group):
    gid = analyzer.add_group(three_slot_group)
    controller = MarkerController(analyzer)
    subs = []
    controller.add_listener(EventKind.GROUP_SUB_POSE, lambda e: subs.append(e.matrix.copy()))
    analyzer.queue([], groups={gid: [0, -1, -1]})

    controller.process("img")

    # Group sits at z=5, slot j is offset by j along x.
    assert [tuple(m[:3, 3]) for m in subs] == [(0.0, 0.0, 5.0), (1.0, 0.0, 5.0), (2.0, 0.0, 5.0)]


def test_invisible_group_emits_nothing(analyzer, three_slot_group):
    analyzer.add_group(three_slot_group)
    controller = MarkerController(analyzer)
    controller.initialize()
    events = _record_all(controller)
    analyzer.queue([])

    result = controller.process("img")

    assert _kinds(events) == [EventKind.MARKER_COUNT]
    assert result.visible_groups == []


def test_direction_is_corrected_before_solving(analyzer, detection):
    controller = MarkerController(analyzer)
    poses = []
    controller.add_listener(EventKind.MARKER_POSE, poses.append)
    analyzer.queue([detection(id_matrix=3, dir=0, dir_matrix=2)])

    controller.process("img")

    assert analyzer.direction_updates == [(0, 2)]
    assert poses[0].detection.dir == 2


def test_matching_direction_is_left_alone(analyzer, detection):
    controller = MarkerController(analyzer)
    analyzer.queue([detection(id_patt=1, dir=1, dir_patt=1)])
    controller.process("img")
    assert analyzer.direction_updates == []


def test_visibility_continuity_across_frames(analyzer, detection):
    controller = MarkerController(analyzer)
    poses = []
    controller.add_listener(EventKind.MARKER_POSE, lambda e: poses.append(e.continuous))
    analyzer.queue([detection(id_matrix=3)])
    analyzer.queue([detection(id_matrix=3)])
    analyzer.queue([])
    analyzer.queue([detection(id_matrix=3)])

    for _ in range(4):
        controller.process("img")

    assert poses == [False, True, False]
    assert [c[0] for c in analyzer.calls] == ["fresh", "continuous", "fresh"]


def test_acquisition_failure_leaves_state_untouched(analyzer, detection):
    controller = MarkerController(analyzer)
    events = _record_all(controller)
    analyzer.queue([detection(id_matrix=3)])
    controller.process("img")
    events.clear()

    result = controller.process(None)

    assert result.status is FrameStatus.ACQUISITION_FAILURE
    assert result.code == -99
    assert not result.ok
    assert events == []
    assert controller.frame_count == 1
    assert controller.state is FrameState.IDLE
    marker = controller.get_tracked_marker(MarkerKind.BARCODE, 3)
    assert marker.visible_this_frame is True

    # Still counted as seen in the frame before the failure.
    analyzer.queue([detection(id_matrix=3)])
    controller.process("img")
    assert analyzer.calls[-1][0] == "continuous"


def test_negative_detect_status_is_acquisition_failure(analyzer):
    controller = MarkerController(analyzer)
    analyzer.queue_code(-1)
    result = controller.process("img")
    assert result.status is FrameStatus.ACQUISITION_FAILURE
    assert result.code == -1


def test_pose_failure_skips_event(analyzer, detection):
    controller = MarkerController(analyzer)
    poses = []
    controller.add_listener(EventKind.MARKER_POSE, poses.append)
    analyzer.queue([detection(id_matrix=3), detection(id_matrix=4)], fail=(0,))

    result = controller.process("img")

    assert [p.identity for p in poses] == [4]
    assert result.pose_failures == 1


def test_unclassified_detection_is_dropped_by_default(analyzer, detection):
    controller = MarkerController(analyzer)
    poses = []
    controller.add_listener(EventKind.MARKER_POSE, poses.append)
    analyzer.queue([detection()])

    result = controller.process("img")

    assert poses == []
    assert result.unclassified == 1
    assert analyzer.calls == []


def test_unclassified_detection_reported_when_enabled(analyzer, detection):
    controller = MarkerController(analyzer, default_marker_width=2.0, report_unclassified=True)
    poses = []
    controller.add_listener(EventKind.MARKER_POSE, poses.append)
    analyzer.queue([detection()])

    controller.process("img")

    assert poses[0].marker_kind is MarkerKind.UNKNOWN
    assert poses[0].identity == -1
    assert analyzer.calls == [("fresh", 0, 2.0, None)]
    assert len(controller.tracked_markers()) == 0


def test_listener_failure_does_not_abort_frame(analyzer, detection):
    controller = MarkerController(analyzer)
    poses = []

    def broken(event):
        raise RuntimeError("listener bug")

    controller.add_listener(EventKind.MARKER_COUNT, broken)
    controller.add_listener(EventKind.MARKER_POSE, poses.append)
    analyzer.queue([detection(id_matrix=3)])

    result = controller.process("img")

    assert result.ok
    assert len(poses) == 1
    assert len(result.listener_errors) == 1
    assert controller.state is FrameState.IDLE


def test_state_during_dispatch(analyzer, detection):
    controller = MarkerController(analyzer)
    states = []
    controller.add_listener(EventKind.MARKER_COUNT, lambda e: states.append(controller.state))
    controller.add_listener(EventKind.MARKER_POSE, lambda e: states.append(controller.state))
    analyzer.queue([detection(id_matrix=3)])

    controller.process("img")

    assert states == [FrameState.DETECTING_MARKERS, FrameState.CLASSIFYING_AND_TRACKING]
    assert controller.state is FrameState.IDLE


def test_scale_applies_to_reported_translation(analyzer, detection):
    controller = MarkerController(analyzer, transform_scale=10.0)
    matrices = []
    controller.add_listener(EventKind.MARKER_POSE, lambda e: matrices.append(e.matrix.copy()))
    analyzer.queue([detection(id_matrix=3)])

    controller.process("img")

    assert np.allclose(matrices[0][:3, 3], [10.0, 20.0, 30.0])
    assert np.allclose(matrices[0][:3, :3], np.eye(3))


def test_width_override_used_on_next_update(analyzer, detection):
    controller = MarkerController(analyzer)
    controller.track_barcode_marker(3, 0.5)
    analyzer.queue([detection(id_matrix=3)])
    analyzer.queue([detection(id_matrix=3)])

    controller.process("img")
    controller.set_marker_width("barcode", 3, 0.25)
    controller.process("img")

    assert [c[2] for c in analyzer.calls] == [0.5, 0.25]


def test_invalid_widths_rejected(analyzer):
    with pytest.raises(ValueError):
        MarkerController(analyzer, default_marker_width=0)
    controller = MarkerController(analyzer)
    with pytest.raises(ValueError):
        controller.set_marker_width(MarkerKind.PATTERN, 1, -1.0)
    with pytest.raises(ValueError):
        controller.track_barcode_marker(2, -0.5)


def test_group_accessors(analyzer, three_slot_group):
    analyzer.add_group(three_slot_group)
    controller = MarkerController(analyzer)
    controller.initialize()
    assert controller.group_count() == 1
    assert controller.group_slot_count(0) == 3
    assert controller.group_slot_count(7) == -1


def test_dispose_releases_everything(analyzer, detection):
    controller = MarkerController(analyzer)
    controller.add_listener(EventKind.MARKER_POSE, lambda e: None)
    analyzer.queue([detection(id_matrix=3)])
    controller.process("img")

    controller.dispose()

    assert controller.bus.listener_count() == 0
    assert controller.tracked_markers() == []
    assert analyzer.closed is True


def test_ready_listener_failure_reaches_first_frame_result(analyzer):
    controller = MarkerController(analyzer)

    def broken(event):
        raise RuntimeError("ready handler bug")

    controller.add_listener(EventKind.CONTROLLER_READY, broken)
    analyzer.queue([])

    first = controller.process("img")
    second = controller.process("img")

    assert first.ok
    assert len(first.listener_errors) == 1
    assert isinstance(first.listener_errors[0].failures[0][1], RuntimeError)
    assert second.listener_errors == []


def test_initialize_returns_ready_listener_failures(analyzer):
    controller = MarkerController(analyzer)
    controller.add_listener(EventKind.CONTROLLER_READY, lambda e: 1 / 0)

    errors = controller.initialize()

    assert len(errors) == 1
    assert controller.initialize() == []


def test_ready_listener_failure_kept_on_acquisition_failure(analyzer):
    controller = MarkerController(analyzer)
    controller.add_listener(EventKind.CONTROLLER_READY, lambda e: 1 / 0)

    result = controller.process(None)

    assert result.status is FrameStatus.ACQUISITION_FAILURE
    assert len(result.listener_errors) == 1
