#!/usr/bin/env python3
"""
Integration tests for the teleoperation controller.

Tests:
- Per-hand tracking state machine (acquire, lose, re-acquire snap)
- Hand independence
- Target shaping (frame correction, wrist offset, arm scale)
- Joint limits on every committed angle
- Collision feedback reaching the gate
- Graceful degradation when a stage raises
"""

import sys
import os
import pytest
import numpy as np

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from scipy.spatial.transform import Rotation

from handteleop.core.config_loader import AppConfig, build_controller_config
from handteleop.core.error_handling import ComponentState, ErrorTracker
from handteleop.core.filters import FilterState
from handteleop.core.hand_frame import Handedness
from handteleop.core.teleop_controller import (
    FRAME_CORRECTION,
    HandTrackingState,
    TeleopController,
    TeleopControllerConfig,
    TrackingStatus,
)
from handteleop.robot_runtime.safety_gate import CollisionState

from hand_poses import make_hand_frame, reachable_wrist

LEFT, RIGHT = Handedness.LEFT, Handedness.RIGHT
DT = 1.0 / 90.0


@pytest.fixture
def controller():
    return TeleopController()


def _wrist(controller, side):
    return reachable_wrist(side, controller.pipelines[side].chain)


def _frame(controller, side, shift=(0.0, 0.0, 0.0), **kwargs):
    return make_hand_frame(side, wrist_position=_wrist(controller, side) + np.asarray(shift), **kwargs)


def _assert_within_limits(controller):
    for pipeline in controller.pipelines.values():
        assert pipeline.chain.joint_limits.is_valid(pipeline.chain.angles)
        for joint in pipeline.hand_joints:
            assert joint.lower - 1e-12 <= joint.angle <= joint.upper + 1e-12


# =============================================================================
# Tracking State Machine
# =============================================================================

class TestTrackingState:

    def test_starts_uninitialized(self, controller):
        assert controller.hand_state(LEFT) == HandTrackingState.UNINITIALIZED
        assert controller.tracking_status() == TrackingStatus.NONE

    def test_first_tick_snaps_to_wrist(self, controller):
        frame = _frame(controller, LEFT)
        out = controller.tick(left=frame, dt=DT)

        assert out.left.tracked
        assert not out.right.tracked
        assert controller.hand_state(LEFT) == HandTrackingState.TRACKING
        np.testing.assert_array_equal(out.left.goal.position, frame.wrist.position)

    def test_loss_holds_angles_and_resets_filters(self, controller):
        for _ in range(5):
            out = controller.tick(left=_frame(controller, LEFT), dt=DT)
        held = out.left.arm_angles.copy()
        hand_held = dict(out.left.hand_angles)

        out = controller.tick(left=None, dt=DT)

        assert not out.left.tracked
        np.testing.assert_array_equal(out.left.arm_angles, held)
        assert out.left.hand_angles == hand_held
        pipeline = controller.pipelines[LEFT]
        assert pipeline.state == HandTrackingState.UNINITIALIZED
        assert pipeline.pose_filter.state == FilterState.UNINITIALIZED
        assert pipeline.joint_filter.state == FilterState.UNINITIALIZED
        assert controller.tracker.error_count >= 1

    def test_reacquire_snaps_to_new_pose(self, controller):
        for _ in range(5):
            controller.tick(left=_frame(controller, LEFT), dt=DT)
        controller.tick(left=None, dt=DT)

        moved = _frame(controller, LEFT, shift=(0.05, 0.0, 0.08))
        out = controller.tick(left=moved, dt=DT)

        np.testing.assert_array_equal(out.left.goal.position, moved.wrist.position)

    def test_continuous_tracking_is_smoothed(self, controller):
        controller.tick(left=_frame(controller, LEFT), dt=DT)
        moved = _frame(controller, LEFT, shift=(0.05, 0.0, 0.0))
        out = controller.tick(left=moved, dt=DT)

        assert out.left.goal.position[0] < moved.wrist.position[0]

    def test_hands_are_independent(self, controller):
        for _ in range(3):
            controller.tick(left=_frame(controller, LEFT), right=_frame(controller, RIGHT), dt=DT)
        assert controller.tracking_status() == TrackingStatus.BOTH

        controller.tick(left=None, right=_frame(controller, RIGHT), dt=DT)

        assert controller.tracking_status() == TrackingStatus.RIGHT_ONLY
        assert controller.pipelines[RIGHT].pose_filter.state == FilterState.TRACKING
        assert controller.pipelines[RIGHT].frames_tracked == 4

    def test_missing_wrist_counts_as_lost(self, controller):
        controller.tick(left=_frame(controller, LEFT), dt=DT)
        out = controller.tick(left=_frame(controller, LEFT, drop=('wrist',)), dt=DT)

        assert not out.left.tracked
        assert controller.hand_state(LEFT) == HandTrackingState.UNINITIALIZED

    def test_wrong_handedness_ignored(self, controller):
        out = controller.tick(left=_frame(controller, RIGHT), dt=DT)
        assert not out.left.tracked
        assert controller.tracking_status() == TrackingStatus.NONE

    def test_explicit_reset(self, controller):
        controller.tick(left=_frame(controller, LEFT), right=_frame(controller, RIGHT), dt=DT)
        controller.reset(LEFT)
        assert controller.tracking_status() == TrackingStatus.RIGHT_ONLY
        controller.reset()
        assert controller.tracking_status() == TrackingStatus.NONE


# =============================================================================
# Target Shaping
# =============================================================================

class TestTargetShaping:

    def test_frame_correction(self, controller):
        out = controller.tick(left=_frame(controller, LEFT), dt=DT)
        goal = Rotation.from_quat(out.left.goal.orientation)
        assert (goal * FRAME_CORRECTION[LEFT].inv()).magnitude() < 1e-9

    def test_frame_correction_disabled(self):
        controller = TeleopController(TeleopControllerConfig(apply_frame_correction=False))
        out = controller.tick(left=_frame(controller, LEFT), dt=DT)
        assert Rotation.from_quat(out.left.goal.orientation).magnitude() < 1e-9

    def test_wrist_offset(self):
        controller = TeleopController(TeleopControllerConfig(wrist_offset=0.05))
        frame = _frame(controller, LEFT)
        out = controller.tick(left=frame, dt=DT)
        np.testing.assert_allclose(out.left.goal.position, frame.wrist.position + [0.0, 0.0, -0.05])

    def test_calibrated_arm_scale(self, controller):
        scale = controller.calibrate_arm_scale(0.6)
        assert scale == pytest.approx(0.78)

        frame = _frame(controller, LEFT)
        out = controller.tick(left=frame, dt=DT)

        root = controller.pipelines[LEFT].chain.root_position()
        np.testing.assert_allclose(out.left.goal.position, root + (frame.wrist.position - root) * scale)


# =============================================================================
# Outputs
# =============================================================================

class TestOutputs:

    def test_output_layout(self, controller):
        out = controller.tick(left=_frame(controller, LEFT), right=_frame(controller, RIGHT), dt=DT)
        assert out.as_array().shape == (28,)
        assert out.for_hand(RIGHT) is out.right
        assert len(controller.joint_angles()) == 28

    def test_angles_within_limits_over_motion(self, controller):
        rng = np.random.default_rng(5)
        for k in range(60):
            shift = rng.uniform(-0.4, 0.4, size=3)
            pose = "fist" if k % 2 else "open"
            left = None if k % 17 == 16 else _frame(controller, LEFT, shift=shift, pose=pose)
            right = _frame(controller, RIGHT, shift=-shift, pose=pose)
            out = controller.tick(left=left, right=right, dt=DT)
            assert np.all(np.isfinite(out.as_array()))
            _assert_within_limits(controller)

    def test_fist_flexes_hand_joints(self, controller):
        for _ in range(10):
            controller.tick(
                left=_frame(controller, LEFT, pose="fist"),
                right=_frame(controller, RIGHT, pose="fist"),
                dt=DT,
            )
        angles = controller.joint_angles()
        assert angles['left_hand_index_0_joint'] > 0.5
        assert angles['right_hand_index_0_joint'] < -0.5

    def test_link_poses(self, controller):
        poses = controller.link_poses()
        assert 'left_hand_palm_link' in poses
        assert 'right_elbow_link' in poses

    def test_arm_follows_target(self, controller):
        target = _wrist(controller, LEFT)
        for _ in range(120):
            out = controller.tick(left=make_hand_frame(LEFT, wrist_position=target), dt=DT)
        ee = controller.pipelines[LEFT].chain.forward_kinematics().ee_position
        assert out.left.ik.reachable
        assert np.linalg.norm(ee - target) < 0.03

    def test_statistics(self, controller):
        controller.tick(left=_frame(controller, LEFT), dt=DT)
        stats = controller.statistics
        assert stats['ticks'] == 1
        assert stats['tracking_status'] == 'left_only'
        assert stats['gate']['left']['ticks'] == 1


# =============================================================================
# Collision Feedback and Degradation
# =============================================================================

class TestCollisionAndErrors:

    def test_contact_reaches_only_that_arms_gate(self, controller):
        controller.update_collision_state(CollisionState(left=True, right=False))
        for _ in range(40):
            controller.tick(left=_frame(controller, LEFT), right=_frame(controller, RIGHT), dt=DT)

        assert controller.pipelines[LEFT].gate.stats['contact_ticks'] == 10
        assert controller.pipelines[RIGHT].gate.stats['contact_ticks'] == 0

    def test_collision_state_is_copied(self, controller):
        state = CollisionState(left=True)
        controller.update_collision_state(state)
        state.left = False
        assert controller.collision.left

    def test_stage_failure_holds_hand(self, controller, monkeypatch):
        controller.tick(right=_frame(controller, RIGHT), dt=DT)
        held = controller.pipelines[RIGHT].chain.angles

        def broken(chain, goal):
            raise RuntimeError("solver exploded")

        monkeypatch.setattr(controller.solver, 'solve', broken)
        out = controller.tick(right=_frame(controller, RIGHT), dt=DT)

        assert not out.right.tracked
        np.testing.assert_array_equal(out.right.arm_angles, held)
        assert controller.tracker.state == ComponentState.DEGRADED

    def test_controller_state_recovers_after_failures_age_out(self, controller, monkeypatch):
        now = [0.0]
        controller.tracker = ErrorTracker("teleop_controller", window_s=2.0, clock=lambda: now[0])

        def broken(chain, goal):
            raise RuntimeError("solver exploded")

        monkeypatch.setattr(controller.solver, 'solve', broken)
        controller.tick(right=_frame(controller, RIGHT), dt=DT)
        assert controller.statistics['controller_state'] == 'degraded'

        monkeypatch.undo()
        now[0] = 2.5
        out = controller.tick(right=_frame(controller, RIGHT), dt=DT)

        assert out.right.tracked
        assert controller.statistics['controller_state'] == 'healthy'

    def test_controller_from_config(self):
        config = build_controller_config(AppConfig())
        controller = TeleopController(config)
        out = controller.tick(left=_frame(controller, LEFT), dt=config.default_dt)
        assert out.left.tracked


if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
