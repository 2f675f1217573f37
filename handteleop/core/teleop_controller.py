"""
Teleoperation Controller - Per-Tick Orchestration for Both Hands

Per control tick, per hand:

    HandFrame ──wrist──► frame correction / wrist offset / arm scale
                         │
                         ▼
                     PoseFilter ──Goal──► CCDIKSolver ──► WeightedMovingFilter
                                                              │
                                            CollisionState ──►SafetyGate──► commit arm
    HandFrame ──fingers──► HandShapeRetargeter ──► ExponentialFilter
                                                      │
                                                      ▼
                                      map_hand_shape_to_angles ──► commit hand

Each hand is an explicit two-state machine:

    UNINITIALIZED --wrist tracked--> TRACKING --wrist missing--> UNINITIALIZED

Entering UNINITIALIZED resets every filter of that hand (never the other
hand's), so the first tick after re-acquisition snaps to the new pose.
While UNINITIALIZED the hand's committed angles are held.

Timing: the whole tick runs synchronously inside the tracking frame
callback (72-90 Hz). The CollisionState used by the gate is whatever the
physics step published last (tick N-1 or N).
"""

import time
import numpy as np
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from scipy.spatial.transform import Rotation

from handteleop.core.error_handling import ErrorTracker, ErrorSeverity, safe_call
from handteleop.core.filters import (
    ExponentialFilter,
    Goal,
    PoseFilter,
    SpringDamperFilter,
    WeightedMovingFilter,
)
from handteleop.core.hand_frame import HandFrame, Handedness
from handteleop.core.hand_retargeting import (
    HandRetargetConfig,
    HandShape,
    HandShapeRetargeter,
    map_hand_shape_to_angles,
)
from handteleop.core.retargeting.ik_solver import CCDIKSolver, IKResult, IKSolverConfig
from handteleop.core.retargeting.kinematics import Chain, KinematicJoint
from handteleop.core.retargeting.robot_profiles import build_dex3_hand_joints, build_g1_arm_chain
from handteleop.core.retargeting.two_bone import apply_wrist_offset, compute_arm_scale
from handteleop.robot_runtime.safety_gate import (
    CollisionState,
    GateResult,
    SafetyGate,
    SafetyGateConfig,
    apply_limit_overrides,
)
from handteleop.platform.logging_utils import get_logger

logger = get_logger(__name__)


class HandTrackingState(Enum):
    """Per-hand pipeline state."""
    UNINITIALIZED = "uninitialized"
    TRACKING = "tracking"


class TrackingStatus(Enum):
    """Which hands are currently tracked."""
    BOTH = "both"
    LEFT_ONLY = "left_only"
    RIGHT_ONLY = "right_only"
    NONE = "none"


# Tracker wrist frame (-Z fingers, +Y back of hand) to palm link frame
# (+X fingers). The right palm normal is flipped as well.
FRAME_CORRECTION = {
    Handedness.LEFT: Rotation.from_rotvec([0.0, np.pi / 2, 0.0]),
    Handedness.RIGHT: Rotation.from_rotvec([0.0, 0.0, np.pi]) * Rotation.from_rotvec([0.0, np.pi / 2, 0.0]),
}


@dataclass
class TeleopControllerConfig:
    """Configuration for the teleoperation controller."""

    # Wrist pose filter
    position_filter: str = "spring"        # "spring" or "exponential"
    position_alpha: float = 0.3
    orientation_alpha: float = 0.3
    spring_mass: float = 1.0
    spring_stiffness: float = 64.0
    spring_damping: float = 14.4
    max_dt: float = 0.05

    # Post-solve joint smoothing (newest sample first)
    joint_filter_weights: Tuple[float, ...] = (0.4, 0.3, 0.2, 0.1)

    # Target shaping
    apply_frame_correction: bool = True
    wrist_offset: float = 0.0              # m, along the tracked wrist's -Z
    arm_scale: float = 1.0                 # about the chain root

    apply_collision_overrides: bool = True
    default_dt: float = 1.0 / 90.0

    ik: IKSolverConfig = field(default_factory=IKSolverConfig)
    retarget: HandRetargetConfig = field(default_factory=HandRetargetConfig)
    safety: SafetyGateConfig = field(default_factory=SafetyGateConfig)


@dataclass
class HandCommand:
    """Committed output of one hand for one tick."""
    handedness: Handedness
    tracked: bool
    arm_angles: np.ndarray
    hand_angles: Dict[str, float]
    goal: Optional[Goal] = None
    ik: Optional[IKResult] = None
    gate: Optional[GateResult] = None
    shape: Optional[HandShape] = None


@dataclass
class TeleopOutput:
    """Both hands' commands for one tick (7 arm + 7 hand angles per side)."""
    timestamp: float
    left: HandCommand
    right: HandCommand

    def for_hand(self, handedness: Handedness) -> HandCommand:
        return self.left if handedness is Handedness.LEFT else self.right

    def as_array(self) -> np.ndarray:
        """[left arm(7), left hand(7), right arm(7), right hand(7)]."""
        parts = []
        for cmd in (self.left, self.right):
            parts.append(cmd.arm_angles)
            parts.append(np.array(list(cmd.hand_angles.values()), dtype=float))
        return np.concatenate(parts)


class HandPipeline:
    """All per-hand state: chain, hand joints, filters, retargeter and gate."""

    def __init__(
        self,
        handedness: Handedness,
        chain: Chain,
        hand_joints: List[KinematicJoint],
        config: TeleopControllerConfig,
    ):
        self.handedness = handedness
        self.chain = chain
        self.hand_joints = hand_joints
        self.config = config

        if config.apply_collision_overrides:
            apply_limit_overrides(chain)

        spring = SpringDamperFilter(
            mass=config.spring_mass,
            stiffness=config.spring_stiffness,
            damping=config.spring_damping,
            max_dt=config.max_dt,
        )
        self.pose_filter = PoseFilter(
            position_mode=config.position_filter,
            position_alpha=config.position_alpha,
            orientation_alpha=config.orientation_alpha,
            spring=spring,
        )
        self.joint_filter = WeightedMovingFilter(config.joint_filter_weights, len(chain))
        self.retargeter = HandShapeRetargeter(config.retarget)
        self.shape_filter = ExponentialFilter(config.retarget.smoothing_alpha)
        self.gate = SafetyGate(chain, config.safety)

        self.state = HandTrackingState.UNINITIALIZED
        self.last_goal: Optional[Goal] = None
        self.frames_tracked = 0

    def reset_filters(self):
        self.pose_filter.reset()
        self.joint_filter.reset()
        self.shape_filter.reset()
        self.retargeter.reset()

    def hand_angles(self) -> Dict[str, float]:
        return {j.name: j.angle for j in self.hand_joints}

    def hold(self) -> HandCommand:
        return HandCommand(
            handedness=self.handedness,
            tracked=False,
            arm_angles=self.chain.angles,
            hand_angles=self.hand_angles(),
        )

    def wrist_target(self, frame: HandFrame) -> Tuple[np.ndarray, np.ndarray]:
        """World (position, orientation) target for the palm link."""
        cfg = self.config
        wrist = frame.wrist

        orientation = wrist.orientation
        if cfg.apply_frame_correction:
            corrected = Rotation.from_quat(wrist.orientation) * FRAME_CORRECTION[self.handedness]
            orientation = corrected.as_quat()

        position = apply_wrist_offset(wrist.position, wrist.orientation, cfg.wrist_offset)
        if cfg.arm_scale != 1.0:
            root = self.chain.root_position()
            position = root + (position - root) * cfg.arm_scale
        return position, orientation


class TeleopController:
    """
    Drives both G1 arms and Dex 3.1 hands from tracked hands.

    Usage:
        controller = TeleopController()
        output = controller.tick(left=left_frame, right=right_frame, dt=1/90)

        # physics collaborator, between ticks
        monitor.sync(controller.link_poses())
        controller.update_collision_state(monitor.check_collisions())
    """

    def __init__(
        self,
        config: Optional[TeleopControllerConfig] = None,
        chains: Optional[Dict[Handedness, Chain]] = None,
        hand_joints: Optional[Dict[Handedness, List[KinematicJoint]]] = None,
    ):
        self.config = config or TeleopControllerConfig()
        chains = chains or {}
        hand_joints = hand_joints or {}

        self.solver = CCDIKSolver(self.config.ik)
        self.tracker = ErrorTracker("teleop_controller")
        self.collision = CollisionState()

        self.pipelines: Dict[Handedness, HandPipeline] = {}
        for side in Handedness:
            self.pipelines[side] = HandPipeline(
                side,
                chains.get(side) or build_g1_arm_chain(side),
                hand_joints.get(side) or build_dex3_hand_joints(side),
                self.config,
            )

        self._tick_count = 0
        logger.info(
            f"TeleopController initialized (position filter: {self.config.position_filter}, "
            f"IK iterations: {self.config.ik.max_iterations}, arm scale: {self.config.arm_scale:.2f})"
        )

    # =========================================================================
    # Tick
    # =========================================================================

    def tick(
        self,
        left: Optional[HandFrame] = None,
        right: Optional[HandFrame] = None,
        dt: Optional[float] = None,
    ) -> TeleopOutput:
        """
        Run one control tick for both hands.

        Args:
            left: Left hand frame (None = not tracked this tick)
            right: Right hand frame (None = not tracked this tick)
            dt: Seconds since the previous tick (default: config.default_dt)

        Returns:
            TeleopOutput with every committed angle inside its limits
        """
        dt = self.config.default_dt if dt is None else dt
        self._tick_count += 1

        commands = {}
        for side, frame in ((Handedness.LEFT, left), (Handedness.RIGHT, right)):
            pipeline = self.pipelines[side]
            commands[side] = safe_call(
                self._update_hand, pipeline, frame, dt,
                fallback=None, tracker=self.tracker, context={'hand': side.value},
            ) or pipeline.hold()

        return TeleopOutput(
            timestamp=time.time(),
            left=commands[Handedness.LEFT],
            right=commands[Handedness.RIGHT],
        )

    def _update_hand(self, pipeline: HandPipeline, frame: Optional[HandFrame], dt: float) -> HandCommand:
        side = pipeline.handedness

        if frame is not None and frame.handedness is not side:
            logger.debug(f"Ignoring {frame.handedness.value} frame passed as {side.value}")
            frame = None

        if frame is None or frame.wrist is None:
            if pipeline.state is HandTrackingState.TRACKING:
                self._mark_lost(pipeline)
            return pipeline.hold()

        if pipeline.state is HandTrackingState.UNINITIALIZED:
            self._mark_acquired(pipeline)
        pipeline.frames_tracked += 1

        # Arm
        position, orientation = pipeline.wrist_target(frame)
        goal = pipeline.pose_filter.update(position, orientation, dt)
        pipeline.last_goal = goal

        previous = pipeline.chain.angles
        ik = self.solver.solve(pipeline.chain, goal)
        smoothed = pipeline.joint_filter.add_data(ik.angles)
        gate = pipeline.gate.apply(smoothed, previous, self.collision.for_hand(side), dt)
        arm_angles = pipeline.chain.set_angles(gate.angles)

        # Hand
        shape = pipeline.retargeter.retarget(frame)
        filtered = HandShape.from_array(pipeline.shape_filter.update(shape.as_array()))
        targets = map_hand_shape_to_angles(filtered, pipeline.hand_joints, side)
        for joint in pipeline.hand_joints:
            if joint.name in targets:
                joint.set_angle(targets[joint.name])

        return HandCommand(
            handedness=side,
            tracked=True,
            arm_angles=arm_angles,
            hand_angles=pipeline.hand_angles(),
            goal=goal,
            ik=ik,
            gate=gate,
            shape=filtered,
        )

    def _mark_lost(self, pipeline: HandPipeline):
        pipeline.state = HandTrackingState.UNINITIALIZED
        pipeline.reset_filters()
        self.tracker.record_error(
            ErrorSeverity.WARNING,
            f"{pipeline.handedness.value} hand lost after {pipeline.frames_tracked} frames",
            context={'hand': pipeline.handedness.value},
        )
        pipeline.frames_tracked = 0

    def _mark_acquired(self, pipeline: HandPipeline):
        # Filters were reset on loss (or never fed), so the first sample snaps
        pipeline.gate.reset(pipeline.chain.angles)
        pipeline.state = HandTrackingState.TRACKING
        logger.info(f"{pipeline.handedness.value} hand acquired")

    # =========================================================================
    # Collaborator Interface
    # =========================================================================

    def update_collision_state(self, state: CollisionState):
        """Publish the latest physics contact flags for the next gate pass."""
        self.collision = CollisionState(left=state.left, right=state.right)

    def calibrate_arm_scale(self, human_reach: float) -> float:
        """Set arm_scale from a measured shoulder-to-wrist distance (arm outstretched)."""
        robot_reach = self.pipelines[Handedness.LEFT].chain.reach
        scale = compute_arm_scale(human_reach, robot_reach)
        self.config.arm_scale = scale
        logger.info(f"Arm scale calibrated: human reach {human_reach:.3f} m -> scale {scale:.3f}")
        return scale

    def reset(self, handedness: Optional[Handedness] = None):
        """Force one hand (or both) back to UNINITIALIZED."""
        sides = list(Handedness) if handedness is None else [handedness]
        for side in sides:
            pipeline = self.pipelines[side]
            pipeline.state = HandTrackingState.UNINITIALIZED
            pipeline.reset_filters()
            pipeline.frames_tracked = 0

    # =========================================================================
    # Queries
    # =========================================================================

    def hand_state(self, handedness: Handedness) -> HandTrackingState:
        return self.pipelines[handedness].state

    def tracking_status(self) -> TrackingStatus:
        left = self.pipelines[Handedness.LEFT].state is HandTrackingState.TRACKING
        right = self.pipelines[Handedness.RIGHT].state is HandTrackingState.TRACKING
        if left and right:
            return TrackingStatus.BOTH
        if left:
            return TrackingStatus.LEFT_ONLY
        if right:
            return TrackingStatus.RIGHT_ONLY
        return TrackingStatus.NONE

    def joint_angles(self) -> Dict[str, float]:
        """Every committed angle by joint name (7 arm + 7 hand per side)."""
        angles = {}
        for pipeline in self.pipelines.values():
            for joint in pipeline.chain.joints:
                angles[joint.name] = joint.angle
            angles.update(pipeline.hand_angles())
        return angles

    def link_poses(self) -> Dict[str, Tuple[np.ndarray, np.ndarray]]:
        """World (position, quaternion) of every arm link, for collider sync."""
        poses = {}
        for pipeline in self.pipelines.values():
            poses.update(pipeline.chain.link_poses())
        return poses

    @property
    def statistics(self) -> Dict:
        return {
            'ticks': self._tick_count,
            'tracking_status': self.tracking_status().value,
            'controller_state': self.tracker.state.value,
            'gate': {side.value: dict(p.gate.stats) for side, p in self.pipelines.items()},
        }
