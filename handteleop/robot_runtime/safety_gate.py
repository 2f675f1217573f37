"""
Safety Gate - Joint Limits, Velocity Bound and Collision Feedback

Runs once per control tick per arm, after the IK solve and joint filter,
before angles are committed. Deterministic and allocation-light: no
physics queries happen here, the gate only consumes the contact flag
published by the last physics step.

Layers:
========
STATIC (applied once at chain setup)
├─ COLLISION_OVERRIDES tighten shoulder roll toward the torso
├─ Shoulder pitch/yaw range reduction
└─ Elbow hyperextension guard
Overrides only ever narrow a joint's range.

DYNAMIC (every tick)
├─ Contact flag for this arm, ignored for the first
│  acquisition_grace_frames after the hand is acquired
├─ Contact sustained past contact_grace_frames → blend the committed
│  angles toward the last collision-free set (blend_factor per tick)
├─ Velocity bound: |Δq| ≤ max_joint_velocity · dt
└─ Final clamp to [lower, upper]
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional
from enum import Enum

import numpy as np

from handteleop.core.hand_frame import Handedness
from handteleop.core.retargeting.kinematics import Chain

logger = logging.getLogger(__name__)


# =============================================================================
# Collision State
# =============================================================================

@dataclass
class CollisionState:
    """Per-arm contact flags from the latest physics step."""
    left: bool = False
    right: bool = False

    def for_hand(self, handedness: Handedness) -> bool:
        return self.left if handedness is Handedness.LEFT else self.right

    def set(self, handedness: Handedness, value: bool):
        if handedness is Handedness.LEFT:
            self.left = bool(value)
        else:
            self.right = bool(value)


# =============================================================================
# Static Limit Tightening (radians)
# =============================================================================

COLLISION_OVERRIDES: Dict[str, Dict[str, float]] = {
    'left_shoulder_roll_joint': {'lower': -0.2},
    'right_shoulder_roll_joint': {'upper': 0.2},
    'left_shoulder_pitch_joint': {'lower': -2.0, 'upper': 2.0},
    'right_shoulder_pitch_joint': {'lower': -2.0, 'upper': 2.0},
    'left_shoulder_yaw_joint': {'lower': -1.5, 'upper': 1.5},
    'right_shoulder_yaw_joint': {'lower': -1.5, 'upper': 1.5},
    'left_elbow_joint': {'lower': 0.1},
    'right_elbow_joint': {'lower': 0.1},
}


def apply_limit_overrides(
    chain: Chain,
    overrides: Mapping[str, Mapping[str, float]] = COLLISION_OVERRIDES,
) -> List[str]:
    """
    Tighten the chain's joint limits from an override table.

    Returns:
        Names of the joints whose range actually changed
    """
    changed = []
    for joint in chain.joints:
        override = overrides.get(joint.name)
        if not override:
            continue
        if joint.tighten(override.get('lower'), override.get('upper')):
            changed.append(joint.name)
            logger.info(
                f"Tightened {joint.name} to [{joint.lower:.3f}, {joint.upper:.3f}] rad"
            )
    return changed


# =============================================================================
# Gate
# =============================================================================

class SafetyStatus(Enum):
    """Outcome of one gate pass."""
    OK = "ok"
    VELOCITY_LIMITED = "velocity_limited"
    CONTACT = "contact"          # contact reported, still inside the grace period
    BLENDING = "blending"        # sustained contact, retreating toward safe angles


@dataclass
class SafetyGateConfig:
    """Configuration for the safety gate."""
    contact_grace_frames: int = 3
    acquisition_grace_frames: int = 30
    blend_to_safe: bool = True
    blend_factor: float = 0.5
    max_joint_velocity: float = 8.0   # rad/s
    max_dt: float = 0.05              # s

    def __post_init__(self):
        if not 0.0 < self.blend_factor <= 1.0:
            raise ValueError(f"blend_factor must be in (0, 1], got {self.blend_factor}")
        if self.max_joint_velocity <= 0.0:
            raise ValueError("max_joint_velocity must be positive")


@dataclass
class GateResult:
    """Angles to commit plus what the gate did to them."""
    angles: np.ndarray
    status: SafetyStatus = SafetyStatus.OK
    in_contact: bool = False
    velocity_limited: bool = False


class SafetyGate:
    """
    Per-arm safety gate.

    Limits are read from the chain on every call, so overrides applied
    with apply_limit_overrides() take effect immediately.

    Usage:
        gate = SafetyGate(chain)
        result = gate.apply(candidate, previous, in_contact=collision.left, dt=1/90)
        chain.set_angles(result.angles)
    """

    def __init__(self, chain: Chain, config: Optional[SafetyGateConfig] = None):
        self.chain = chain
        self.config = config or SafetyGateConfig()

        self.safe_angles = chain.angles
        self._frames_tracked = 0
        self._contact_frames = 0

        self.stats = {
            "ticks": 0,
            "contact_ticks": 0,
            "blend_ticks": 0,
            "velocity_limited_ticks": 0,
        }

    @property
    def contact_frames(self) -> int:
        return self._contact_frames

    def reset(self, angles=None):
        """Restart grace counting, e.g. when the hand is re-acquired."""
        self._frames_tracked = 0
        self._contact_frames = 0
        self.safe_angles = self.chain.angles if angles is None else np.array(angles, dtype=float)

    def apply(self, candidate, previous, in_contact: bool, dt: float) -> GateResult:
        """
        Gate one tick's candidate angles.

        Args:
            candidate: Angles proposed by IK + joint filter
            previous: Angles committed on the previous tick (the pose the
                      contact flag refers to)
            in_contact: Contact flag for this arm from the last physics step
            dt: Tick duration in seconds

        Returns:
            GateResult with angles inside [lower, upper]
        """
        cfg = self.config
        candidate = np.asarray(candidate, dtype=float)
        previous = np.asarray(previous, dtype=float)
        limits = self.chain.joint_limits

        self.stats["ticks"] += 1
        self._frames_tracked += 1

        contact = bool(in_contact) and self._frames_tracked > cfg.acquisition_grace_frames
        if contact:
            self._contact_frames += 1
            self.stats["contact_ticks"] += 1
            if self._contact_frames == cfg.contact_grace_frames + 1:
                logger.warning(
                    f"Sustained contact on {self.chain.ee_link} "
                    f"({self._contact_frames} frames)"
                )
        else:
            if self._contact_frames > cfg.contact_grace_frames:
                logger.info(f"Contact cleared on {self.chain.ee_link}")
            self._contact_frames = 0
        if not in_contact:
            # The pose physics just checked is collision-free
            self.safe_angles = previous.copy()

        status = SafetyStatus.OK
        target = candidate
        if contact:
            status = SafetyStatus.CONTACT
            if cfg.blend_to_safe and self._contact_frames > cfg.contact_grace_frames:
                target = previous + (self.safe_angles - previous) * cfg.blend_factor
                status = SafetyStatus.BLENDING
                self.stats["blend_ticks"] += 1

        # Velocity bound
        dt = min(max(float(dt), 0.0), cfg.max_dt)
        max_step = cfg.max_joint_velocity * dt
        step = target - previous
        bounded = np.clip(step, -max_step, max_step)
        velocity_limited = bool(np.any(np.abs(bounded - step) > 1e-12))
        if velocity_limited:
            self.stats["velocity_limited_ticks"] += 1
            if status is SafetyStatus.OK:
                status = SafetyStatus.VELOCITY_LIMITED

        angles = limits.clamp(previous + bounded)
        if not np.all(np.isfinite(angles)):
            logger.warning(f"Non-finite gate output on {self.chain.ee_link}; holding previous angles")
            angles = limits.clamp(np.nan_to_num(previous))

        return GateResult(
            angles=angles,
            status=status,
            in_contact=contact,
            velocity_limited=velocity_limited,
        )
