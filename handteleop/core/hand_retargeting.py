"""
Hand Retargeting Module - Tracked 5-Finger Hand to Dex 3.1 (7 DOF)

Retargeting goes through a normalized, actuator-independent HandShape:
tracked joint positions are reduced to curl / abduction factors here, and
only map_hand_shape_to_angles() knows about the robot's joint limits. The
same retargeter therefore serves mirrored left/right hands and any limit
table.

HandShape layout:
    thumb:  abduction in [-1, 1], curl [proximal, distal] in [0, 1]
    index:  curl [proximal, distal] in [0, 1]
    middle: curl [proximal, distal] in [0, 1]

Curl measurements (both calibrations exposed in HandRetargetConfig):
    BEND_ANGLE      angle at a joint triple A-B-C; pi (straight) -> 0,
                    bend_full_angle -> 1
    DISTANCE_RATIO  |metacarpal -> tip| / (bone lengths); straight_ratio
                    -> 0, fist_ratio -> 1

Missing joints or degenerate geometry leave the affected field at its
previous value, so noise never produces NaN.
"""

import numpy as np
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional
from enum import Enum

from handteleop.core.hand_frame import HandFrame, Handedness
from handteleop.core.retargeting.kinematics import KinematicJoint
from handteleop.core.retargeting.robot_profiles import hand_joint_name
from handteleop.platform.logging_utils import get_logger

logger = get_logger(__name__)


class CurlMethod(Enum):
    """How a curl factor is measured from joint positions."""
    BEND_ANGLE = "bend_angle"
    DISTANCE_RATIO = "distance_ratio"


@dataclass
class HandRetargetConfig:
    """Configuration for hand-shape retargeting."""

    # Index/middle proximal and distal curl measurement
    proximal_curl_method: CurlMethod = CurlMethod.DISTANCE_RATIO
    distal_curl_method: CurlMethod = CurlMethod.BEND_ANGLE

    # Distance-ratio calibration
    straight_ratio: float = 0.92
    fist_ratio: float = 0.30

    # Bend-angle calibration (radians at which curl reaches 1)
    bend_full_angle: float = np.pi / 3

    # Thumb flexes over a smaller range than the fingers
    thumb_curl_gain: float = 1.5

    # Thumb abduction: neutral thumb/index bone angle and its span to +-1
    abduction_neutral: float = 1.15
    abduction_span: float = 0.5

    # Exponential smoothing applied to the shape by the controller
    smoothing_alpha: float = 0.4

    def __post_init__(self):
        if self.straight_ratio <= self.fist_ratio:
            raise ValueError("straight_ratio must exceed fist_ratio")
        if not 0.0 <= self.bend_full_angle < np.pi:
            raise ValueError("bend_full_angle must be in [0, pi)")
        if self.abduction_span <= 0.0:
            raise ValueError("abduction_span must be positive")


@dataclass
class FingerShape:
    """Normalized shape of one finger."""
    curl: np.ndarray = field(default_factory=lambda: np.zeros(2))
    abduction: float = 0.0

    def __post_init__(self):
        self.curl = np.clip(np.asarray(self.curl, dtype=float).reshape(2), 0.0, 1.0)
        self.abduction = float(np.clip(self.abduction, -1.0, 1.0))

    def copy(self) -> 'FingerShape':
        return FingerShape(self.curl.copy(), self.abduction)


@dataclass
class HandShape:
    """Actuator-independent hand descriptor. Fields are always clamped."""
    thumb: FingerShape = field(default_factory=FingerShape)
    index: FingerShape = field(default_factory=FingerShape)
    middle: FingerShape = field(default_factory=FingerShape)

    def as_array(self) -> np.ndarray:
        """Flat [thumb_abd, thumb_c0, thumb_c1, index_c0, index_c1, middle_c0, middle_c1]."""
        return np.array([
            self.thumb.abduction,
            self.thumb.curl[0], self.thumb.curl[1],
            self.index.curl[0], self.index.curl[1],
            self.middle.curl[0], self.middle.curl[1],
        ])

    @classmethod
    def from_array(cls, values) -> 'HandShape':
        """Inverse of as_array(); values are clamped into range."""
        v = np.asarray(values, dtype=float).reshape(7)
        return cls(
            thumb=FingerShape(v[1:3], v[0]),
            index=FingerShape(v[3:5]),
            middle=FingerShape(v[5:7]),
        )

    def copy(self) -> 'HandShape':
        return HandShape(self.thumb.copy(), self.index.copy(), self.middle.copy())


# =============================================================================
# Measurements
# =============================================================================

def _unit(v: np.ndarray) -> Optional[np.ndarray]:
    norm = np.linalg.norm(v)
    if not np.isfinite(norm) or norm < 1e-6:
        return None
    return v / norm


def bone_angle(a0, a1, b0, b1) -> Optional[float]:
    """Angle between bone directions a0->a1 and b0->b1; None if degenerate."""
    u = _unit(a1 - a0)
    w = _unit(b1 - b0)
    if u is None or w is None:
        return None
    return float(np.arccos(np.clip(np.dot(u, w), -1.0, 1.0)))


def bend_curl(a, b, c, full_angle: float) -> Optional[float]:
    """Curl from the interior angle at b of the triple a-b-c."""
    angle = bone_angle(b, a, b, c)
    if angle is None:
        return None
    return float(np.clip((np.pi - angle) / (np.pi - full_angle), 0.0, 1.0))


def ratio_curl(metacarpal, proximal, tip, straight_ratio: float, fist_ratio: float) -> Optional[float]:
    """Curl from the metacarpal-to-tip distance over the summed bone lengths."""
    length = np.linalg.norm(proximal - metacarpal) + np.linalg.norm(tip - proximal)
    if not np.isfinite(length) or length < 1e-3:
        return None
    ratio = np.linalg.norm(tip - metacarpal) / length
    if not np.isfinite(ratio):
        return None
    return float(np.clip((straight_ratio - ratio) / (straight_ratio - fist_ratio), 0.0, 1.0))


# =============================================================================
# Retargeter
# =============================================================================

class HandShapeRetargeter:
    """
    Converts tracked hand joint positions into a HandShape.

    One instance per hand: it remembers the last shape so missing or
    degenerate joints keep their previous value. Ring and pinky are never
    read.

    Usage:
        retargeter = HandShapeRetargeter()
        shape = retargeter.retarget(frame)
    """

    def __init__(self, config: Optional[HandRetargetConfig] = None):
        self.config = config or HandRetargetConfig()
        self.shape = HandShape()
        self._retarget_count = 0
        self._skipped_fields = 0

    def reset(self):
        logger.debug("Hand shape reset to open hand")
        self.shape = HandShape()

    def _curl(self, method: CurlMethod, frame: HandFrame, finger: str, distal: bool) -> Optional[float]:
        cfg = self.config
        prefix = f'{finger}-finger'
        if distal:
            names = ('phalanx-intermediate', 'phalanx-distal', 'tip')
        elif method is CurlMethod.DISTANCE_RATIO:
            names = ('metacarpal', 'phalanx-proximal', 'tip')
        else:
            names = ('metacarpal', 'phalanx-proximal', 'phalanx-intermediate')

        points = [frame.position(f'{prefix}-{n}') for n in names]
        if any(p is None for p in points):
            return None
        if method is CurlMethod.DISTANCE_RATIO:
            return ratio_curl(*points, cfg.straight_ratio, cfg.fist_ratio)
        return bend_curl(*points, cfg.bend_full_angle)

    def _keep(self, value: Optional[float], previous: float) -> float:
        if value is None or not np.isfinite(value):
            self._skipped_fields += 1
            return previous
        return value

    def retarget(self, frame: HandFrame) -> HandShape:
        """
        Compute the hand shape for one tick.

        Args:
            frame: Tracked joints for this hand (only wrist, thumb, index and
                   middle are consumed); handedness sets the abduction sign

        Returns:
            New HandShape (also remembered for the next call)
        """
        cfg = self.config
        prev = self.shape
        self._retarget_count += 1

        # Thumb abduction: thumb metacarpal bone vs index metacarpal bone
        t_meta = frame.position('thumb-metacarpal')
        t_prox = frame.position('thumb-phalanx-proximal')
        t_dist = frame.position('thumb-phalanx-distal')
        t_tip = frame.position('thumb-tip')
        i_meta = frame.position('index-finger-metacarpal')
        i_prox = frame.position('index-finger-phalanx-proximal')

        abduction = None
        if all(p is not None for p in (t_meta, t_prox, i_meta, i_prox)):
            angle = bone_angle(t_meta, t_prox, i_meta, i_prox)
            if angle is not None:
                raw = np.clip((angle - cfg.abduction_neutral) / cfg.abduction_span, -1.0, 1.0)
                abduction = float(raw * frame.handedness.mirror_sign)

        thumb_curl = [None, None]
        if all(p is not None for p in (t_meta, t_prox, t_dist)):
            c = bend_curl(t_meta, t_prox, t_dist, cfg.bend_full_angle)
            thumb_curl[0] = None if c is None else min(1.0, c * cfg.thumb_curl_gain)
        if all(p is not None for p in (t_prox, t_dist, t_tip)):
            c = bend_curl(t_prox, t_dist, t_tip, cfg.bend_full_angle)
            thumb_curl[1] = None if c is None else min(1.0, c * cfg.thumb_curl_gain)

        thumb = FingerShape(
            curl=[self._keep(thumb_curl[k], prev.thumb.curl[k]) for k in range(2)],
            abduction=self._keep(abduction, prev.thumb.abduction),
        )

        fingers = {}
        for finger in ('index', 'middle'):
            previous = getattr(prev, finger)
            proximal = self._curl(cfg.proximal_curl_method, frame, finger, distal=False)
            distal = self._curl(cfg.distal_curl_method, frame, finger, distal=True)
            fingers[finger] = FingerShape(curl=[
                self._keep(proximal, previous.curl[0]),
                self._keep(distal, previous.curl[1]),
            ])

        self.shape = HandShape(thumb=thumb, index=fingers['index'], middle=fingers['middle'])
        return self.shape.copy()

    @property
    def statistics(self) -> Dict:
        """Get retargeting statistics."""
        return {
            'total_retargets': self._retarget_count,
            'skipped_fields': self._skipped_fields,
        }


# =============================================================================
# Joint-Limit Mapping
# =============================================================================

def curl_to_angle(joint: KinematicJoint, curl: float) -> float:
    """Scale the limit of larger magnitude by curl, clamped to the joint."""
    limit = joint.lower if abs(joint.lower) > abs(joint.upper) else joint.upper
    return joint.clamp(limit * curl)


def abduction_to_angle(joint: KinematicJoint, abduction: float) -> float:
    """Scale the symmetric part of the joint range by a signed abduction."""
    span = min(abs(joint.lower), abs(joint.upper))
    return joint.clamp(abduction * span)


def map_hand_shape_to_angles(
    shape: HandShape,
    joints: Iterable[KinematicJoint],
    handedness: Handedness,
) -> Dict[str, float]:
    """
    Map a HandShape onto concrete Dex 3.1 joint angles.

    Args:
        shape: Filtered hand shape
        joints: The hand's joints (limits are read, angles are not touched)
        handedness: Selects the joint name prefix

    Returns:
        Joint name -> angle, each within its joint's limits. Joints absent
        from ``joints`` are left out.
    """
    table = {j.name: j for j in joints}
    targets = {
        'thumb_1': shape.thumb.curl[0],
        'thumb_2': shape.thumb.curl[1],
        'index_0': shape.index.curl[0],
        'index_1': shape.index.curl[1],
        'middle_0': shape.middle.curl[0],
        'middle_1': shape.middle.curl[1],
    }

    angles = {}
    thumb_0 = table.get(hand_joint_name(handedness, 'thumb_0'))
    if thumb_0 is not None:
        angles[thumb_0.name] = abduction_to_angle(thumb_0, shape.thumb.abduction)

    for short_name, curl in targets.items():
        joint = table.get(hand_joint_name(handedness, short_name))
        if joint is not None:
            angles[joint.name] = curl_to_angle(joint, curl)
    return angles
