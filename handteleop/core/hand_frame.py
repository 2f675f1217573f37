"""
Tracked Hand Data Model

A HandFrame is what the tracking collaborator hands over once per tick for
one hand: the 25 WebXR hand joints, each optionally present, each a
world-frame position and unit quaternion.

Quaternions are scalar-last [x, y, z, w] throughout the package, the
convention of scipy.spatial.transform.Rotation.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Mapping, Optional, Sequence

import numpy as np


class Handedness(Enum):
    """Which hand a frame, chain or filter belongs to."""
    LEFT = "left"
    RIGHT = "right"

    @property
    def mirror_sign(self) -> float:
        """+1 for the left hand, -1 for the right (lateral mirroring)."""
        return 1.0 if self is Handedness.LEFT else -1.0

    @property
    def other(self) -> 'Handedness':
        return Handedness.RIGHT if self is Handedness.LEFT else Handedness.LEFT


# WebXR hand joint names, XRHand order
XR_JOINT_NAMES = [
    'wrist',
    'thumb-metacarpal',
    'thumb-phalanx-proximal',
    'thumb-phalanx-distal',
    'thumb-tip',
    'index-finger-metacarpal',
    'index-finger-phalanx-proximal',
    'index-finger-phalanx-intermediate',
    'index-finger-phalanx-distal',
    'index-finger-tip',
    'middle-finger-metacarpal',
    'middle-finger-phalanx-proximal',
    'middle-finger-phalanx-intermediate',
    'middle-finger-phalanx-distal',
    'middle-finger-tip',
    'ring-finger-metacarpal',
    'ring-finger-phalanx-proximal',
    'ring-finger-phalanx-intermediate',
    'ring-finger-phalanx-distal',
    'ring-finger-tip',
    'pinky-finger-metacarpal',
    'pinky-finger-phalanx-proximal',
    'pinky-finger-phalanx-intermediate',
    'pinky-finger-phalanx-distal',
    'pinky-finger-tip',
]

IDENTITY_QUAT = np.array([0.0, 0.0, 0.0, 1.0])


@dataclass
class JointPose:
    """World-frame pose of one tracked joint."""
    position: np.ndarray
    orientation: np.ndarray = field(default_factory=lambda: IDENTITY_QUAT.copy())

    def __post_init__(self):
        self.position = np.asarray(self.position, dtype=float).reshape(3)
        self.orientation = np.asarray(self.orientation, dtype=float).reshape(4)

    @property
    def is_finite(self) -> bool:
        return bool(np.all(np.isfinite(self.position)) and np.all(np.isfinite(self.orientation)))

    def copy(self) -> 'JointPose':
        return JointPose(self.position.copy(), self.orientation.copy())


@dataclass
class HandFrame:
    """
    One tick of tracking data for one hand.

    Joints absent from ``joints`` (or mapped to None) are treated as lost
    for this tick. Poses containing NaN/Inf are dropped on construction so
    downstream code only ever sees usable data.
    """
    handedness: Handedness
    joints: Dict[str, Optional[JointPose]] = field(default_factory=dict)
    timestamp: float = 0.0

    def __post_init__(self):
        cleaned = {}
        for name, pose in self.joints.items():
            if name not in XR_JOINT_NAMES:
                continue
            if pose is not None and pose.is_finite:
                cleaned[name] = pose
        self.joints = cleaned

    @classmethod
    def from_positions(
        cls,
        handedness: Handedness,
        positions: Mapping[str, Sequence[float]],
        orientations: Optional[Mapping[str, Sequence[float]]] = None,
        timestamp: float = 0.0,
    ) -> 'HandFrame':
        """Build a frame from plain position (and optional orientation) mappings."""
        orientations = orientations or {}
        joints = {}
        for name, pos in positions.items():
            if pos is None:
                continue
            quat = orientations.get(name, IDENTITY_QUAT)
            joints[name] = JointPose(np.asarray(pos, dtype=float), np.asarray(quat, dtype=float))
        return cls(handedness=handedness, joints=joints, timestamp=timestamp)

    def get(self, name: str) -> Optional[JointPose]:
        return self.joints.get(name)

    def position(self, name: str) -> Optional[np.ndarray]:
        pose = self.joints.get(name)
        return None if pose is None else pose.position

    @property
    def wrist(self) -> Optional[JointPose]:
        return self.joints.get('wrist')

    def mirrored(self, axis: int = 0) -> 'HandFrame':
        """
        Mirror the frame across the plane normal to ``axis`` and swap handedness.

        Positions have the lateral component negated; orientations are
        reflected so that the mirrored rotation matrix is M R M.
        """
        sign = np.ones(3)
        sign[axis] = -1.0
        joints = {}
        for name, pose in self.joints.items():
            q = pose.orientation.copy()
            # Reflection of a rotation: keep the axis component along the
            # mirror normal, negate the other two and keep w.
            q[:3] = -q[:3] * sign
            joints[name] = JointPose(pose.position * sign, q)
        return HandFrame(self.handedness.other, joints, self.timestamp)
