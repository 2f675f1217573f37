"""
Serial Chain Kinematics

An explicit Chain value replaces scene-graph joints with settable angles:
the solver owns the chain for the duration of a call and resolves world
poses through Chain.forward_kinematics() rather than through a renderer.

Frame conventions:
    - Each KinematicJoint sits at ``origin`` (translation, expressed in the
      previous joint's frame after that joint's rotation; the first joint's
      origin is expressed in the chain base frame).
    - ``axis`` is a unit vector in that same parent frame.
    - The end effector sits at ``ee_offset`` in the last joint's frame.
    - Quaternions are scalar-last [x, y, z, w].
"""

import numpy as np
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from scipy.spatial.transform import Rotation

logger = logging.getLogger(__name__)


@dataclass
class JointLimits:
    """Joint limits for a chain, as arrays."""
    lower: np.ndarray
    upper: np.ndarray

    def clamp(self, q: np.ndarray) -> np.ndarray:
        """Clamp joint angles to limits."""
        return np.clip(q, self.lower, self.upper)

    def is_valid(self, q: np.ndarray, tol: float = 1e-9) -> bool:
        """Check if joint configuration is within limits."""
        return bool(np.all(q >= self.lower - tol) and np.all(q <= self.upper + tol))


@dataclass
class KinematicJoint:
    """A single revolute joint. ``angle`` is only ever set within [lower, upper]."""
    name: str
    axis: np.ndarray
    lower: float = -np.pi
    upper: float = np.pi
    origin: np.ndarray = field(default_factory=lambda: np.zeros(3))
    rest: float = 0.0
    angle: float = 0.0
    child_link: Optional[str] = None

    def __post_init__(self):
        axis = np.asarray(self.axis, dtype=float).reshape(3)
        norm = np.linalg.norm(axis)
        if norm < 1e-9:
            raise ValueError(f"Joint {self.name} has a zero rotation axis")
        self.axis = axis / norm
        self.origin = np.asarray(self.origin, dtype=float).reshape(3)
        if self.lower > self.upper:
            raise ValueError(f"Joint {self.name}: lower limit {self.lower} > upper {self.upper}")
        self.rest = float(np.clip(self.rest, self.lower, self.upper))
        self.angle = float(np.clip(self.angle, self.lower, self.upper))
        if self.child_link is None and self.name.endswith('_joint'):
            self.child_link = self.name[:-len('_joint')] + '_link'

    @property
    def limit(self) -> Tuple[float, float]:
        return (self.lower, self.upper)

    def clamp(self, value: float) -> float:
        return float(min(max(value, self.lower), self.upper))

    def set_angle(self, value: float) -> float:
        """Set the joint angle, clamped to limits. Returns the committed value."""
        if not np.isfinite(value):
            logger.debug(f"Ignoring non-finite angle for {self.name}")
            return self.angle
        self.angle = self.clamp(value)
        return self.angle

    def tighten(self, lower: Optional[float] = None, upper: Optional[float] = None) -> bool:
        """
        Narrow the limits; never widens them. Re-clamps the current and rest
        angles into the new range. Returns True if anything changed.
        """
        new_lower = self.lower if lower is None else max(self.lower, lower)
        new_upper = self.upper if upper is None else min(self.upper, upper)
        if new_lower > new_upper:
            logger.warning(f"Override for {self.name} would empty its range; ignored")
            return False
        changed = (new_lower, new_upper) != (self.lower, self.upper)
        self.lower, self.upper = new_lower, new_upper
        self.angle = self.clamp(self.angle)
        self.rest = self.clamp(self.rest)
        return changed

    def copy(self) -> 'KinematicJoint':
        return KinematicJoint(
            name=self.name,
            axis=self.axis.copy(),
            lower=self.lower,
            upper=self.upper,
            origin=self.origin.copy(),
            rest=self.rest,
            angle=self.angle,
            child_link=self.child_link,
        )


def axis_angle_matrix(axis: np.ndarray, angle: float) -> np.ndarray:
    """Rodrigues rotation matrix for a unit axis and an angle in radians."""
    x, y, z = axis
    c, s = np.cos(angle), np.sin(angle)
    C = 1.0 - c
    return np.array([
        [c + x * x * C, x * y * C - z * s, x * z * C + y * s],
        [y * x * C + z * s, c + y * y * C, y * z * C - x * s],
        [z * x * C - y * s, z * y * C + x * s, c + z * z * C],
    ])


@dataclass
class ChainPose:
    """World-space result of forward kinematics."""
    joint_positions: np.ndarray   # [n, 3] joint pivot positions
    joint_axes: np.ndarray        # [n, 3] unit rotation axes in world frame
    link_rotations: np.ndarray    # [n, 3, 3] child-link orientation after each joint
    ee_position: np.ndarray
    ee_rotation: np.ndarray       # [3, 3]

    @property
    def ee_quat(self) -> np.ndarray:
        return Rotation.from_matrix(self.ee_rotation).as_quat()


class Chain:
    """
    Ordered revolute joints from a fixed root to an end-effector frame.

    Usage:
        chain = Chain(joints, base_position=[0, 0.15, 1.1], ee_link="left_hand_palm_link")
        pose = chain.forward_kinematics()
        chain.set_angles(q)
    """

    def __init__(
        self,
        joints: Sequence[KinematicJoint],
        base_position=None,
        base_orientation=None,
        ee_offset=None,
        ee_link: Optional[str] = None,
    ):
        if not joints:
            raise ValueError("A chain needs at least one joint")
        self.joints: List[KinematicJoint] = list(joints)
        self.base_position = np.zeros(3) if base_position is None else np.asarray(base_position, dtype=float)
        if base_orientation is None:
            self.base_rotation = np.eye(3)
        else:
            self.base_rotation = Rotation.from_quat(np.asarray(base_orientation, dtype=float)).as_matrix()
        self.ee_offset = np.zeros(3) if ee_offset is None else np.asarray(ee_offset, dtype=float)
        self.ee_link = ee_link

    def __len__(self) -> int:
        return len(self.joints)

    @property
    def names(self) -> List[str]:
        return [j.name for j in self.joints]

    @property
    def angles(self) -> np.ndarray:
        return np.array([j.angle for j in self.joints])

    @property
    def rest_angles(self) -> np.ndarray:
        return np.array([j.rest for j in self.joints])

    @property
    def joint_limits(self) -> JointLimits:
        return JointLimits(
            lower=np.array([j.lower for j in self.joints]),
            upper=np.array([j.upper for j in self.joints]),
        )

    @property
    def reach(self) -> float:
        """Sum of link lengths from the first joint to the end effector."""
        lengths = [np.linalg.norm(j.origin) for j in self.joints[1:]]
        return float(sum(lengths) + np.linalg.norm(self.ee_offset))

    def set_angles(self, q: Sequence[float]) -> np.ndarray:
        """Commit a full joint vector, clamped per joint."""
        q = np.asarray(q, dtype=float).reshape(len(self.joints))
        for joint, value in zip(self.joints, q):
            joint.set_angle(value)
        return self.angles

    def joint(self, name: str) -> KinematicJoint:
        for j in self.joints:
            if j.name == name:
                return j
        raise KeyError(name)

    def root_position(self) -> np.ndarray:
        """World position of the first joint (independent of joint angles)."""
        return self.base_position + self.base_rotation @ self.joints[0].origin

    def forward_kinematics(self, q: Optional[Sequence[float]] = None) -> ChainPose:
        """
        Compute world poses of every joint and the end effector.

        Args:
            q: Joint angles to evaluate (None = current angles). Values are
               used as given; callers clamp before committing.

        Returns:
            ChainPose with pivots, world axes and link rotations
        """
        q = self.angles if q is None else np.asarray(q, dtype=float)
        n = len(self.joints)

        positions = np.zeros((n, 3))
        axes = np.zeros((n, 3))
        rotations = np.zeros((n, 3, 3))

        R = self.base_rotation
        p = self.base_position.copy()
        for i, joint in enumerate(self.joints):
            p = p + R @ joint.origin
            positions[i] = p
            axes[i] = R @ joint.axis
            R = R @ axis_angle_matrix(joint.axis, q[i])
            rotations[i] = R

        return ChainPose(
            joint_positions=positions,
            joint_axes=axes,
            link_rotations=rotations,
            ee_position=p + R @ self.ee_offset,
            ee_rotation=R,
        )

    def link_poses(self) -> Dict[str, Tuple[np.ndarray, np.ndarray]]:
        """World (position, quaternion) of each child link and the end-effector link."""
        pose = self.forward_kinematics()
        quats = Rotation.from_matrix(pose.link_rotations).as_quat()
        poses = {}
        for i, joint in enumerate(self.joints):
            if joint.child_link:
                poses[joint.child_link] = (pose.joint_positions[i].copy(), quats[i])
        if self.ee_link:
            poses[self.ee_link] = (pose.ee_position.copy(), pose.ee_quat)
        return poses

    def copy(self) -> 'Chain':
        return Chain(
            [j.copy() for j in self.joints],
            base_position=self.base_position.copy(),
            base_orientation=Rotation.from_matrix(self.base_rotation).as_quat(),
            ee_offset=self.ee_offset.copy(),
            ee_link=self.ee_link,
        )
