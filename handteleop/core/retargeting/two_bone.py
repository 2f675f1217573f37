"""
Two-Bone Analytical IK and Arm Calibration Helpers

Closed-form shoulder-elbow-wrist solve for cases where only the wrist
position matters. The pole vector picks the elbow's bend plane.

Robot frame: x forward, y left, z up.
"""

import numpy as np
from dataclasses import dataclass

from scipy.spatial.transform import Rotation

from ..hand_frame import Handedness


@dataclass
class TwoBoneResult:
    """Two-bone solution."""
    elbow_position: np.ndarray
    reachable: bool
    clamped_target: np.ndarray


def solve_two_bone(root, target, pole, l1: float, l2: float) -> TwoBoneResult:
    """
    Place the elbow of a two-link chain.

    Args:
        root: Shoulder world position
        target: Desired wrist world position
        pole: World point the elbow should bend toward
        l1: Upper arm length
        l2: Forearm length

    Returns:
        TwoBoneResult; the target distance is clamped into
        [|l1 - l2| * 1.001, (l1 + l2) * 0.999]
    """
    root = np.asarray(root, dtype=float)
    target = np.asarray(target, dtype=float)
    pole = np.asarray(pole, dtype=float)

    to_target = target - root
    dist = float(np.linalg.norm(to_target))

    max_dist = (l1 + l2) * 0.999
    min_dist = abs(l1 - l2) * 1.001
    clamped = min(max(dist, min_dist), max_dist)
    reachable = dist <= max_dist

    # Law of cosines for the angle at the shoulder
    cos_a = (l1 * l1 + clamped * clamped - l2 * l2) / (2 * l1 * clamped)
    angle_a = np.arccos(np.clip(cos_a, -1.0, 1.0))

    if dist < 1e-3:
        # Target at the root: aim along the pole instead
        direction = pole - root
        norm = np.linalg.norm(direction)
        direction = direction / norm if norm > 1e-9 else np.array([1.0, 0.0, 0.0])
    else:
        direction = to_target / dist

    # Gram-Schmidt: pole component perpendicular to root->target
    perp = (pole - root) - direction * np.dot(pole - root, direction)
    if np.dot(perp, perp) < 1e-4:
        helper = np.array([0.0, 0.0, 1.0])
        if abs(np.dot(direction, helper)) > 0.9:
            helper = np.array([1.0, 0.0, 0.0])
        perp = np.cross(helper, direction)
    perp = perp / np.linalg.norm(perp)

    elbow_dir = direction * np.cos(angle_a) + perp * np.sin(angle_a)
    elbow_dir = elbow_dir / np.linalg.norm(elbow_dir)

    return TwoBoneResult(
        elbow_position=root + elbow_dir * l1,
        reachable=reachable,
        clamped_target=root + direction * clamped,
    )


def elbow_pole(handedness: Handedness, shoulder) -> np.ndarray:
    """Pole point that puts the elbow outward, back and down from the shoulder."""
    shoulder = np.asarray(shoulder, dtype=float)
    return shoulder + np.array([-0.3, 0.6 * handedness.mirror_sign, -0.3])


def apply_wrist_offset(wrist_position, wrist_orientation, offset: float = 0.05) -> np.ndarray:
    """
    Shift a tracked wrist position forward along the wrist's -z axis, from
    the tracked wrist joint toward the palm center.
    """
    wrist_position = np.asarray(wrist_position, dtype=float)
    if offset == 0.0:
        return wrist_position.copy()
    forward = Rotation.from_quat(wrist_orientation).apply([0.0, 0.0, -offset])
    return wrist_position + forward


def compute_arm_scale(human_reach: float, robot_reach: float) -> float:
    """
    Scale factor mapping human wrist targets onto the robot's arm.

    Measured once with the arm outstretched; clamped to [0.5, 1.2] so a bad
    calibration cannot produce extreme mappings.
    """
    scale = robot_reach / max(float(human_reach), 0.3)
    return float(min(max(scale, 0.5), 1.2))
