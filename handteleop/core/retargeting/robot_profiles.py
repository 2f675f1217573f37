"""
Robot Profiles - Unitree G1 Arms and Dex 3.1 Hands

Joint tables and chain builders standing in for the URDF loader: the
kinematic description is resolved once at setup into Chain values and
hand joint lists.

Robot frame: x forward, y left, z up. With every angle at zero the arm
hangs straight down from the shoulder.
"""

import numpy as np
from typing import Dict, List

from .kinematics import Chain, KinematicJoint
from ..hand_frame import Handedness

DEG = np.pi / 180.0


# =============================================================================
# G1 Dimensions (meters)
# =============================================================================

G1_UPPER_ARM_LENGTH = 0.250
G1_FOREARM_LENGTH = 0.218
G1_WRIST_LENGTH = 0.065

# Palm link in the wrist_yaw frame, along the forearm
G1_PALM_OFFSET = np.array([0.0, 0.0, -G1_WRIST_LENGTH])

# Shoulder pitch joint relative to the pelvis origin
G1_SHOULDER_OFFSET = {
    Handedness.LEFT: np.array([0.0, 0.172, 0.41]),
    Handedness.RIGHT: np.array([0.0, -0.172, 0.41]),
}
G1_PELVIS_HEIGHT = 0.75

ARM_CHAIN = {
    side: [
        f'{side.value}_shoulder_pitch_joint',
        f'{side.value}_shoulder_roll_joint',
        f'{side.value}_shoulder_yaw_joint',
        f'{side.value}_elbow_joint',
        f'{side.value}_wrist_roll_joint',
        f'{side.value}_wrist_pitch_joint',
        f'{side.value}_wrist_yaw_joint',
    ]
    for side in Handedness
}

HAND_LINK = {side: f'{side.value}_hand_palm_link' for side in Handedness}


# =============================================================================
# G1 Arm Joint Table
# =============================================================================

# name: (axis, lower, upper, rest); shoulder roll is mirrored per side
_G1_ARM_TABLE = {
    Handedness.LEFT: [
        ('shoulder_pitch', (0, 1, 0), -154 * DEG, 154 * DEG, 0.0),
        ('shoulder_roll', (1, 0, 0), -91 * DEG, 129 * DEG, 20 * DEG),
        ('shoulder_yaw', (0, 0, 1), -150 * DEG, 150 * DEG, 0.0),
        ('elbow', (0, -1, 0), 0.0, 165 * DEG, 60 * DEG),
        ('wrist_roll', (0, 0, 1), -180 * DEG, 180 * DEG, 0.0),
        ('wrist_pitch', (0, 1, 0), -92.5 * DEG, 92.5 * DEG, 0.0),
        ('wrist_yaw', (1, 0, 0), -92.5 * DEG, 92.5 * DEG, 0.0),
    ],
    Handedness.RIGHT: [
        ('shoulder_pitch', (0, 1, 0), -154 * DEG, 154 * DEG, 0.0),
        ('shoulder_roll', (1, 0, 0), -129 * DEG, 91 * DEG, -20 * DEG),
        ('shoulder_yaw', (0, 0, 1), -150 * DEG, 150 * DEG, 0.0),
        ('elbow', (0, -1, 0), 0.0, 165 * DEG, 60 * DEG),
        ('wrist_roll', (0, 0, 1), -180 * DEG, 180 * DEG, 0.0),
        ('wrist_pitch', (0, 1, 0), -92.5 * DEG, 92.5 * DEG, 0.0),
        ('wrist_yaw', (1, 0, 0), -92.5 * DEG, 92.5 * DEG, 0.0),
    ],
}

# Joint origins in the previous joint's frame: the elbow sits one upper
# arm below the shoulder, the wrist one forearm below the elbow.
_G1_ARM_ORIGINS = {
    'elbow': np.array([0.0, 0.0, -G1_UPPER_ARM_LENGTH]),
    'wrist_roll': np.array([0.0, 0.0, -G1_FOREARM_LENGTH]),
}


def build_g1_arm_chain(
    handedness: Handedness,
    base_position=None,
    base_orientation=None,
    ee_offset=None,
    include_palm: bool = False,
    start_at_rest: bool = True,
) -> Chain:
    """
    Build the 7-joint G1 arm chain for one side.

    Args:
        handedness: Which arm
        base_position: World position of the shoulder pitch joint
                       (default: standing robot at the origin)
        base_orientation: World orientation of the chain base, xyzw
        ee_offset: Palm offset in the wrist_yaw frame (default: none, so
                   the chain's reach is upper arm + forearm)
        include_palm: Use G1_PALM_OFFSET when ee_offset is not given, so the
                      end effector is the palm rather than the wrist
        start_at_rest: Initialize every joint at its rest angle

    Returns:
        Chain ending at the palm link
    """
    if base_position is None:
        base_position = G1_SHOULDER_OFFSET[handedness] + np.array([0.0, 0.0, G1_PELVIS_HEIGHT])

    if ee_offset is None and include_palm:
        ee_offset = G1_PALM_OFFSET

    joints = []
    for name, axis, lower, upper, rest in _G1_ARM_TABLE[handedness]:
        joints.append(KinematicJoint(
            name=f'{handedness.value}_{name}_joint',
            axis=np.array(axis, dtype=float),
            lower=lower,
            upper=upper,
            origin=_G1_ARM_ORIGINS.get(name, np.zeros(3)),
            rest=rest,
            angle=rest if start_at_rest else 0.0,
        ))

    return Chain(
        joints,
        base_position=base_position,
        base_orientation=base_orientation,
        ee_offset=ee_offset,
        ee_link=HAND_LINK[handedness],
    )


# =============================================================================
# Dex 3.1 Hand Joint Table
# =============================================================================

# 7 DoF total: thumb(3) + index(2) + middle(2)
DEX31_JOINTS = {
    'thumb': [
        ('thumb_0', -60 * DEG, 60 * DEG),    # abduction/adduction
        ('thumb_1', -35 * DEG, 60 * DEG),    # proximal flexion
        ('thumb_2', 0.0, 100 * DEG),         # distal flexion
    ],
    'index': [
        ('index_0', 0.0, 90 * DEG),
        ('index_1', 0.0, 100 * DEG),
    ],
    'middle': [
        ('middle_0', 0.0, 90 * DEG),
        ('middle_1', 0.0, 100 * DEG),
    ],
}

# Joints whose limits are sign-flipped on the right hand (flexion axes
# point the other way in the mirrored URDF)
_RIGHT_MIRRORED = {'thumb_1', 'thumb_2', 'index_0', 'index_1', 'middle_0', 'middle_1'}


def hand_joint_name(handedness: Handedness, short_name: str) -> str:
    return f'{handedness.value}_hand_{short_name}_joint'


def build_dex3_hand_joints(handedness: Handedness) -> List[KinematicJoint]:
    """
    Dex 3.1 hand joints for one side, thumb first.

    Only name and limits matter to finger mapping; axes and origins are
    nominal.
    """
    joints = []
    for table in DEX31_JOINTS.values():
        for short_name, lower, upper in table:
            if handedness is Handedness.RIGHT and short_name in _RIGHT_MIRRORED:
                lower, upper = -upper, -lower
            joints.append(KinematicJoint(
                name=hand_joint_name(handedness, short_name),
                axis=np.array([0.0, 0.0, 1.0]),
                lower=lower,
                upper=upper,
            ))
    return joints


def joint_table(joints: List[KinematicJoint]) -> Dict[str, KinematicJoint]:
    return {j.name: j for j in joints}

