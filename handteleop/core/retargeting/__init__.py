"""
Arm Retargeting Module

Provides the kinematic side of teleoperation:
- Explicit Chain values with forward kinematics
- Cyclic Coordinate Descent IK with reach clamping
- Two-bone analytical IK and arm calibration helpers
- G1 arm / Dex 3.1 hand robot profiles
"""

from .kinematics import (
    Chain,
    ChainPose,
    KinematicJoint,
    JointLimits,
)
from .ik_solver import (
    CCDIKSolver,
    IKSolverConfig,
    IKResult,
)
from .two_bone import (
    TwoBoneResult,
    solve_two_bone,
    elbow_pole,
    apply_wrist_offset,
    compute_arm_scale,
)
from .robot_profiles import (
    ARM_CHAIN,
    HAND_LINK,
    build_g1_arm_chain,
    build_dex3_hand_joints,
)

__all__ = [
    'Chain',
    'ChainPose',
    'KinematicJoint',
    'JointLimits',
    'CCDIKSolver',
    'IKSolverConfig',
    'IKResult',
    'TwoBoneResult',
    'solve_two_bone',
    'elbow_pole',
    'apply_wrist_offset',
    'compute_arm_scale',
    'ARM_CHAIN',
    'HAND_LINK',
    'build_g1_arm_chain',
    'build_dex3_hand_joints',
]
