"""
Core Module - Tracking-to-Actuation Pipeline

This module contains the per-tick teleoperation core:
- Temporal filtering of tracked poses (filters)
- 5-finger to Dex 3.1 hand-shape retargeting (hand_retargeting)
- Arm kinematics and CCD IK (retargeting)
- Orchestration of both hands (teleop_controller)
- Error handling and configuration

Primary Components:
    - TeleopController: runs both hands once per control tick
    - PoseFilter: spring-damper / exponential position + slerp orientation
    - HandShapeRetargeter: tracked joints -> normalized HandShape
    - CCDIKSolver: bounded joint angles for a Goal

Usage:
    from handteleop.core import (
        TeleopController,
        load_and_validate_config,
        build_controller_config,
    )
"""

# Configuration
from .config_loader import load_and_validate_config, build_controller_config, AppConfig

# Tracking data model
from .hand_frame import HandFrame, JointPose, Handedness, XR_JOINT_NAMES

# Filters
from .filters import (
    FilterState,
    ExponentialFilter,
    QuaternionFilter,
    SpringDamperFilter,
    WeightedMovingFilter,
    PoseFilter,
    Goal,
)

# Hand retargeting
from .hand_retargeting import (
    CurlMethod,
    HandRetargetConfig,
    FingerShape,
    HandShape,
    HandShapeRetargeter,
    map_hand_shape_to_angles,
)

# Error handling (graceful degradation)
from .error_handling import (
    ErrorSeverity,
    ComponentState,
    ErrorTracker,
    safe_call,
)

# Orchestration
from .teleop_controller import (
    TeleopController,
    TeleopControllerConfig,
    TeleopOutput,
    HandCommand,
    HandTrackingState,
    TrackingStatus,
)

__all__ = [
    'load_and_validate_config', 'build_controller_config', 'AppConfig',
    'HandFrame', 'JointPose', 'Handedness', 'XR_JOINT_NAMES',
    'FilterState', 'ExponentialFilter', 'QuaternionFilter', 'SpringDamperFilter',
    'WeightedMovingFilter', 'PoseFilter', 'Goal',
    'CurlMethod', 'HandRetargetConfig', 'FingerShape', 'HandShape',
    'HandShapeRetargeter', 'map_hand_shape_to_angles',
    'ErrorSeverity', 'ComponentState', 'ErrorTracker', 'safe_call',
    'TeleopController', 'TeleopControllerConfig', 'TeleopOutput', 'HandCommand',
    'HandTrackingState', 'TrackingStatus',
]
