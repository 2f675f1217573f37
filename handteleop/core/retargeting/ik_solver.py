"""
Inverse Kinematics Solver

Cyclic Coordinate Descent (CCD) over an explicit Chain:
- Distal-to-proximal sweep, one joint at a time
- Position and orientation corrections blended along the chain
- Damping, per-step clamp and rest-pose regularization
- Reach clamping for goals outside the workspace

One parameterized solver; the tuning lives in IKSolverConfig.
"""

import numpy as np
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from scipy.spatial.transform import Rotation

from .kinematics import Chain, axis_angle_matrix
from ..filters import Goal

logger = logging.getLogger(__name__)

_EPS = 1e-9


@dataclass
class IKSolverConfig:
    """Configuration for the CCD solver."""
    max_iterations: int = 25
    position_tolerance: float = 0.003      # m
    orientation_tolerance: float = 0.03    # rad
    step_gain: float = 1.0                 # temporal damping of each correction
    max_step: float = 0.15                 # rad, per joint per sweep
    regularization: float = 0.02           # pull toward rest angle
    regularization_error_scale: float = 0.05  # m, error at which the pull is full strength
    # Blend weights at the root and at the tip, interpolated by smoothstep
    # over the part of the chain past orientation_blend_start (0..1)
    orientation_blend_start: float = 0.5
    position_weight_root: float = 1.0
    position_weight_tip: float = 0.2
    orientation_weight_root: float = 0.0
    orientation_weight_tip: float = 1.0
    reach_margin: float = 0.999
    max_joint_delta: Optional[float] = None  # rad, total change per solve()


@dataclass
class IKResult:
    """IK solution result."""
    angles: np.ndarray
    reachable: bool
    converged: bool
    position_error: float
    orientation_error: float
    iterations: int
    effective_target: np.ndarray


def rotation_error(R_target: np.ndarray, R_current: np.ndarray) -> np.ndarray:
    """World-frame rotation vector taking R_current onto R_target."""
    R_err = R_target @ R_current.T

    # Convert to axis-angle
    trace = np.trace(R_err)
    theta = np.arccos(np.clip((trace - 1) / 2, -1, 1))

    if abs(theta) < 1e-6:
        return np.zeros(3)
    if np.pi - theta < 1e-3:
        # sin(theta) vanishes near a half turn
        return Rotation.from_matrix(R_err).as_rotvec()
    return theta / (2 * np.sin(theta)) * np.array([
        R_err[2, 1] - R_err[1, 2],
        R_err[0, 2] - R_err[2, 0],
        R_err[1, 0] - R_err[0, 1]
    ])


def smoothstep(t: np.ndarray) -> np.ndarray:
    t = np.clip(t, 0.0, 1.0)
    return t * t * (3.0 - 2.0 * t)


def signed_angle_about(axis: np.ndarray, v_from: np.ndarray, v_to: np.ndarray) -> Optional[float]:
    """
    Signed angle about ``axis`` swinging ``v_from`` onto ``v_to``, measured
    in the plane normal to the axis. None when either projection vanishes.
    """
    a = v_from - axis * np.dot(axis, v_from)
    b = v_to - axis * np.dot(axis, v_to)
    if np.dot(a, a) < _EPS or np.dot(b, b) < _EPS:
        return None
    return float(np.arctan2(np.dot(axis, np.cross(a, b)), np.dot(a, b)))


class CCDIKSolver:
    """
    Cyclic Coordinate Descent IK solver.

    Usage:
        chain = build_g1_arm_chain(Handedness.LEFT)
        solver = CCDIKSolver()

        result = solver.solve(chain, Goal(position=[0.3, 0.2, 0.9]))
        if not result.reachable:
            ...  # chain is stretched toward result.effective_target

    The solver commits the final angles to the chain; every committed angle
    lies within the joint's limits.
    """

    def __init__(self, config: Optional[IKSolverConfig] = None):
        self.config = config or IKSolverConfig()

    def blend_weights(self, n_joints: int, with_orientation: bool) -> Tuple[np.ndarray, np.ndarray]:
        """Per-joint (position, orientation) weights, root first."""
        if not with_orientation:
            return np.ones(n_joints), np.zeros(n_joints)

        cfg = self.config
        t = np.linspace(0.0, 1.0, n_joints) if n_joints > 1 else np.ones(1)
        start = cfg.orientation_blend_start
        s = smoothstep((t - start) / max(1.0 - start, _EPS))
        w_pos = cfg.position_weight_root + (cfg.position_weight_tip - cfg.position_weight_root) * s
        w_ori = cfg.orientation_weight_root + (cfg.orientation_weight_tip - cfg.orientation_weight_root) * s
        return w_pos, w_ori

    def clamp_target(self, chain: Chain, position: np.ndarray) -> Tuple[np.ndarray, bool]:
        """Pull ``position`` inside the chain's reach. Returns (target, reachable)."""
        root = chain.root_position()
        offset = position - root
        dist = np.linalg.norm(offset)
        max_dist = chain.reach * self.config.reach_margin
        if dist <= max_dist:
            return position.copy(), True
        return root + offset * (max_dist / dist), False

    def _errors(self, ee_pos, ee_R, target, R_goal) -> Tuple[float, float]:
        pos_err = float(np.linalg.norm(target - ee_pos))
        if R_goal is None:
            return pos_err, 0.0
        return pos_err, float(np.linalg.norm(rotation_error(R_goal, ee_R)))

    def _is_converged(self, pos_err: float, ori_err: float) -> bool:
        return (pos_err < self.config.position_tolerance
                and ori_err < self.config.orientation_tolerance)

    def solve(self, chain: Chain, goal: Goal) -> IKResult:
        """
        Drive the chain's end effector toward the goal.

        Args:
            chain: Chain to solve; its current angles seed the search
            goal: World-frame target (orientation optional)

        Returns:
            IKResult with committed angles and quality flags
        """
        cfg = self.config
        n = len(chain)

        target, reachable = self.clamp_target(chain, goal.position)
        R_goal = None
        if goal.orientation is not None:
            R_goal = Rotation.from_quat(goal.orientation).as_matrix()

        limits = chain.joint_limits
        lower, upper = limits.lower, limits.upper
        if cfg.max_joint_delta is not None:
            start = chain.angles
            lower = np.maximum(lower, start - cfg.max_joint_delta)
            upper = np.minimum(upper, start + cfg.max_joint_delta)

        q = np.clip(chain.angles, lower, upper)
        rest = chain.rest_angles
        w_pos, w_ori = self.blend_weights(n, R_goal is not None)

        iterations = 0
        for iteration in range(cfg.max_iterations):
            pose = chain.forward_kinematics(q)
            ee_pos = pose.ee_position
            ee_R = pose.ee_rotation

            pos_err, ori_err = self._errors(ee_pos, ee_R, target, R_goal)
            if self._is_converged(pos_err, ori_err):
                break

            iterations = iteration + 1
            reg = cfg.regularization * min(1.0, pos_err / cfg.regularization_error_scale)

            # Joint i's pivot and axis depend only on joints < i, so the sweep
            # can reuse this iteration's FK and update the end effector in place
            for i in reversed(range(n)):
                pivot = pose.joint_positions[i]
                axis = pose.joint_axes[i]

                correction = 0.0
                if w_pos[i] > 0.0:
                    angle = signed_angle_about(axis, ee_pos - pivot, target - pivot)
                    if angle is not None:
                        correction += w_pos[i] * angle
                if R_goal is not None and w_ori[i] > 0.0:
                    correction += w_ori[i] * float(np.dot(rotation_error(R_goal, ee_R), axis))

                step = cfg.step_gain * correction + reg * (rest[i] - q[i])
                step = min(max(step, -cfg.max_step), cfg.max_step)
                new_angle = min(max(q[i] + step, lower[i]), upper[i])

                delta = new_angle - q[i]
                if delta == 0.0:
                    continue
                R_delta = axis_angle_matrix(axis, delta)
                ee_pos = pivot + R_delta @ (ee_pos - pivot)
                ee_R = R_delta @ ee_R
                q[i] = new_angle

        pose = chain.forward_kinematics(q)
        pos_err, ori_err = self._errors(pose.ee_position, pose.ee_rotation, target, R_goal)
        converged = self._is_converged(pos_err, ori_err)

        committed = chain.set_angles(q)
        if not converged:
            logger.debug(
                f"CCD best effort after {iterations} iterations: "
                f"pos_err={pos_err:.4f} m, ori_err={ori_err:.3f} rad"
            )

        return IKResult(
            angles=committed,
            reachable=reachable,
            converged=converged,
            position_error=pos_err,
            orientation_error=ori_err,
            iterations=iterations,
            effective_target=target,
        )
