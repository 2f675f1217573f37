"""
Collision Monitor - Self-Collision Feedback from an External Physics World

The physics engine itself is an external collaborator, reached only through
the PhysicsWorld interface below. The monitor:

1. Builds one kinematic body + collider per robot link (arm links as convex
   hulls, body links as triangle meshes with a convex-hull fallback).
2. Each tick, pushes the current link poses into the world before it steps.
3. After the step, reports per-arm contact with any non-arm collider as a
   CollisionState for the SafetyGate.

Collider construction failures skip that link and are logged; they never
abort setup or a tick.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import numpy as np

from handteleop.core.error_handling import ErrorTracker, ErrorSeverity, safe_call
from handteleop.core.hand_frame import Handedness
from handteleop.platform.logging_utils import get_logger
from .safety_gate import CollisionState

logger = get_logger(__name__)

# Links driven by the arm chains and hands; everything else is body
KINEMATIC_PREFIXES = (
    'left_shoulder_pitch', 'left_shoulder_roll', 'left_shoulder_yaw',
    'left_elbow', 'left_wrist_roll', 'left_wrist_pitch', 'left_wrist_yaw',
    'left_hand_',
    'right_shoulder_pitch', 'right_shoulder_roll', 'right_shoulder_yaw',
    'right_elbow', 'right_wrist_roll', 'right_wrist_pitch', 'right_wrist_yaw',
    'right_hand_',
)

# Sensor frames with no physical extent
SKIP_LINKS = frozenset({'imu_in_torso', 'imu_in_pelvis', 'd435_link', 'mid360_link'})

ARM_GROUP = 0x0001
BODY_GROUP = 0x0002


def is_kinematic_link(name: str) -> bool:
    return name.startswith(KINEMATIC_PREFIXES)


def collision_groups(is_arm: bool) -> int:
    """Packed (membership << 16) | filter. Arms hit arms and body; body only hits arms."""
    membership = ARM_GROUP if is_arm else BODY_GROUP
    filter_mask = (BODY_GROUP | ARM_GROUP) if is_arm else ARM_GROUP
    return (membership << 16) | filter_mask


@dataclass
class LinkGeometry:
    """Collision geometry of one link, vertices in the link's local frame."""
    name: str
    vertices: np.ndarray                       # [N, 3]
    indices: Optional[np.ndarray] = None       # flat triangle indices
    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    orientation: np.ndarray = field(default_factory=lambda: np.array([0.0, 0.0, 0.0, 1.0]))

    def __post_init__(self):
        self.vertices = np.asarray(self.vertices, dtype=float).reshape(-1, 3)
        if self.indices is not None:
            self.indices = np.asarray(self.indices, dtype=np.uint32).reshape(-1)


class PhysicsWorld(ABC):
    """
    Interface to the rigid-body world that owns colliders and contacts.

    Handles returned by the world are opaque to the monitor; collider
    handles must be hashable.
    """

    @abstractmethod
    def create_kinematic_body(self, position: np.ndarray, orientation: np.ndarray) -> Any:
        """Create a kinematic, position-driven rigid body."""
        pass

    @abstractmethod
    def create_convex_hull(self, body: Any, vertices: np.ndarray, groups: int) -> Optional[Any]:
        """Attach a convex-hull collider; None if the hull is degenerate."""
        pass

    @abstractmethod
    def create_trimesh(self, body: Any, vertices: np.ndarray, indices: np.ndarray, groups: int) -> Optional[Any]:
        """Attach a triangle-mesh collider; None if construction fails."""
        pass

    @abstractmethod
    def remove_body(self, body: Any) -> None:
        pass

    @abstractmethod
    def set_next_kinematic_pose(self, body: Any, position: np.ndarray, orientation: np.ndarray) -> None:
        """Target pose for the body at the next world step."""
        pass

    @abstractmethod
    def contact_pairs_with(self, collider: Any) -> Iterable[Any]:
        """Colliders currently in contact with ``collider``."""
        pass


@dataclass
class _Entry:
    body: Any
    collider: Any
    is_arm: bool


class CollisionMonitor:
    """
    Keeps link colliders in sync with the robot and reports arm contacts.

    Usage:
        monitor = CollisionMonitor(world)
        monitor.init(link_geometries)

        # every tick, before the physics step
        monitor.sync(controller.link_poses())
        # after the step
        controller.update_collision_state(monitor.check_collisions())
    """

    def __init__(self, world: PhysicsWorld, tracker: Optional[ErrorTracker] = None):
        self.world = world
        self.tracker = tracker or ErrorTracker("collision_monitor")

        self.entries: Dict[str, _Entry] = {}
        self._collider_to_link: Dict[Any, str] = {}
        self._arm_colliders: List[Tuple[str, Any]] = []
        self.skipped_links: List[str] = []
        self.state = CollisionState()

    @property
    def arm_collider_count(self) -> int:
        return len(self._arm_colliders)

    def init(self, links: Iterable[LinkGeometry]) -> int:
        """
        Build colliders for every usable link.

        Returns:
            Number of links that received a collider
        """
        for link in links:
            if link.name in SKIP_LINKS:
                continue
            if len(link.vertices) < 3:
                logger.debug(f"Skipping {link.name}: {len(link.vertices)} vertices")
                self.skipped_links.append(link.name)
                continue
            self._add_link(link)

        logger.info(
            f"Created {len(self.entries)} bodies ({len(self._arm_colliders)} arm colliders, "
            f"{len(self.skipped_links)} links skipped)"
        )
        return len(self.entries)

    def _add_link(self, link: LinkGeometry):
        context = {'link': link.name}
        is_arm = is_kinematic_link(link.name)
        groups = collision_groups(is_arm)

        body = safe_call(
            self.world.create_kinematic_body, link.position, link.orientation,
            tracker=self.tracker, context=context,
        )
        if body is None:
            self.skipped_links.append(link.name)
            return

        collider = None
        if is_arm:
            collider = safe_call(
                self.world.create_convex_hull, body, link.vertices, groups,
                tracker=self.tracker, context=context,
            )
        else:
            if link.indices is not None and len(link.indices) >= 3:
                collider = safe_call(
                    self.world.create_trimesh, body, link.vertices, link.indices, groups,
                    tracker=self.tracker, context=context,
                )
            if collider is None:
                collider = safe_call(
                    self.world.create_convex_hull, body, link.vertices, groups,
                    tracker=self.tracker, context=context,
                )

        if collider is None:
            self.tracker.record_error(
                ErrorSeverity.WARNING, f"No collider for {link.name}; link skipped", context=context,
            )
            safe_call(self.world.remove_body, body, tracker=self.tracker, context=context)
            self.skipped_links.append(link.name)
            return

        self.entries[link.name] = _Entry(body=body, collider=collider, is_arm=is_arm)
        self._collider_to_link[collider] = link.name
        if is_arm:
            self._arm_colliders.append((link.name, collider))

    def sync(self, link_poses: Mapping[str, Tuple[np.ndarray, np.ndarray]]):
        """Push world (position, quaternion) link poses to their bodies."""
        for name, (position, orientation) in link_poses.items():
            entry = self.entries.get(name)
            if entry is None:
                continue
            safe_call(
                self.world.set_next_kinematic_pose, entry.body, position, orientation,
                tracker=self.tracker, context={'link': name},
            )

    def check_collisions(self) -> CollisionState:
        """Per-arm contact with any non-arm collider after the last step."""
        state = CollisionState()
        for link_name, collider in self._arm_colliders:
            others = safe_call(
                self.world.contact_pairs_with, collider,
                fallback=(), tracker=self.tracker, context={'link': link_name},
            )
            for other in others:
                other_name = self._collider_to_link.get(other)
                if other_name is None:
                    continue
                if self.entries[other_name].is_arm:
                    continue
                for side in Handedness:
                    if link_name.startswith(f'{side.value}_'):
                        state.set(side, True)

        if (state.left, state.right) != (self.state.left, self.state.right):
            logger.debug(f"Contact state left={state.left} right={state.right}")
        self.state = state
        return state

    def dispose(self):
        for name, entry in self.entries.items():
            safe_call(self.world.remove_body, entry.body, tracker=self.tracker, context={'link': name})
        self.entries.clear()
        self._collider_to_link.clear()
        self._arm_colliders = []
