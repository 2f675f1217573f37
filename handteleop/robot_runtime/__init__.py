"""
Robot Runtime Module

Safety and physics-facing pieces of the teleoperation loop:
- SafetyGate: limit tightening, velocity bound, blend-to-safe on contact
- CollisionMonitor: link colliders in an external PhysicsWorld
"""

from .safety_gate import (
    COLLISION_OVERRIDES,
    CollisionState,
    GateResult,
    SafetyGate,
    SafetyGateConfig,
    SafetyStatus,
    apply_limit_overrides,
)
from .collision_monitor import (
    CollisionMonitor,
    LinkGeometry,
    PhysicsWorld,
)

__all__ = [
    'COLLISION_OVERRIDES',
    'CollisionState',
    'GateResult',
    'SafetyGate',
    'SafetyGateConfig',
    'SafetyStatus',
    'apply_limit_overrides',
    'CollisionMonitor',
    'LinkGeometry',
    'PhysicsWorld',
]
