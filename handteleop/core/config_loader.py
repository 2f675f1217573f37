"""
Configuration Loader & Validation
"""

import os
import yaml
from pathlib import Path
from typing import List, Literal, Optional
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from handteleop.core.filters import WeightedMovingFilter
from handteleop.core.hand_retargeting import CurlMethod, HandRetargetConfig
from handteleop.core.retargeting.ik_solver import IKSolverConfig
from handteleop.core.teleop_controller import TeleopControllerConfig
from handteleop.robot_runtime.safety_gate import SafetyGateConfig
from handteleop.platform.logging_utils import get_logger, set_package_level

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = "config/teleop.yaml"

# =============================================================================
# Configuration Models
# =============================================================================

class SystemSettings(BaseModel):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    control_rate_hz: float = Field(90.0, ge=30.0, le=240.0)

    @field_validator("log_level", mode="before")
    @classmethod
    def upper_case_level(cls, v):
        return v.upper() if isinstance(v, str) else v

class FilterSettings(BaseModel):
    position_filter: Literal["spring", "exponential"] = "spring"
    position_alpha: float = Field(0.3, gt=0.0, le=1.0)
    orientation_alpha: float = Field(0.3, gt=0.0, le=1.0)
    spring_mass: float = Field(1.0, gt=0.0)
    spring_stiffness: float = Field(64.0, gt=0.0)
    spring_damping: float = Field(14.4, ge=0.0)
    max_dt: float = Field(0.05, gt=0.0, le=0.5)
    joint_filter_weights: List[float] = [0.4, 0.3, 0.2, 0.1]

    @field_validator("joint_filter_weights")
    @classmethod
    def weights_non_increasing(cls, v: List[float]) -> List[float]:
        # Same rules the filter enforces at construction
        WeightedMovingFilter(v, data_size=1)
        return v

class IKSettings(BaseModel):
    max_iterations: int = Field(25, ge=1, le=200)
    position_tolerance: float = Field(0.003, gt=0.0)
    orientation_tolerance: float = Field(0.03, gt=0.0)
    step_gain: float = Field(1.0, gt=0.0, le=1.0)
    max_step: float = Field(0.15, gt=0.0, le=1.0)
    regularization: float = Field(0.02, ge=0.0, le=0.5)
    orientation_blend_start: float = Field(0.5, ge=0.0, lt=1.0)
    max_joint_delta: Optional[float] = Field(None, gt=0.0)

class RetargetSettings(BaseModel):
    proximal_curl_method: CurlMethod = CurlMethod.DISTANCE_RATIO
    distal_curl_method: CurlMethod = CurlMethod.BEND_ANGLE
    straight_ratio: float = Field(0.92, gt=0.0, le=1.0)
    fist_ratio: float = Field(0.30, ge=0.0, lt=1.0)
    bend_full_angle: float = Field(1.0471975511965976, ge=0.0, lt=3.14159)
    thumb_curl_gain: float = Field(1.5, gt=0.0)
    abduction_neutral: float = 1.15
    abduction_span: float = Field(0.5, gt=0.0)
    smoothing_alpha: float = Field(0.4, gt=0.0, le=1.0)

    @model_validator(mode="after")
    def ratios_ordered(self) -> "RetargetSettings":
        if self.straight_ratio <= self.fist_ratio:
            raise ValueError("straight_ratio must exceed fist_ratio")
        return self

class SafetySettings(BaseModel):
    apply_collision_overrides: bool = True
    contact_grace_frames: int = Field(3, ge=0)
    acquisition_grace_frames: int = Field(30, ge=0)
    blend_to_safe: bool = True
    blend_factor: float = Field(0.5, gt=0.0, le=1.0)
    max_joint_velocity: float = Field(8.0, gt=0.0)

class TeleopSettings(BaseModel):
    apply_frame_correction: bool = True
    wrist_offset: float = Field(0.0, ge=0.0, le=0.2)
    arm_scale: float = Field(1.0, ge=0.5, le=1.2)

class AppConfig(BaseModel):
    system: SystemSettings = Field(default_factory=SystemSettings)
    filters: FilterSettings = Field(default_factory=FilterSettings)
    ik: IKSettings = Field(default_factory=IKSettings)
    retargeting: RetargetSettings = Field(default_factory=RetargetSettings)
    safety: SafetySettings = Field(default_factory=SafetySettings)
    teleop: TeleopSettings = Field(default_factory=TeleopSettings)

# =============================================================================
# Loader
# =============================================================================

def load_and_validate_config(config_path: str = DEFAULT_CONFIG_PATH) -> AppConfig:
    """
    Load configuration from YAML, apply env overrides, and validate.
    """
    path = Path(config_path)
    config_data = {}

    # 1. Load YAML
    if path.exists():
        try:
            with open(path, 'r') as f:
                config_data = yaml.safe_load(f) or {}
            logger.info(f"Loaded config from {path}")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load config file: {e}")
            # Continue with defaults
    else:
        logger.warning(f"Config file {path} not found. Using defaults.")

    # 2. Environment Overrides
    if os.getenv("LOG_LEVEL"):
        config_data.setdefault("system", {})["log_level"] = os.getenv("LOG_LEVEL").upper()

    if os.getenv("TELEOP_ARM_SCALE"):
        try:
            config_data.setdefault("teleop", {})["arm_scale"] = float(os.getenv("TELEOP_ARM_SCALE"))
        except ValueError:
            logger.warning(f"Ignoring invalid TELEOP_ARM_SCALE={os.getenv('TELEOP_ARM_SCALE')!r}")

    if os.getenv("TELEOP_IK_ITERATIONS"):
        try:
            config_data.setdefault("ik", {})["max_iterations"] = int(os.getenv("TELEOP_IK_ITERATIONS"))
        except ValueError:
            logger.warning(f"Ignoring invalid TELEOP_IK_ITERATIONS={os.getenv('TELEOP_IK_ITERATIONS')!r}")

    if os.getenv("TELEOP_POSITION_FILTER"):
        config_data.setdefault("filters", {})["position_filter"] = os.getenv("TELEOP_POSITION_FILTER").lower()

    # 3. Validation
    try:
        config = AppConfig(**config_data)
        logger.info("Configuration validated successfully.")
    except ValidationError as e:
        logger.error(f"Configuration validation failed: {e}")
        logger.warning("Falling back to default configuration due to validation errors.")
        config = AppConfig()

    set_package_level(config.system.log_level)
    return config


def build_controller_config(app_config: AppConfig) -> TeleopControllerConfig:
    """Convert validated settings into the runtime controller configuration."""
    f = app_config.filters
    s = app_config.safety
    r = app_config.retargeting

    return TeleopControllerConfig(
        position_filter=f.position_filter,
        position_alpha=f.position_alpha,
        orientation_alpha=f.orientation_alpha,
        spring_mass=f.spring_mass,
        spring_stiffness=f.spring_stiffness,
        spring_damping=f.spring_damping,
        max_dt=f.max_dt,
        joint_filter_weights=tuple(f.joint_filter_weights),
        apply_frame_correction=app_config.teleop.apply_frame_correction,
        wrist_offset=app_config.teleop.wrist_offset,
        arm_scale=app_config.teleop.arm_scale,
        apply_collision_overrides=s.apply_collision_overrides,
        default_dt=1.0 / app_config.system.control_rate_hz,
        ik=IKSolverConfig(**app_config.ik.model_dump()),
        retarget=HandRetargetConfig(**r.model_dump()),
        safety=SafetyGateConfig(
            contact_grace_frames=s.contact_grace_frames,
            acquisition_grace_frames=s.acquisition_grace_frames,
            blend_to_safe=s.blend_to_safe,
            blend_factor=s.blend_factor,
            max_joint_velocity=s.max_joint_velocity,
            max_dt=f.max_dt,
        ),
    )
