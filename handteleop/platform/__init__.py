"""Platform utilities shared by the teleoperation core."""

from .logging_utils import setup_logger, get_logger, set_package_level

__all__ = ['setup_logger', 'get_logger', 'set_package_level']
