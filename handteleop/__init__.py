"""Hand-tracking teleoperation core for the Unitree G1 with Dex 3.1 hands."""

from .version import __version__

__all__ = ['__version__']
