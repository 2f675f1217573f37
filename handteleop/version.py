"""
Hand-Tracking Teleoperation Core Version

v0.1.0:
- CCD arm IK with reach clamping and two-bone variant
- Dex 3.1 hand-shape retargeting
- Safety gate with blend-to-safe on sustained contact
"""

__version__ = "0.1.0"
__status__ = "Beta"
