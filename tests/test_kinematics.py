"""
Unit tests for serial chain kinematics and the G1 / Dex 3.1 profiles.
"""

import numpy as np
import unittest

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from scipy.spatial.transform import Rotation

from handteleop.core.hand_frame import Handedness
from handteleop.core.retargeting.kinematics import (
    Chain,
    JointLimits,
    KinematicJoint,
    axis_angle_matrix,
)
from handteleop.core.retargeting.robot_profiles import (
    ARM_CHAIN,
    DEG,
    G1_FOREARM_LENGTH,
    G1_UPPER_ARM_LENGTH,
    G1_WRIST_LENGTH,
    HAND_LINK,
    build_dex3_hand_joints,
    build_g1_arm_chain,
    hand_joint_name,
    joint_table,
)


class TestKinematicJoint(unittest.TestCase):

    def test_axis_is_normalized(self):
        joint = KinematicJoint('j', axis=[0.0, 0.0, 2.0])
        np.testing.assert_allclose(joint.axis, [0.0, 0.0, 1.0])

    def test_zero_axis_rejected(self):
        with self.assertRaises(ValueError):
            KinematicJoint('j', axis=[0.0, 0.0, 0.0])

    def test_inverted_limits_rejected(self):
        with self.assertRaises(ValueError):
            KinematicJoint('j', axis=[1, 0, 0], lower=1.0, upper=-1.0)

    def test_set_angle_clamps(self):
        joint = KinematicJoint('j', axis=[1, 0, 0], lower=-0.5, upper=0.5)
        self.assertEqual(joint.set_angle(2.0), 0.5)
        self.assertEqual(joint.set_angle(-2.0), -0.5)

    def test_set_angle_ignores_non_finite(self):
        joint = KinematicJoint('j', axis=[1, 0, 0], angle=0.2)
        joint.set_angle(np.nan)
        self.assertEqual(joint.angle, 0.2)
        joint.set_angle(np.inf)
        self.assertEqual(joint.angle, 0.2)

    def test_child_link_from_name(self):
        joint = KinematicJoint('left_elbow_joint', axis=[0, 1, 0])
        self.assertEqual(joint.child_link, 'left_elbow_link')

    def test_tighten_never_widens(self):
        joint = KinematicJoint('j', axis=[1, 0, 0], lower=-1.0, upper=1.0, angle=-0.9, rest=0.9)

        self.assertTrue(joint.tighten(lower=-0.2, upper=2.0))
        self.assertEqual(joint.limit, (-0.2, 1.0))
        self.assertEqual(joint.angle, -0.2)

        self.assertFalse(joint.tighten(lower=-3.0))
        self.assertEqual(joint.limit, (-0.2, 1.0))

    def test_tighten_rejects_empty_range(self):
        joint = KinematicJoint('j', axis=[1, 0, 0], lower=-1.0, upper=1.0)
        self.assertFalse(joint.tighten(lower=0.5, upper=0.2))
        self.assertEqual(joint.limit, (-1.0, 1.0))


class TestAxisAngleMatrix(unittest.TestCase):

    def test_matches_scipy(self):
        axis = np.array([1.0, 2.0, -0.5])
        axis /= np.linalg.norm(axis)
        for angle in (-2.0, 0.0, 0.7, np.pi):
            expected = Rotation.from_rotvec(axis * angle).as_matrix()
            np.testing.assert_allclose(axis_angle_matrix(axis, angle), expected, atol=1e-12)


class TestJointLimits(unittest.TestCase):

    def test_clamp_and_validity(self):
        limits = JointLimits(lower=np.array([-1.0, 0.0]), upper=np.array([1.0, 2.0]))
        np.testing.assert_array_equal(limits.clamp(np.array([3.0, -1.0])), [1.0, 0.0])
        self.assertTrue(limits.is_valid(np.array([0.0, 1.0])))
        self.assertFalse(limits.is_valid(np.array([0.0, 2.5])))


class TestChain(unittest.TestCase):

    def setUp(self):
        self.chain = build_g1_arm_chain(Handedness.LEFT, start_at_rest=False)

    def test_empty_chain_rejected(self):
        with self.assertRaises(ValueError):
            Chain([])

    def test_names_follow_arm_chain(self):
        self.assertEqual(self.chain.names, ARM_CHAIN[Handedness.LEFT])
        self.assertEqual(len(self.chain), 7)

    def test_reach(self):
        self.assertAlmostEqual(self.chain.reach, G1_UPPER_ARM_LENGTH + G1_FOREARM_LENGTH)

    def test_palm_extends_reach(self):
        chain = build_g1_arm_chain(Handedness.LEFT, include_palm=True, start_at_rest=False)
        self.assertAlmostEqual(chain.reach, G1_UPPER_ARM_LENGTH + G1_FOREARM_LENGTH + G1_WRIST_LENGTH)

        q = np.zeros(7)
        q[3] = np.pi / 2
        pose = chain.forward_kinematics(q)
        expected = chain.root_position() + [G1_FOREARM_LENGTH + G1_WRIST_LENGTH, 0.0, -G1_UPPER_ARM_LENGTH]
        np.testing.assert_allclose(pose.ee_position, expected, atol=1e-12)

    def test_zero_pose_hangs_down(self):
        pose = self.chain.forward_kinematics(np.zeros(7))
        root = self.chain.root_position()

        np.testing.assert_allclose(pose.ee_position, root + [0.0, 0.0, -self.chain.reach], atol=1e-12)
        np.testing.assert_allclose(pose.ee_rotation, np.eye(3), atol=1e-12)

    def test_elbow_flexion_brings_hand_forward(self):
        q = np.zeros(7)
        q[3] = np.pi / 2
        pose = self.chain.forward_kinematics(q)
        root = self.chain.root_position()

        expected = root + [G1_FOREARM_LENGTH, 0.0, -G1_UPPER_ARM_LENGTH]
        np.testing.assert_allclose(pose.ee_position, expected, atol=1e-12)

    def test_joint_pivots(self):
        pose = self.chain.forward_kinematics(np.zeros(7))
        root = self.chain.root_position()

        np.testing.assert_allclose(pose.joint_positions[0], root)
        np.testing.assert_allclose(pose.joint_positions[3], root + [0.0, 0.0, -G1_UPPER_ARM_LENGTH])
        np.testing.assert_allclose(pose.joint_positions[4], root + [0.0, 0.0, -self.chain.reach])

    def test_world_axes_follow_parents(self):
        q = np.zeros(7)
        q[2] = np.pi / 2   # shoulder yaw turns the elbow axis
        pose = self.chain.forward_kinematics(q)
        # Elbow axis (0, -1, 0) rotated 90 degrees about z
        np.testing.assert_allclose(pose.joint_axes[3], [1.0, 0.0, 0.0], atol=1e-12)

    def test_fk_uses_current_angles_by_default(self):
        q = self.chain.rest_angles
        self.chain.set_angles(q)
        np.testing.assert_allclose(
            self.chain.forward_kinematics().ee_position,
            self.chain.forward_kinematics(q).ee_position,
        )

    def test_set_angles_clamps_each_joint(self):
        committed = self.chain.set_angles(np.full(7, 10.0))
        limits = self.chain.joint_limits
        np.testing.assert_allclose(committed, limits.upper)

    def test_base_orientation(self):
        quat = Rotation.from_euler('z', 90, degrees=True).as_quat()
        chain = build_g1_arm_chain(Handedness.LEFT, base_position=np.zeros(3), base_orientation=quat)
        q = np.zeros(7)
        q[3] = np.pi / 2
        pose = chain.forward_kinematics(q)
        # Forward (+x) in the chain base is +y in the world
        np.testing.assert_allclose(pose.ee_position, [0.0, G1_FOREARM_LENGTH, -G1_UPPER_ARM_LENGTH], atol=1e-12)

    def test_link_poses(self):
        poses = self.chain.link_poses()

        self.assertIn('left_shoulder_pitch_link', poses)
        self.assertIn('left_wrist_yaw_link', poses)
        self.assertIn(HAND_LINK[Handedness.LEFT], poses)
        position, quat = poses[HAND_LINK[Handedness.LEFT]]
        np.testing.assert_allclose(position, self.chain.forward_kinematics().ee_position)
        self.assertAlmostEqual(np.linalg.norm(quat), 1.0)

    def test_copy_is_independent(self):
        other = self.chain.copy()
        other.set_angles(np.full(7, 0.3))
        self.assertFalse(np.allclose(self.chain.angles, other.angles))
        np.testing.assert_allclose(other.root_position(), self.chain.root_position())

    def test_joint_lookup(self):
        self.assertEqual(self.chain.joint('left_elbow_joint').name, 'left_elbow_joint')
        with self.assertRaises(KeyError):
            self.chain.joint('nope')


class TestG1Profile(unittest.TestCase):

    def test_sides_are_mirrored(self):
        left = build_g1_arm_chain(Handedness.LEFT)
        right = build_g1_arm_chain(Handedness.RIGHT)

        self.assertGreater(left.root_position()[1], 0.0)
        self.assertAlmostEqual(left.root_position()[1], -right.root_position()[1])

        l_roll = left.joint('left_shoulder_roll_joint')
        r_roll = right.joint('right_shoulder_roll_joint')
        self.assertAlmostEqual(l_roll.lower, -r_roll.upper)
        self.assertAlmostEqual(l_roll.rest, -r_roll.rest)

    def test_starts_at_rest(self):
        chain = build_g1_arm_chain(Handedness.RIGHT)
        np.testing.assert_allclose(chain.angles, chain.rest_angles)
        self.assertAlmostEqual(chain.joint('right_elbow_joint').angle, 60 * DEG)

    def test_rest_within_limits(self):
        for side in Handedness:
            chain = build_g1_arm_chain(side)
            self.assertTrue(chain.joint_limits.is_valid(chain.rest_angles))


class TestDex3Profile(unittest.TestCase):

    def test_seven_joints_per_hand(self):
        for side in Handedness:
            joints = build_dex3_hand_joints(side)
            self.assertEqual(len(joints), 7)
            self.assertEqual(joints[0].name, hand_joint_name(side, 'thumb_0'))

    def test_right_hand_flexion_mirrored(self):
        left = joint_table(build_dex3_hand_joints(Handedness.LEFT))
        right = joint_table(build_dex3_hand_joints(Handedness.RIGHT))

        l_index = left['left_hand_index_0_joint']
        r_index = right['right_hand_index_0_joint']
        self.assertAlmostEqual(l_index.upper, 90 * DEG)
        self.assertAlmostEqual(r_index.lower, -90 * DEG)
        self.assertAlmostEqual(r_index.upper, 0.0)

        # Thumb abduction is symmetric and not mirrored
        self.assertEqual(left['left_hand_thumb_0_joint'].limit, right['right_hand_thumb_0_joint'].limit)


if __name__ == "__main__":
    unittest.main()
