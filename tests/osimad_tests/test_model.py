import os
import tempfile
import unittest

import numpy as np
from numpy import testing

from osimad.data import double_pendulum_osim_path
from osimad.data import leg_contacts_osim_path
from osimad.errors import ModelFileError
from osimad.model import is_patella_coordinate
from osimad.model import is_patella_joint
from osimad.model import load_osim_model
from osimad.model import order_coordinates
from osimad.model import order_joints


class TestLoadOsimModel(unittest.TestCase):

    def test_double_pendulum(self):
        model = load_osim_model(double_pendulum_osim_path())
        self.assertEqual(model.name, 'double_pendulum')
        self.assertEqual(model.body_names, ['rod1', 'rod2'])
        self.assertEqual([c.name for c in model.coordinates], ['q1', 'q2'])
        self.assertEqual(model.contacts, [])
        testing.assert_allclose(model.gravity, [0, -9.80665, 0])

        pin1, pin2 = model.joints
        self.assertEqual(pin1.type, 'PinJoint')
        self.assertEqual(pin1.parent_frame, 'ground')
        self.assertEqual(pin1.child_frame, 'rod1')
        self.assertEqual(pin2.parent_frame, 'rod1')
        testing.assert_allclose(pin2.parent_offset[0], [0, -1, 0])

        rod1 = model.get_body('rod1')
        self.assertEqual(rod1.mass, 1.0)
        testing.assert_allclose(rod1.mass_center, [0, -0.5, 0])
        self.assertEqual(len(rod1.inertia), 6)
        with self.assertRaises(KeyError):
            model.get_body('rod3')

    def test_leg_model(self):
        model = load_osim_model(leg_contacts_osim_path())
        self.assertIn('patella_r', model.body_names)
        self.assertNotIn(
            'patella_r', [b.name for b in model.dynamic_bodies()])
        self.assertEqual(
            [j.name for j in model.dynamic_joints()],
            ['ground_pelvis', 'hip_r', 'hip_l'])
        self.assertEqual(
            [c.name for c in model.dynamic_coordinates()],
            ['pelvis_tilt', 'pelvis_tx', 'pelvis_ty',
             'hip_flexion_r', 'hip_flexion_l'])

        ground_pelvis = model.joints[0]
        self.assertEqual(ground_pelvis.type, 'CustomJoint')
        self.assertEqual(len(ground_pelvis.spatial_transform), 6)
        rotation1 = ground_pelvis.spatial_transform[0]
        self.assertEqual(rotation1.coordinates, ['pelvis_tilt'])
        self.assertEqual(rotation1.function.kind, 'LinearFunction')
        testing.assert_allclose(rotation1.function.coefficients, [1, 0])
        rotation2 = ground_pelvis.spatial_transform[1]
        self.assertEqual(rotation2.coordinates, [])
        self.assertEqual(rotation2.function.kind, 'Constant')

        patellofemoral = model.joints[3]
        translation1 = patellofemoral.spatial_transform[3]
        self.assertEqual(translation1.function.kind, 'PolynomialFunction')
        self.assertAlmostEqual(translation1.function.scale, 1.02)
        testing.assert_allclose(translation1.function.coefficients,
                                [0.0011, -0.0032, 0.0525])

    def test_contacts(self):
        model = load_osim_model(leg_contacts_osim_path())
        self.assertEqual([c.name for c in model.contacts],
                         ['R_heel', 'foot_l', 'contact1'])
        heel = model.contacts[0]
        self.assertEqual(heel.sphere.frame, 'femur_r')
        self.assertAlmostEqual(heel.sphere.radius, 0.035)
        self.assertEqual(heel.half_space.frame, 'ground')
        testing.assert_allclose(heel.half_space.orientation,
                                [0, 0, -np.pi / 2])
        self.assertEqual(heel.parameters['stiffness'], 1e6)
        self.assertEqual(len(heel.parameters), 9)
        self.assertNotIn('hertz_smoothing', model.contacts[2].parameters)

    def test_patella_helpers(self):
        self.assertTrue(is_patella_joint('patellofemoral_r'))
        self.assertFalse(is_patella_joint('knee_r'))
        self.assertTrue(is_patella_coordinate('knee_angle_l_beta'))
        self.assertFalse(is_patella_coordinate('knee_angle_l'))


class TestModelErrors(unittest.TestCase):

    def _write(self, content):
        f = tempfile.NamedTemporaryFile(
            mode='w', suffix='.osim', delete=False)
        f.write(content)
        f.close()
        self.addCleanup(os.unlink, f.name)
        return f.name

    def test_missing_file(self):
        with self.assertRaises(ModelFileError):
            load_osim_model('/nonexistent/model.osim')
        # also catchable as FileNotFoundError
        with self.assertRaises(FileNotFoundError):
            load_osim_model('/nonexistent/model.osim')

    def test_invalid_xml(self):
        path = self._write('<OpenSimDocument><Model>')
        with self.assertRaises(ModelFileError):
            load_osim_model(path)

    def test_no_model(self):
        path = self._write('<OpenSimDocument Version="40000"/>')
        with self.assertRaises(ModelFileError):
            load_osim_model(path)

    def test_unsupported_joint(self):
        path = self._write("""<OpenSimDocument Version="40000">
<Model name="m">
  <BodySet><objects>
    <Body name="b"><mass>1</mass></Body>
  </objects></BodySet>
  <JointSet><objects>
    <BallJoint name="ball">
      <socket_parent_frame>/ground</socket_parent_frame>
      <socket_child_frame>/bodyset/b</socket_child_frame>
    </BallJoint>
  </objects></JointSet>
</Model>
</OpenSimDocument>""")
        with self.assertRaisesRegex(ModelFileError, 'BallJoint'):
            load_osim_model(path)

    def test_unknown_frame(self):
        path = self._write("""<OpenSimDocument Version="40000">
<Model name="m">
  <BodySet><objects>
    <Body name="b"><mass>1</mass></Body>
  </objects></BodySet>
  <JointSet><objects>
    <WeldJoint name="weld">
      <socket_parent_frame>/ground</socket_parent_frame>
      <socket_child_frame>/bodyset/c</socket_child_frame>
    </WeldJoint>
  </objects></JointSet>
</Model>
</OpenSimDocument>""")
        with self.assertRaisesRegex(ModelFileError, "unknown frame 'c'"):
            load_osim_model(path)


class TestOrdering(unittest.TestCase):

    def setUp(self):
        self.model = load_osim_model(leg_contacts_osim_path())

    def test_default_order(self):
        joints = order_joints(self.model)
        self.assertEqual([j.name for j in joints],
                         ['ground_pelvis', 'hip_r', 'hip_l'])
        coordinates = order_coordinates(self.model)
        self.assertEqual(coordinates[-1].name, 'hip_flexion_l')

    def test_joint_order_drives_coordinates(self):
        joints = order_joints(self.model, ['hip_l', 'hip_r',
                                           'ground_pelvis'])
        coordinates = order_coordinates(self.model, None, joints)
        self.assertEqual(
            [c.name for c in coordinates],
            ['hip_flexion_l', 'hip_flexion_r',
             'pelvis_tilt', 'pelvis_tx', 'pelvis_ty'])

    def test_custom_coordinate_order(self):
        joints = order_joints(self.model, ['hip_l', 'hip_r',
                                           'ground_pelvis'])
        order = ['hip_flexion_l', 'hip_flexion_r',
                 'pelvis_tilt', 'pelvis_tx', 'pelvis_ty']
        coordinates = order_coordinates(self.model, order, joints)
        self.assertEqual([c.name for c in coordinates], order)

    def test_coordinate_order_must_follow_joints(self):
        order = ['hip_flexion_r', 'hip_flexion_l', 'pelvis_ty',
                 'pelvis_tx', 'pelvis_tilt']
        with self.assertRaisesRegex(ValueError, 'follow the joints order'):
            order_coordinates(self.model, order)
        joints = order_joints(self.model, ['hip_r', 'hip_l',
                                           'ground_pelvis'])
        with self.assertRaisesRegex(ValueError, 'follow the joints order'):
            order_coordinates(
                self.model, ['pelvis_tilt', 'pelvis_tx', 'pelvis_ty',
                             'hip_flexion_r', 'hip_flexion_l'], joints)

    def test_invalid_orders(self):
        with self.assertRaisesRegex(ValueError, 'Unknown joints'):
            order_joints(self.model, ['hip_r', 'hip_l', 'knee_r'])
        with self.assertRaisesRegex(ValueError, 'missing'):
            order_joints(self.model, ['hip_r', 'hip_l'])
        with self.assertRaisesRegex(ValueError, 'Duplicate'):
            order_coordinates(
                self.model, ['pelvis_tilt', 'pelvis_tilt', 'pelvis_tx',
                             'pelvis_ty', 'hip_flexion_r', 'hip_flexion_l'])
        # the patella coordinate cannot be ordered
        with self.assertRaisesRegex(ValueError, 'Unknown coordinates'):
            order_coordinates(
                self.model, ['knee_angle_r_beta', 'pelvis_tilt', 'pelvis_tx',
                             'pelvis_ty', 'hip_flexion_r', 'hip_flexion_l'])
