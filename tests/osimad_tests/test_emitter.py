import os
import tempfile
import unittest

from numpy import testing

from osimad.data import double_pendulum_osim_path
from osimad.data import leg_contacts_osim_path
from osimad.emitter import BodyForceInput
from osimad.emitter import contact_side
from osimad.emitter import ExportOptions
from osimad.emitter import write_cpp_file
from osimad.io_map import load_io_map


class TestContactSide(unittest.TestCase):

    def test_contact_side(self):
        self.assertEqual(contact_side('R_heel'), 'right')
        self.assertEqual(contact_side('r_toes'), 'right')
        self.assertEqual(contact_side('foot_r'), 'right')
        self.assertEqual(contact_side('foot_R'), 'right')
        self.assertEqual(contact_side('L_heel'), 'left')
        self.assertEqual(contact_side('l_toes'), 'left')
        self.assertEqual(contact_side('foot_l'), 'left')
        self.assertEqual(contact_side('foot_L'), 'left')
        self.assertIsNone(contact_side('contact1'))
        self.assertIsNone(contact_side('heel'))


class TestWriteCppFile(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.output_dir = self._tmp.name

    def tearDown(self):
        self._tmp.cleanup()

    def _read(self, name):
        with open(os.path.join(self.output_dir, name)) as f:
            return f.read()

    def test_double_pendulum(self):
        io = write_cpp_file(double_pendulum_osim_path(), self.output_dir,
                            'F_pendulum',
                            exports=ExportOptions(True, True, True, True))
        self.assertEqual(io.n_coordinates, 2)
        self.assertEqual(io.n_inputs, 6)
        # no contacts, so only torques
        self.assertEqual(io.n_outputs, 2)

        text = self._read('F_pendulum.cpp')
        self.assertIn('constexpr int NIN = 6;', text)
        self.assertIn('constexpr int NR = 2;', text)
        self.assertIn('new OpenSim::PinJoint("pin1"', text)
        self.assertIn('model->addBody(rod2);', text)
        self.assertIn('int main() {', text)

        saved = load_io_map(os.path.join(self.output_dir,
                                         'F_pendulum_IO.mat'))
        self.assertEqual(saved['nCoordinates'], 2)
        self.assertEqual(saved['input']['nInputs'], 6)
        self.assertEqual(saved['output']['nOutputs'], 2)
        self.assertEqual(saved['coordi'], {'q1': 1, 'q2': 2})
        self.assertEqual(saved['input']['Qs'], {'q1': 1, 'q2': 3})
        self.assertEqual(saved['input']['Qdots'], {'q1': 2, 'q2': 4})
        self.assertEqual(saved['input']['Qdotdots'], {'q1': 5, 'q2': 6})
        for key in ('GRFs', 'GRMs', 'separateGRFs', 'contactPowers'):
            self.assertNotIn(key, saved)

    def test_leg_model_outputs(self):
        io = write_cpp_file(
            leg_contacts_osim_path(), self.output_dir, 'F_leg',
            input_3d_body_forces=[
                {'body': 'pelvis', 'point_in_body': [-0.1, 0.3, 0],
                 'name': 'push'}],
            input_3d_body_moments=[
                {'body': 'femur_l', 'name': 'exo',
                 'reference_frame': 'femur_l'}],
            export_3d_positions=[
                {'body': 'femur_r', 'point_in_body': [0, -0.4, 0],
                 'name': 'knee_r'}],
            exports=ExportOptions(True, True, True, True))

        self.assertEqual(io.n_coordinates, 5)
        self.assertEqual(io.n_inputs, 15 + 3 + 3)
        # torques, 1 point, GRFs and GRMs for 2 sides, 3 separate GRFs
        # and 3 contact powers
        self.assertEqual(io.n_outputs, 5 + 3 + 6 + 6 + 9 + 3)
        self.assertEqual(io.input['forces']['push'], [16, 17, 18])
        self.assertEqual(io.input['moments']['exo'], [19, 20, 21])

        text = self._read('F_leg.cpp')
        self.assertIn('constexpr int NR = 32;', text)
        self.assertIn('arg[0][15], arg[0][16], arg[0][17]', text)
        self.assertIn('exo_M = femur_l->expressVectorInGround', text)
        self.assertNotIn('patella', text)
        self.assertNotIn('knee_angle_r_beta', text)
        self.assertIn('new SmoothSphereHalfSpaceForce("contact1"', text)

        saved = load_io_map(os.path.join(self.output_dir, 'F_leg_IO.mat'))
        testing.assert_array_equal(
            saved['output']['position']['knee_r'], [6, 7, 8])
        testing.assert_array_equal(saved['GRFs']['right'], [9, 10, 11])
        testing.assert_array_equal(saved['GRFs']['left'], [12, 13, 14])
        testing.assert_array_equal(saved['GRMs']['right'], [15, 16, 17])
        testing.assert_array_equal(saved['GRMs']['left'], [18, 19, 20])
        testing.assert_array_equal(
            saved['separateGRFs']['contact1'], [27, 28, 29])
        self.assertEqual(saved['contactPowers']['R_heel'], 30)
        self.assertEqual(saved['contactPowers']['contact1'], 32)

    def test_unsided_contact_only_in_separate_outputs(self):
        io = write_cpp_file(leg_contacts_osim_path(), self.output_dir, 'F',
                            exports=ExportOptions(export_grfs=True))
        self.assertEqual(sorted(io.outputs['GRFs']), ['left', 'right'])
        text = self._read('F.cpp')
        grf_r = text.split('Vec3 GRF_r(0);')[1].split('for (int i')[0]
        self.assertIn('GRF_r += GRF_0[1];', grf_r)
        self.assertNotIn('GRF_2[1]', grf_r)

    def test_coordinate_order(self):
        order = ['hip_flexion_r', 'hip_flexion_l', 'pelvis_tilt',
                 'pelvis_tx', 'pelvis_ty']
        io = write_cpp_file(leg_contacts_osim_path(), self.output_dir, 'F',
                            joints_order=['hip_r', 'hip_l', 'ground_pelvis'],
                            coordinates_order=order)
        self.assertEqual(list(io.coordi), order)
        self.assertEqual(io.input['Qs']['hip_flexion_l'], 3)
        self.assertEqual(io.input['Qdotdots']['pelvis_ty'], 15)
        text = self._read('F.cpp')
        self.assertLess(text.index('"hip_r"'), text.index('"ground_pelvis"'))

    def test_coordinate_order_not_following_joints(self):
        order = ['hip_flexion_r', 'hip_flexion_l', 'pelvis_tilt',
                 'pelvis_tx', 'pelvis_ty']
        with self.assertRaisesRegex(ValueError, 'follow the joints order'):
            write_cpp_file(leg_contacts_osim_path(), self.output_dir, 'F',
                           coordinates_order=order)
        self.assertEqual(os.listdir(self.output_dir), [])

    def test_descriptor_errors(self):
        path = leg_contacts_osim_path()
        with self.assertRaisesRegex(ValueError, 'unknown body'):
            write_cpp_file(path, self.output_dir, 'F',
                           export_3d_positions=[
                               {'body': 'tibia_r', 'name': 'p'}])
        with self.assertRaisesRegex(ValueError, 'unknown body'):
            write_cpp_file(path, self.output_dir, 'F',
                           input_3d_body_forces=[
                               BodyForceInput('patella_r', [0, 0, 0], 'f')])
        with self.assertRaisesRegex(ValueError, 'Duplicate'):
            write_cpp_file(path, self.output_dir, 'F',
                           input_3d_body_moments=[
                               {'body': 'pelvis', 'name': 'm'},
                               {'body': 'femur_r', 'name': 'm'}])
        with self.assertRaisesRegex(ValueError, 'reference frame'):
            write_cpp_file(path, self.output_dir, 'F',
                           input_3d_body_moments=[
                               {'body': 'pelvis', 'name': 'm',
                                'reference_frame': 'tibia_l'}])
        with self.assertRaisesRegex(ValueError, '3 components'):
            BodyForceInput('pelvis', [0, 0], 'f')
