import os
import tempfile
import unittest

from numpy import testing

from osimad.io_map import acceleration_index
from osimad.io_map import IOMap
from osimad.io_map import load_io_map
from osimad.io_map import position_index
from osimad.io_map import save_io_map
from osimad.io_map import velocity_index


class TestIOMap(unittest.TestCase):

    def test_index_helpers(self):
        self.assertEqual(position_index(1), 1)
        self.assertEqual(velocity_index(1), 2)
        self.assertEqual(position_index(3), 5)
        self.assertEqual(acceleration_index(1, 4), 9)
        self.assertEqual(acceleration_index(4, 4), 12)

    def test_state_inputs(self):
        io = IOMap(['a', 'b', 'c'])
        self.assertEqual(io.n_coordinates, 3)
        self.assertEqual(io.n_inputs, 9)
        self.assertEqual(io.n_outputs, 3)
        self.assertEqual(list(io.input['Qs'].values()), [1, 3, 5])
        self.assertEqual(list(io.input['Qdots'].values()), [2, 4, 6])
        self.assertEqual(list(io.input['Qdotdots'].values()), [7, 8, 9])
        self.assertEqual(io.torque_index('c'), 3)

    def test_added_inputs_and_outputs(self):
        io = IOMap(['a', 'b'])
        self.assertEqual(io.add_input('forces', 'f'), [7, 8, 9])
        self.assertEqual(io.add_input('moments', 'm'), [10, 11, 12])
        self.assertEqual(io.n_inputs, 12)
        self.assertEqual(io.add_output('position', 'p'), [3, 4, 5])
        self.assertEqual(io.add_output('contactPowers', 'c', 1), [6])
        self.assertEqual(io.outputs['contactPowers']['c'], 6)
        self.assertEqual(io.n_outputs, 6)
        with self.assertRaises(ValueError):
            io.add_input('forces', 'f')
        with self.assertRaises(ValueError):
            io.add_output('position', 'p')

    def test_duplicate_coordinates(self):
        with self.assertRaises(ValueError):
            IOMap(['a', 'a'])

    def test_to_dict_layout(self):
        io = IOMap(['a'])
        io.add_output('velocity', 'v')
        io.add_output('GRFs', 'right')
        d = io.to_dict()
        self.assertEqual(d['nCoordinates'], 1)
        self.assertEqual(d['input']['nInputs'], 3)
        self.assertNotIn('forces', d['input'])
        self.assertEqual(d['output']['nOutputs'], 7)
        self.assertEqual(d['output']['velocity'], {'v': [2, 3, 4]})
        self.assertEqual(d['GRFs'], {'right': [5, 6, 7]})
        self.assertNotIn('GRMs', d)

    def test_save_and_load(self):
        io = IOMap(['hip_flexion_r', 'knee_angle_r'])
        io.add_input('forces', 'push')
        io.add_output('separateGRFs', 'R_heel')
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, 'F_IO.mat')
            save_io_map(io, path)
            loaded = load_io_map(path)
        self.assertEqual(loaded['input']['nInputs'], 9)
        self.assertEqual(loaded['input']['Qdotdots']['knee_angle_r'], 6)
        testing.assert_array_equal(loaded['input']['forces']['push'],
                                   [7, 8, 9])
        testing.assert_array_equal(loaded['separateGRFs']['R_heel'],
                                   [3, 4, 5])
