"""Compare the generated function against OpenSim's inverse dynamics tool.

The reference torques come from ``opensim-cmd run-tool`` with an
InverseDynamicsTool setup; the generated torques from loading the compiled
library with :func:`casadi.external`. Both are evaluated for one static
pose where every coordinate is 0.05 (rad or m).
"""

import logging
import os

import casadi as ca
from lxml import etree
import numpy as np

from osimad.io_map import IOMap
from osimad.native_build import shared_library_name
from osimad.process import run_command


logger = logging.getLogger(__name__)

DEFAULT_POSE_VALUE = 0.05
DEFAULT_TOLERANCE = 1e-6
TOOL_NAME = 'ID_withOsimAndIDTool'


class VerificationResult(object):
    """Outcome of a verification.

    A failed comparison is reported through ``passed``; it is not an
    error of the build.
    """

    def __init__(self, coordinates, reference, generated, tolerance):
        self.coordinates = list(coordinates)
        self.reference = np.asarray(reference, dtype=np.float64)
        self.generated = np.asarray(generated, dtype=np.float64)
        self.tolerance = tolerance
        if len(self.coordinates):
            self.max_error = float(
                np.max(np.abs(self.reference - self.generated)))
        else:
            self.max_error = 0.0

    @property
    def passed(self):
        return self.max_error < self.tolerance

    def __repr__(self):
        return '<VerificationResult passed={} max_error={:.3g}>'.format(
            self.passed, self.max_error)


def _coordinate_order(io_map):
    if isinstance(io_map, IOMap):
        return list(io_map.coordinate_names), io_map.n_inputs, io_map.input
    coordi = io_map['coordi']
    names = sorted(coordi, key=lambda name: int(coordi[name]))
    return names, int(io_map['input']['nInputs']), io_map['input']


def write_pose_motion(path, coordinates, value=DEFAULT_POSE_VALUE,
                      duration=1.0, n_rows=11):
    """Write a motion file holding one static pose.

    Parameters
    ----------
    path : str
        Destination ``.mot`` file.
    coordinates : list of str
        Coordinate columns.
    value : float
        Value of every coordinate.
    """
    time = np.linspace(0.0, duration, n_rows)
    data = np.full((n_rows, len(coordinates)), value, dtype=np.float64)
    with open(path, 'w') as f:
        f.write('pose\n')
        f.write('version=1\n')
        f.write('nRows={}\n'.format(n_rows))
        f.write('nColumns={}\n'.format(len(coordinates) + 1))
        f.write('inDegrees=no\n')
        f.write('endheader\n')
        f.write('\t'.join(['time'] + list(coordinates)) + '\n')
        for t, row in zip(time, data):
            f.write('\t'.join('%.10f' % v for v in [t] + list(row)) + '\n')
    return path


def write_id_setup(path, model_path, coordinates_file, results_dir,
                   output_file, time_range=(0.0, 1.0)):
    """Write an InverseDynamicsTool setup file."""
    root = etree.Element('OpenSimDocument', Version='40000')
    tool = etree.SubElement(root, 'InverseDynamicsTool', name=TOOL_NAME)
    values = [
        ('results_directory', results_dir),
        ('model_file', os.path.abspath(model_path)),
        ('time_range', '{} {}'.format(*time_range)),
        ('forces_to_exclude', 'Muscles'),
        ('coordinates_file', coordinates_file),
        ('lowpass_cutoff_frequency_for_coordinates', '-1'),
        ('output_gen_force_file', output_file),
    ]
    for tag, text in values:
        etree.SubElement(tool, tag).text = str(text)
    etree.ElementTree(root).write(
        path, pretty_print=True, xml_declaration=True, encoding='UTF-8')
    return path


def read_storage(path):
    """Read an OpenSim ``.sto``/``.mot`` file.

    Returns
    -------
    tuple of (list of str, numpy.ndarray)
        Column labels and the data (one row per time step).
    """
    with open(path, 'r') as f:
        lines = f.read().splitlines()
    for i, line in enumerate(lines):
        if line.strip().lower() == 'endheader':
            break
    else:
        raise ValueError('No endheader line in {}'.format(path))
    headers = lines[i + 1].split()
    rows = [line.split() for line in lines[i + 2:] if line.strip()]
    data = np.array(rows, dtype=np.float64).reshape(-1, len(headers))
    return headers, data


def _reference_torques(headers, data, coordinates):
    row = data[0]
    torques = np.zeros(len(coordinates))
    for i, name in enumerate(coordinates):
        for suffix in ('_moment', '_force'):
            if name + suffix in headers:
                torques[i] = row[headers.index(name + suffix)]
                break
        else:
            raise ValueError(
                'No inverse dynamics result for coordinate {}'.format(name))
    return torques


def evaluate_external_function(library_path, n_inputs, positions,
                               value=DEFAULT_POSE_VALUE):
    """Evaluate the compiled function for a static pose.

    Parameters
    ----------
    library_path : str
        Path to the shared library.
    n_inputs : int
        Length of the input vector.
    positions : list of int
        1-based indices of the coordinate positions in the input vector.
    """
    F = ca.external('F', library_path)
    arg = np.zeros((n_inputs, 1))
    for index in positions:
        arg[int(index) - 1, 0] = value
    return np.asarray(F(arg).full()).flatten()


def verify_inverse_dynamics(model_path, output_dir, output_filename, io_map,
                            verbose=False, tolerance=DEFAULT_TOLERANCE,
                            opensim_cmd='opensim-cmd', check=True):
    """Verify the generated torques against the OpenSim ID tool.

    Parameters
    ----------
    model_path : str
        OpenSim model the function was generated from.
    output_dir : str
        Directory holding the compiled function.
    output_filename : str
        Base name of the compiled function.
    io_map : osimad.io_map.IOMap or dict
        Index map of the function.
    verbose : bool
        Stream the output of the ID tool to the console.
    tolerance : float
        Largest accepted absolute torque difference.
    opensim_cmd : str
        Command running OpenSim tools.

    Returns
    -------
    VerificationResult
        Comparison of both torque vectors.

    Raises
    ------
    osimad.errors.VerificationToolError
        If the ID tool fails.
    """
    coordinates, n_inputs, inputs = _coordinate_order(io_map)
    library_path = os.path.join(output_dir,
                                shared_library_name(output_filename))
    if not os.path.isfile(library_path):
        raise FileNotFoundError(
            'External function not found: {}'.format(library_path))

    motion_path = os.path.join(output_dir, TOOL_NAME + '_pose.mot')
    setup_path = os.path.join(output_dir, 'Setup_InverseDynamics.xml')
    sto_name = TOOL_NAME + '.sto'
    sto_path = os.path.join(output_dir, sto_name)
    try:
        write_pose_motion(motion_path, coordinates)
        write_id_setup(setup_path, model_path, motion_path,
                       os.path.abspath(output_dir), sto_name)
        run_command([opensim_cmd, 'run-tool', setup_path], cwd=output_dir,
                    verbose=verbose, check=check, stage='verify')
        headers, data = read_storage(sto_path)
        reference = _reference_torques(headers, data, coordinates)
    finally:
        for path in (motion_path, setup_path, sto_path):
            if os.path.exists(path):
                os.remove(path)

    positions = [inputs['Qs'][name] for name in coordinates]
    generated = evaluate_external_function(
        library_path, n_inputs, positions)[:len(coordinates)]

    result = VerificationResult(coordinates, reference, generated, tolerance)
    if result.passed:
        logger.info('Verification torque generation: success')
    else:
        worst = coordinates[int(np.argmax(np.abs(
            result.reference - result.generated)))]
        logger.warning('Verification torque generation: error F vs ID tool '
                       '%g (largest for %s)', result.max_error, worst)
    return result
