"""Index map of the generated function's input and output vectors.

All indices are 1-based, the convention of the ``_IO.mat`` files consumed
by MATLAB. For coordinate ``i`` of ``N``::

    position      = 2 * i - 1
    velocity      = 2 * i
    acceleration  = i + 2 * N

Subtract 1 to index a numpy array.
"""

import collections
import logging

import scipy.io


logger = logging.getLogger(__name__)


def position_index(i):
    return 2 * i - 1


def velocity_index(i):
    return 2 * i


def acceleration_index(i, n_coordinates):
    return i + 2 * n_coordinates


class IOMap(object):
    """Map from semantic names to positions in the flat function vectors.

    The map is filled by :func:`osimad.emitter.write_cpp_file` in the same
    order the C++ source writes its inputs and outputs.

    Parameters
    ----------
    coordinate_names : list of str
        Coordinates in the order of the function's state vector.
    """

    def __init__(self, coordinate_names):
        self.coordinate_names = list(coordinate_names)
        if len(set(self.coordinate_names)) != len(self.coordinate_names):
            raise ValueError('Coordinate names must be unique')
        n = len(self.coordinate_names)

        self.coordi = collections.OrderedDict(
            (name, i) for i, name in enumerate(self.coordinate_names, 1))
        self.input = collections.OrderedDict()
        self.input['Qs'] = collections.OrderedDict(
            (name, position_index(i)) for name, i in self.coordi.items())
        self.input['Qdots'] = collections.OrderedDict(
            (name, velocity_index(i)) for name, i in self.coordi.items())
        self.input['Qdotdots'] = collections.OrderedDict(
            (name, acceleration_index(i, n))
            for name, i in self.coordi.items())
        self.input['forces'] = collections.OrderedDict()
        self.input['moments'] = collections.OrderedDict()
        self._n_inputs = 3 * n

        # joint torques come first in the output vector
        self.outputs = collections.OrderedDict()
        self._n_outputs = n

    @property
    def n_coordinates(self):
        return len(self.coordinate_names)

    @property
    def n_inputs(self):
        return self._n_inputs

    @property
    def n_outputs(self):
        return self._n_outputs

    def _take_inputs(self, count):
        start = self._n_inputs + 1
        self._n_inputs += count
        return list(range(start, start + count))

    def _take_outputs(self, count):
        start = self._n_outputs + 1
        self._n_outputs += count
        return list(range(start, start + count))

    def add_input(self, group, name, size=3):
        """Append ``size`` inputs to ``group`` (``'forces'``/``'moments'``)."""
        if name in self.input[group]:
            raise ValueError(
                'Duplicate {} input: {}'.format(group[:-1], name))
        indices = self._take_inputs(size)
        self.input[group][name] = indices
        return indices

    def add_output(self, group, name, size=3):
        """Append ``size`` outputs named ``name`` to ``group``."""
        entries = self.outputs.setdefault(group, collections.OrderedDict())
        if name in entries:
            raise ValueError('Duplicate {} output: {}'.format(group, name))
        indices = self._take_outputs(size)
        entries[name] = indices if size > 1 else indices[0]
        return indices

    def torque_index(self, coordinate_name):
        return self.coordi[coordinate_name]

    def to_dict(self):
        """Return the map as nested dictionaries.

        Empty groups are left out, so a function without ground reaction
        force outputs has no ``'GRFs'`` key.
        """
        io = collections.OrderedDict()
        io['nCoordinates'] = self.n_coordinates
        io['coordi'] = dict(self.coordi)
        io['input'] = collections.OrderedDict()
        io['input']['nInputs'] = self.n_inputs
        for key, value in self.input.items():
            if value:
                io['input'][key] = dict(value)
        io['output'] = collections.OrderedDict()
        io['output']['nOutputs'] = self.n_outputs
        for group, entries in self.outputs.items():
            if not entries:
                continue
            if group in ('position', 'velocity'):
                io['output'][group] = dict(entries)
            else:
                io[group] = dict(entries)
        return io


def save_io_map(io_map, path):
    """Write ``io_map`` to a MATLAB file holding one struct named ``IO``.

    Parameters
    ----------
    io_map : IOMap or dict
        Map to save.
    path : str
        Destination, conventionally ``<output_dir>/<name>_IO.mat``.
    """
    if isinstance(io_map, IOMap):
        io_map = io_map.to_dict()
    scipy.io.savemat(path, {'IO': io_map}, long_field_names=True)
    logger.debug('Saved index map to %s', path)


def load_io_map(path):
    """Read the ``IO`` struct written by :func:`save_io_map`.

    Returns
    -------
    dict
        Nested dictionaries; scalars become numbers and index lists
        become 1-d numpy arrays.
    """
    data = scipy.io.loadmat(path, simplify_cells=True)
    if 'IO' not in data:
        raise ValueError('No IO struct in {}'.format(path))
    return data['IO']
