"""Read the parts of an OpenSim model needed to rebuild it in C++.

Only OpenSim 4 documents are supported. The model is parsed with lxml and
returned as plain Python objects; no OpenSim installation is required.

Example
-------
>>> from osimad.data import double_pendulum_osim_path
>>> from osimad.model import load_osim_model
>>> model = load_osim_model(double_pendulum_osim_path())
>>> [c.name for c in model.coordinates]
['q1', 'q2']
"""

import logging
import os

from lxml import etree
import numpy as np

from osimad.errors import ModelFileError


logger = logging.getLogger(__name__)

PATELLA_BODIES = ('patella_l', 'patella_r')
PATELLA_COORDINATES = ('knee_angle_l_beta', 'knee_angle_r_beta')

SUPPORTED_JOINTS = ('CustomJoint', 'PinJoint', 'WeldJoint')
SUPPORTED_FUNCTIONS = ('LinearFunction', 'Constant', 'PolynomialFunction',
                       'MultiplierFunction')
TRANSFORM_AXES = ('rotation1', 'rotation2', 'rotation3',
                  'translation1', 'translation2', 'translation3')


def is_patella_body(name):
    return name in PATELLA_BODIES


def is_patella_joint(name):
    return 'patel' in name


def is_patella_coordinate(name):
    return name in PATELLA_COORDINATES


class Body(object):

    def __init__(self, name, mass, mass_center, inertia):
        self.name = name
        self.mass = mass
        self.mass_center = np.asarray(mass_center, dtype=np.float64)
        self.inertia = np.asarray(inertia, dtype=np.float64)

    def __repr__(self):
        return '<Body {} mass={}>'.format(self.name, self.mass)


class Coordinate(object):

    def __init__(self, name, joint, default_value=0.0):
        self.name = name
        self.joint = joint
        self.default_value = default_value

    def __repr__(self):
        return '<Coordinate {} ({})>'.format(self.name, self.joint)


class Function(object):
    """Function of a transform axis.

    Parameters
    ----------
    kind : str
        ``'LinearFunction'``, ``'Constant'`` or ``'PolynomialFunction'``.
    coefficients : numpy.ndarray
        Slope and intercept, the constant value, or the polynomial
        coefficients (highest order first).
    scale : float, optional
        Scale of an enclosing ``MultiplierFunction``.
    """

    def __init__(self, kind, coefficients, scale=None):
        self.kind = kind
        self.coefficients = np.asarray(coefficients, dtype=np.float64)
        self.scale = scale


class TransformAxis(object):

    def __init__(self, name, axis, coordinates, function):
        self.name = name
        self.axis = np.asarray(axis, dtype=np.float64)
        self.coordinates = list(coordinates)
        self.function = function


class Joint(object):

    def __init__(self, name, joint_type, parent_frame, child_frame,
                 parent_offset, child_offset, coordinates,
                 spatial_transform=None):
        self.name = name
        self.type = joint_type
        self.parent_frame = parent_frame
        self.child_frame = child_frame
        # (translation, orientation) pairs
        self.parent_offset = parent_offset
        self.child_offset = child_offset
        self.coordinates = list(coordinates)
        self.spatial_transform = spatial_transform or []

    def __repr__(self):
        return '<{} {}: {} -> {}>'.format(
            self.type, self.name, self.parent_frame, self.child_frame)


class ContactSphere(object):

    def __init__(self, name, frame, location, radius):
        self.name = name
        self.frame = frame
        self.location = np.asarray(location, dtype=np.float64)
        self.radius = radius


class ContactHalfSpace(object):

    def __init__(self, name, frame, location, orientation):
        self.name = name
        self.frame = frame
        self.location = np.asarray(location, dtype=np.float64)
        self.orientation = np.asarray(orientation, dtype=np.float64)


CONTACT_PARAMETERS = ('stiffness', 'dissipation', 'static_friction',
                      'dynamic_friction', 'viscous_friction',
                      'transition_velocity', 'constant_contact_force',
                      'hertz_smoothing', 'hunt_crossley_smoothing')


class SmoothSphereHalfSpaceForce(object):

    def __init__(self, name, sphere, half_space, parameters):
        self.name = name
        self.sphere = sphere
        self.half_space = half_space
        self.parameters = dict(parameters)

    def __repr__(self):
        return '<SmoothSphereHalfSpaceForce {} on {}>'.format(
            self.name, self.sphere.frame)


class OsimModel(object):
    """Musculoskeletal model read from an ``.osim`` file.

    ``bodies``, ``joints`` and ``coordinates`` are in file order and
    include the patella; use :meth:`dynamic_bodies`,
    :meth:`dynamic_joints` and :meth:`dynamic_coordinates` to get the
    elements that contribute to inverse dynamics.
    """

    def __init__(self, name, gravity, bodies, joints, contacts,
                 path=None):
        self.name = name
        self.gravity = np.asarray(gravity, dtype=np.float64)
        self.bodies = list(bodies)
        self.joints = list(joints)
        self.contacts = list(contacts)
        self.path = path

    @property
    def coordinates(self):
        return [c for joint in self.joints for c in joint.coordinates]

    @property
    def body_names(self):
        return [b.name for b in self.bodies]

    def dynamic_bodies(self):
        return [b for b in self.bodies if not is_patella_body(b.name)]

    def dynamic_joints(self):
        return [j for j in self.joints if not is_patella_joint(j.name)]

    def dynamic_coordinates(self):
        return [c for joint in self.dynamic_joints()
                for c in joint.coordinates
                if not is_patella_coordinate(c.name)]

    def get_body(self, name):
        for body in self.bodies:
            if body.name == name:
                return body
        raise KeyError(name)

    def __repr__(self):
        return '<OsimModel {} bodies={} joints={} contacts={}>'.format(
            self.name, len(self.bodies), len(self.joints),
            len(self.contacts))


def _text(elem, tag, default=None):
    child = elem.find(tag)
    if child is None or child.text is None:
        return default
    return child.text.strip()


def _floats(elem, tag, default=None):
    text = _text(elem, tag)
    if text is None:
        if default is None:
            raise ModelFileError(
                "<{}> is missing in <{} name='{}'>".format(
                    tag, elem.tag, elem.get('name')))
        return np.asarray(default, dtype=np.float64)
    try:
        return np.array([float(v) for v in text.split()], dtype=np.float64)
    except ValueError:
        raise ModelFileError(
            "<{}> of <{} name='{}'> is not numeric: {!r}".format(
                tag, elem.tag, elem.get('name'), text))


def _float(elem, tag, default=None):
    values = _floats(elem, tag, None if default is None else [default])
    return float(values[0])


def _frame_name(socket_path):
    # '/bodyset/pelvis', '../pelvis' and 'pelvis' all name the same frame
    return socket_path.rstrip('/').split('/')[-1]


def _objects(model_elem, set_tag):
    objects = model_elem.find('{}/objects'.format(set_tag))
    if objects is None:
        return []
    return [child for child in objects if isinstance(child.tag, str)]


def _parse_body(elem):
    inertia = _floats(elem, 'inertia', [0, 0, 0, 0, 0, 0])
    if len(inertia) == 3:
        inertia = np.concatenate([inertia, np.zeros(3)])
    return Body(elem.get('name'),
                _float(elem, 'mass', 0.0),
                _floats(elem, 'mass_center', [0, 0, 0]),
                inertia)


def _parse_function(axis_elem, joint_name):
    for child in axis_elem:
        if not isinstance(child.tag, str):
            continue
        if child.tag in ('coordinates', 'axis'):
            continue
        kind = child.tag
        if kind == 'function':
            # OpenSim 3 style wrapper
            inner = [c for c in child if isinstance(c.tag, str)]
            if not inner:
                continue
            child = inner[0]
            kind = child.tag
        if kind not in SUPPORTED_FUNCTIONS:
            raise ModelFileError(
                "Function '{}' of joint '{}' is not supported".format(
                    kind, joint_name))
        if kind == 'MultiplierFunction':
            scale = _float(child, 'scale', 1.0)
            inner = child.find('function')
            inner = [c for c in (inner if inner is not None else child)
                     if isinstance(c.tag, str) and c.tag != 'scale']
            if not inner or inner[0].tag not in ('Constant',
                                                 'PolynomialFunction'):
                raise ModelFileError(
                    "MultiplierFunction of joint '{}' must wrap a Constant "
                    "or a PolynomialFunction".format(joint_name))
            inner_fn = _function_values(inner[0])
            return Function(inner_fn.kind, inner_fn.coefficients, scale)
        return _function_values(child)
    return None


def _function_values(elem):
    if elem.tag == 'Constant':
        return Function('Constant', [_float(elem, 'value', 0.0)])
    if elem.tag == 'LinearFunction':
        return Function('LinearFunction', _floats(elem, 'coefficients'))
    return Function('PolynomialFunction', _floats(elem, 'coefficients'))


def _parse_offsets(joint_elem):
    frames = {}
    frames_elem = joint_elem.find('frames')
    if frames_elem is not None:
        for frame in frames_elem:
            if not isinstance(frame.tag, str):
                continue
            frames[frame.get('name')] = (
                _frame_name(_text(frame, 'socket_parent', '')),
                (_floats(frame, 'translation', [0, 0, 0]),
                 _floats(frame, 'orientation', [0, 0, 0])))

    def resolve(socket_tag):
        socket = _text(joint_elem, socket_tag)
        if socket is None:
            raise ModelFileError(
                "<{}> is missing in joint '{}'".format(
                    socket_tag, joint_elem.get('name')))
        name = _frame_name(socket)
        if name in frames:
            return frames[name]
        return name, (np.zeros(3), np.zeros(3))

    parent_frame, parent_offset = resolve('socket_parent_frame')
    child_frame, child_offset = resolve('socket_child_frame')
    return parent_frame, parent_offset, child_frame, child_offset


def _parse_joint(elem):
    name = elem.get('name')
    joint_type = elem.tag
    if joint_type not in SUPPORTED_JOINTS:
        raise ModelFileError(
            "Joint '{}' of type {} is not supported".format(
                name, joint_type))
    parent_frame, parent_offset, child_frame, child_offset = \
        _parse_offsets(elem)

    coordinates = []
    coords_elem = elem.find('coordinates')
    if coords_elem is not None:
        for coord in coords_elem.findall('Coordinate'):
            coordinates.append(Coordinate(
                coord.get('name'), name,
                _float(coord, 'default_value', 0.0)))

    spatial_transform = []
    if joint_type == 'CustomJoint':
        st = elem.find('SpatialTransform')
        if st is None:
            raise ModelFileError(
                "CustomJoint '{}' has no SpatialTransform".format(name))
        axes = {axis.get('name'): axis
                for axis in st.findall('TransformAxis')}
        for axis_name in TRANSFORM_AXES:
            axis = axes.get(axis_name)
            if axis is None:
                raise ModelFileError(
                    "TransformAxis '{}' is missing in joint '{}'".format(
                        axis_name, name))
            axis_coords = (_text(axis, 'coordinates', '') or '').split()
            spatial_transform.append(TransformAxis(
                axis_name, _floats(axis, 'axis'), axis_coords,
                _parse_function(axis, name)))
    elif joint_type == 'PinJoint' and len(coordinates) != 1:
        raise ModelFileError(
            "PinJoint '{}' must have exactly one coordinate".format(name))

    return Joint(name, joint_type, parent_frame, child_frame,
                 parent_offset, child_offset, coordinates,
                 spatial_transform)


def _parse_contacts(model_elem):
    geometry = {}
    for elem in _objects(model_elem, 'ContactGeometrySet'):
        name = elem.get('name')
        frame = _frame_name(_text(elem, 'socket_frame', 'ground'))
        if elem.tag == 'ContactSphere':
            geometry[name] = ContactSphere(
                name, frame, _floats(elem, 'location', [0, 0, 0]),
                _float(elem, 'radius'))
        elif elem.tag == 'ContactHalfSpace':
            geometry[name] = ContactHalfSpace(
                name, frame, _floats(elem, 'location', [0, 0, 0]),
                _floats(elem, 'orientation', [0, 0, 0]))
        else:
            logger.debug('Ignoring contact geometry %s (%s)',
                         name, elem.tag)

    contacts = []
    for elem in _objects(model_elem, 'ForceSet'):
        if elem.tag != 'SmoothSphereHalfSpaceForce':
            continue
        name = elem.get('name')
        sphere_name = _frame_name(_text(elem, 'socket_sphere', ''))
        half_space_name = _frame_name(_text(elem, 'socket_half_space', ''))
        sphere = geometry.get(sphere_name)
        half_space = geometry.get(half_space_name)
        if not isinstance(sphere, ContactSphere):
            raise ModelFileError(
                "Contact sphere '{}' of force '{}' not found".format(
                    sphere_name, name))
        if not isinstance(half_space, ContactHalfSpace):
            raise ModelFileError(
                "Contact half space '{}' of force '{}' not found".format(
                    half_space_name, name))
        parameters = {}
        for key in CONTACT_PARAMETERS:
            if elem.find(key) is not None:
                parameters[key] = _float(elem, key)
        contacts.append(SmoothSphereHalfSpaceForce(
            name, sphere, half_space, parameters))
    return contacts


def load_osim_model(path):
    """Load an OpenSim model file.

    Parameters
    ----------
    path : str
        Path to the ``.osim`` file.

    Returns
    -------
    OsimModel
        Parsed model.

    Raises
    ------
    osimad.errors.ModelFileError
        If the file does not exist, is not valid XML, or contains elements
        that cannot be rebuilt (unsupported joint or function types).
    """
    if not os.path.isfile(path):
        raise ModelFileError('OpenSim model not found: {}'.format(path))

    parser = etree.XMLParser(remove_comments=True, resolve_entities=False)
    try:
        tree = etree.parse(path, parser)
    except etree.XMLSyntaxError as e:
        raise ModelFileError(
            'Could not parse OpenSim model {}: {}'.format(path, e))

    root = tree.getroot()
    model_elem = root if root.tag == 'Model' else root.find('Model')
    if model_elem is None:
        raise ModelFileError('No <Model> element in {}'.format(path))

    bodies = [_parse_body(b) for b in _objects(model_elem, 'BodySet')]
    joints = [_parse_joint(j) for j in _objects(model_elem, 'JointSet')]
    contacts = _parse_contacts(model_elem)

    body_names = set(b.name for b in bodies) | {'ground'}
    for joint in joints:
        for frame in (joint.parent_frame, joint.child_frame):
            if frame not in body_names:
                raise ModelFileError(
                    "Joint '{}' references unknown frame '{}'".format(
                        joint.name, frame))
    for contact in contacts:
        if contact.sphere.frame not in body_names:
            raise ModelFileError(
                "Contact '{}' references unknown body '{}'".format(
                    contact.name, contact.sphere.frame))

    return OsimModel(model_elem.get('name'),
                     _floats(model_elem, 'gravity', [0, -9.80665, 0]),
                     bodies, joints, contacts, path=path)


def _apply_order(items, order, kind):
    if not order:
        return list(items)
    by_name = {item.name: item for item in items}
    unknown = [name for name in order if name not in by_name]
    if unknown:
        raise ValueError('Unknown {}: {}. Available {}: {}'.format(
            kind, ', '.join(unknown), kind, ', '.join(by_name)))
    if len(set(order)) != len(order):
        raise ValueError('Duplicate {} in order: {}'.format(kind, order))
    missing = [name for name in by_name if name not in order]
    if missing:
        raise ValueError('The {} order is missing: {}'.format(
            kind, ', '.join(missing)))
    return [by_name[name] for name in order]


def order_joints(model, joints_order=None):
    """Return the non-patella joints, optionally in a custom order."""
    return _apply_order(model.dynamic_joints(), joints_order, 'joints')


def order_coordinates(model, coordinates_order=None, joints=None):
    """Return the non-patella coordinates, optionally in a custom order.

    The coordinates follow ``joints`` (or the model's joint order). The
    emitted model adds joints in that order and its state vector follows
    it, so an explicit order must list the coordinates joint by joint.

    Raises
    ------
    ValueError
        If ``coordinates_order`` names unknown coordinates, misses some,
        or does not follow the joint order.
    """
    if joints is None:
        joints = model.dynamic_joints()
    coordinates = [c for joint in joints for c in joint.coordinates
                   if not is_patella_coordinate(c.name)]
    ordered = _apply_order(coordinates, coordinates_order, 'coordinates')
    expected = [c.name for c in coordinates]
    if [c.name for c in ordered] != expected:
        raise ValueError(
            'The coordinates order must follow the joints order: {}'.format(
                ', '.join(expected)))
    return ordered
