"""Write the C++ source consumed by OpenSimAD.

The source defines a function ``F`` that builds the musculoskeletal model
programmatically and runs inverse dynamics on it. Compiled against the
OpenSimAD SDK and executed, it records the expression graph of ``F``.

``F`` takes one column vector::

    [q_1, qdot_1, ..., q_N, qdot_N, qddot_1, ..., qddot_N,
     forces (3 per input), moments (3 per input)]

and returns joint torques followed by the optional outputs, in the order
recorded in the index map (see :mod:`osimad.io_map`).

The patella (bodies ``patella_l``/``patella_r``, joints containing
``patel`` and coordinates ``knee_angle_*_beta``) only influences muscle
paths and is left out of the model.
"""

import logging
import os

from osimad.io_map import IOMap
from osimad.io_map import save_io_map
from osimad.model import load_osim_model
from osimad.model import order_coordinates
from osimad.model import order_joints


logger = logging.getLogger(__name__)

RIGHT_PREFIXES = ('r_', 'R_')
RIGHT_SUFFIXES = ('_r', '_R')
LEFT_PREFIXES = ('l_', 'L_')
LEFT_SUFFIXES = ('_l', '_L')
SIDES = ('right', 'left')


def contact_side(name):
    """Classify a contact element as ``'right'``, ``'left'`` or ``None``.

    Elements are identified by a prefix (``r_``, ``R_``, ``l_``, ``L_``)
    or a suffix (``_r``, ``_R``, ``_l``, ``_L``).

    >>> contact_side('R_heel'), contact_side('foot_l'), contact_side('c1')
    ('right', 'left', None)
    """
    if name.startswith(RIGHT_PREFIXES) or name.endswith(RIGHT_SUFFIXES):
        return 'right'
    if name.startswith(LEFT_PREFIXES) or name.endswith(LEFT_SUFFIXES):
        return 'left'
    return None


def _vec3(values, name):
    values = [float(v) for v in values]
    if len(values) != 3:
        raise ValueError(
            '{} must have 3 components, got {}'.format(name, values))
    return values


class BodyForceInput(object):
    """Force input applied at a point of a body.

    The force is given as ``[x, y, z]`` components expressed in
    ``reference_frame`` (``'ground'`` or a body name).
    """

    def __init__(self, body, point_in_body, name, reference_frame='ground'):
        self.body = body
        self.point_in_body = _vec3(point_in_body, 'point_in_body')
        self.name = name
        self.reference_frame = reference_frame

    @classmethod
    def from_dict(cls, d):
        return cls(d['body'], d.get('point_in_body', (0, 0, 0)), d['name'],
                   d.get('reference_frame', 'ground'))


class BodyMomentInput(object):
    """Moment input acting on a body, expressed in ``reference_frame``."""

    def __init__(self, body, name, reference_frame='ground'):
        self.body = body
        self.name = name
        self.reference_frame = reference_frame

    @classmethod
    def from_dict(cls, d):
        return cls(d['body'], d['name'], d.get('reference_frame', 'ground'))


class PointOutput(object):
    """Point whose position or velocity in ground is exported."""

    def __init__(self, body, point_in_body, name):
        self.body = body
        self.point_in_body = _vec3(point_in_body, 'point_in_body')
        self.name = name

    @classmethod
    def from_dict(cls, d):
        return cls(d['body'], d.get('point_in_body', (0, 0, 0)), d['name'])


class ExportOptions(object):
    """Optional contact outputs of the generated function.

    Parameters
    ----------
    export_grfs : bool
        Total ground reaction force of the left and right side.
    export_grms : bool
        Total ground reaction moment of the left and right side.
    export_separate_grfs : bool
        Ground reaction force of each contact element.
    export_contact_powers : bool
        Deformation power of each contact element. Only the power of the
        force normal to the ground plane is included, not friction.
    """

    def __init__(self, export_grfs=False, export_grms=False,
                 export_separate_grfs=False, export_contact_powers=False):
        self.export_grfs = export_grfs
        self.export_grms = export_grms
        self.export_separate_grfs = export_separate_grfs
        self.export_contact_powers = export_contact_powers


def _as_descriptors(items, cls):
    return [item if isinstance(item, cls) else cls.from_dict(item)
            for item in (items or ())]


def _check_descriptors(descriptors, kind, body_names):
    seen = set()
    for d in descriptors:
        if d.name in seen:
            raise ValueError('Duplicate {} name: {}'.format(kind, d.name))
        seen.add(d.name)
        if d.body not in body_names:
            raise ValueError("{} '{}' refers to unknown body '{}'".format(
                kind, d.name, d.body))
        frame = getattr(d, 'reference_frame', 'ground')
        if frame != 'ground' and frame not in body_names:
            raise ValueError(
                "{} '{}' refers to unknown reference frame '{}'".format(
                    kind, d.name, frame))


def _fmt(value):
    return '%.20f' % value


def _vec(values):
    return 'Vec3({})'.format(', '.join(_fmt(v) for v in values))


def _frame_ref(name):
    if name == 'ground':
        return 'model->getGround()'
    return '*{}'.format(name)


class _CppWriter(object):

    def __init__(self, f):
        self.f = f

    def line(self, text='', indent=1):
        self.f.write('\t' * indent + text + '\n' if text else '\n')

    def function(self, target, function):
        if function is None:
            self.line('{}.setFunction(new Constant(0));'.format(target))
            return
        if function.kind == 'LinearFunction':
            slope, intercept = function.coefficients[:2]
            expr = 'new LinearFunction({}, {})'.format(
                _fmt(slope), _fmt(intercept))
        elif function.kind == 'Constant':
            expr = 'new Constant({})'.format(_fmt(function.coefficients[0]))
        else:
            coeffs = function.coefficients
            var = target.replace('[', '_').replace(']', '')
            self.line('osim_double_adouble {}_coeffs[{}] = {{{}}};'.format(
                var, len(coeffs), ', '.join(_fmt(c) for c in coeffs)))
            self.line('Vector {}_coeffs_vec({});'.format(var, len(coeffs)))
            self.line('for (int i = 0; i < {0}; ++i) {1}_coeffs_vec[i] = '
                      '{1}_coeffs[i];'.format(len(coeffs), var))
            expr = 'new PolynomialFunction({}_coeffs_vec)'.format(var)
        if function.scale is not None:
            expr = 'new MultiplierFunction({}, {})'.format(
                expr, _fmt(function.scale))
        self.line('{}.setFunction({});'.format(target, expr))


def _write_header(w, n_coordinates, n_inputs, n_outputs):
    for header in ('OpenSim/Simulation/Model/Model.h',
                   'OpenSim/Simulation/SimbodyEngine/PinJoint.h',
                   'OpenSim/Simulation/SimbodyEngine/WeldJoint.h',
                   'OpenSim/Simulation/SimbodyEngine/Joint.h',
                   'OpenSim/Simulation/SimbodyEngine/SpatialTransform.h',
                   'OpenSim/Simulation/SimbodyEngine/CustomJoint.h',
                   'OpenSim/Common/LinearFunction.h',
                   'OpenSim/Common/PolynomialFunction.h',
                   'OpenSim/Common/MultiplierFunction.h',
                   'OpenSim/Common/Constant.h',
                   'OpenSim/Simulation/Model/SmoothSphereHalfSpaceForce.h',
                   'OpenSim/Simulation/SimulationUtilities.h'):
        w.line('#include <{}>'.format(header), 0)
    w.line('#include "SimTKcommon/internal/recorder.h"', 0)
    w.line()
    for header in ('iostream', 'iterator', 'random', 'cassert',
                   'algorithm', 'vector', 'fstream'):
        w.line('#include <{}>'.format(header), 0)
    w.line()
    w.line('using namespace SimTK;', 0)
    w.line('using namespace OpenSim;', 0)
    w.line()
    w.line('constexpr int n_in = 1; ', 0)
    w.line('constexpr int n_out = 1; ', 0)
    w.line('constexpr int nCoordinates = {}; '.format(n_coordinates), 0)
    w.line('constexpr int NX = nCoordinates*2; ', 0)
    w.line('constexpr int NU = nCoordinates; ', 0)
    w.line('constexpr int NIN = {}; '.format(n_inputs), 0)
    w.line('constexpr int NR = {}; '.format(n_outputs), 0)
    w.line()
    w.line('template<typename T> ', 0)
    w.line('T value(const Recorder& e) { return e; }; ', 0)
    w.line('template<> ', 0)
    w.line('double value(const Recorder& e) { return e.getValue(); }; ', 0)
    w.line()


def _write_bodies(w, bodies):
    w.line('// Definition of bodies.')
    for body in bodies:
        w.line('OpenSim::Body* {};'.format(body.name))
        w.line('{0} = new OpenSim::Body("{0}", {1}, {2}, '
               'Inertia({3}));'.format(
                   body.name, _fmt(body.mass), _vec(body.mass_center),
                   ', '.join(_fmt(v) for v in body.inertia)))
        w.line('model->addBody({});'.format(body.name))
        w.line()


def _write_joints(w, joints):
    w.line('// Definition of joints.')
    for joint in joints:
        offsets = '{}, {}, {}, {}, {}, {}'.format(
            _frame_ref(joint.parent_frame),
            _vec(joint.parent_offset[0]), _vec(joint.parent_offset[1]),
            _frame_ref(joint.child_frame),
            _vec(joint.child_offset[0]), _vec(joint.child_offset[1]))
        if joint.type == 'CustomJoint':
            st = 'st_{}'.format(joint.name)
            w.line('SpatialTransform {};'.format(st))
            for i, axis in enumerate(joint.spatial_transform):
                target = '{}[{}]'.format(st, i)
                if axis.coordinates:
                    w.line('{}.setCoordinateNames(OpenSim::Array<std::string>'
                           '("{}", 1, 1));'.format(
                               target, axis.coordinates[0]))
                w.function(target, axis.function)
                w.line('{}.setAxis({});'.format(target, _vec(axis.axis)))
            w.line('OpenSim::CustomJoint* {};'.format(joint.name))
            w.line('{0} = new OpenSim::CustomJoint("{0}", {1}, {2});'.format(
                joint.name, offsets, st))
        else:
            w.line('OpenSim::{}* {};'.format(joint.type, joint.name))
            w.line('{0} = new OpenSim::{1}("{0}", {2});'.format(
                joint.name, joint.type, offsets))
        w.line('model->addJoint({});'.format(joint.name))
        w.line()


def _write_contacts(w, contacts):
    w.line('// Definition of contacts.')
    for contact in contacts:
        name = contact.name
        sphere = contact.sphere
        half_space = contact.half_space
        w.line('OpenSim::SmoothSphereHalfSpaceForce* {};'.format(name))
        w.line('{0} = new SmoothSphereHalfSpaceForce("{0}", {1}, {2});'
               .format(name, _frame_ref(sphere.frame),
                       _frame_ref(half_space.frame)))
        w.line('Vec3 {}_location{};'.format(name, _vec(sphere.location)[4:]))
        w.line('{0}->set_contact_sphere_location({0}_location);'.format(name))
        w.line('double {}_radius = ({});'.format(name, _fmt(sphere.radius)))
        w.line('{0}->set_contact_sphere_radius({0}_radius);'.format(name))
        w.line('{}->set_contact_half_space_location({});'.format(
            name, _vec(half_space.location)))
        w.line('{}->set_contact_half_space_orientation({});'.format(
            name, _vec(half_space.orientation)))
        for key, value in contact.parameters.items():
            w.line('{}->set_{}({});'.format(name, key, _fmt(value)))
        w.line('{}->connectSocket_sphere_frame({});'.format(
            name, _frame_ref(sphere.frame)))
        w.line('{}->connectSocket_half_space_frame({});'.format(
            name, _frame_ref(half_space.frame)))
        w.line('model->addComponent({});'.format(name))
        w.line()


def _write_applied_forces(w, model, contacts, forces, moments, io):
    w.line('// Initialize system.')
    w.line('SimTK::State* state;')
    w.line('state = new State(model->initSystem());')
    w.line()
    w.line('// Read inputs.')
    w.line('std::vector<T> x(arg[0], arg[0] + NX);')
    w.line('std::vector<T> u(arg[0] + NX, arg[0] + NX + NU);')
    w.line()
    w.line('// States and controls.')
    w.line('T ua[NU];')
    w.line('Vector QsUs(NX);')
    w.line('for (int i = 0; i < NX; ++i) QsUs[i] = x[i];')
    w.line('/// OpenSim and Simbody have different state orders.')
    w.line('auto indicesOSInSimbody = getIndicesOpenSimInSimbody(*model);')
    w.line('for (int i = 0; i < NU; ++i) ua[i] = u[indicesOSInSimbody[i]];')
    w.line()
    w.line('// Set state variables and realize.')
    w.line('model->setStateVariableValues(*state, QsUs);')
    w.line('model->realizeVelocity(*state);')
    w.line()
    w.line('// Compute residual forces.')
    w.line('Vector appliedMobilityForces(nCoordinates);')
    w.line('appliedMobilityForces.setToZero();')
    w.line('Vector_<SpatialVec> appliedBodyForces;')
    w.line('int nbodies = model->getBodySet().getSize() + 1;')
    w.line('appliedBodyForces.resize(nbodies);')
    w.line('appliedBodyForces.setToZero();')
    w.line('Vec3 gravity{};'.format(_vec(model.gravity)[4:]))
    w.line('for (int i = 0; i < model->getBodySet().getSize(); ++i) {')
    w.line('model->getMatterSubsystem().addInStationForce(*state,', 2)
    w.line('model->getBodySet().get(i).getMobilizedBodyIndex(),', 2)
    w.line('model->getBodySet().get(i).getMassCenter(),', 2)
    w.line('model->getBodySet().get(i).getMass()*gravity, '
           'appliedBodyForces);', 2)
    w.line('}')

    if contacts:
        w.line('/// Contact forces.')
    for count, contact in enumerate(contacts):
        w.line('Array<osim_double_adouble> Force_{} = '
               '{}->getRecordValues(*state);'.format(count, contact.name))
        w.line('SpatialVec GRF_{};'.format(count))
        w.line('GRF_{0}[0] = Vec3(Force_{0}[3], Force_{0}[4], '
               'Force_{0}[5]);'.format(count))
        w.line('GRF_{0}[1] = Vec3(Force_{0}[0], Force_{0}[1], '
               'Force_{0}[2]);'.format(count))
        w.line('int c_idx_{} = model->getBodySet().get("{}")'
               '.getMobilizedBodyIndex();'.format(
                   count, contact.sphere.frame))
        w.line('appliedBodyForces[c_idx_{0}] += GRF_{0};'.format(count))
        w.line()

    for force in forces:
        offset = io.input['forces'][force.name][0] - 1
        w.line('/// Force input {}.'.format(force.name))
        w.line('Vec3 {0}_F(arg[0][{1}], arg[0][{2}], arg[0][{3}]);'.format(
            force.name, offset, offset + 1, offset + 2))
        if force.reference_frame != 'ground':
            w.line('{0}_F = {1}->expressVectorInGround(*state, {0}_F);'
                   .format(force.name, force.reference_frame))
        w.line('model->getMatterSubsystem().addInStationForce(*state, '
               '{}->getMobilizedBodyIndex(), {}, {}_F, appliedBodyForces);'
               .format(force.body, _vec(force.point_in_body), force.name))
    for moment in moments:
        offset = io.input['moments'][moment.name][0] - 1
        w.line('/// Moment input {}.'.format(moment.name))
        w.line('Vec3 {0}_M(arg[0][{1}], arg[0][{2}], arg[0][{3}]);'.format(
            moment.name, offset, offset + 1, offset + 2))
        if moment.reference_frame != 'ground':
            w.line('{0}_M = {1}->expressVectorInGround(*state, {0}_M);'
                   .format(moment.name, moment.reference_frame))
        w.line('model->getMatterSubsystem().addInBodyTorque(*state, '
               '{}->getMobilizedBodyIndex(), {}_M, appliedBodyForces);'
               .format(moment.body, moment.name))

    w.line('/// knownUdot.')
    w.line('Vector knownUdot(nCoordinates);')
    w.line('knownUdot.setToZero();')
    w.line('for (int i = 0; i < nCoordinates; ++i) knownUdot[i] = ua[i];')
    w.line('Vector residualMobilityForces(nCoordinates);')
    w.line('residualMobilityForces.setToZero();')
    w.line('model->getMatterSubsystem().calcResidualForceIgnoringConstraints('
           '*state,')
    w.line('appliedMobilityForces, appliedBodyForces, knownUdot, '
           'residualMobilityForces);', 3)
    w.line()


def _write_outputs(w, contacts, sides, positions, velocities, exports, io):
    w.line('/// Outputs.')
    w.line('auto indicesSimbodyInOS = getIndicesSimbodyInOpenSim(*model);')
    w.line('for (int i = 0; i < NU; ++i) res[0][i] =')
    w.line('value<T>(residualMobilityForces[indicesSimbodyInOS[i]]);', 3)

    def vector_output(group, name, expr):
        start = io.add_output(group, name, 3)[0] - 1
        w.line('for (int i = 0; i < 3; ++i) res[0][i + {}] = '
               'value<T>({}[i]);'.format(start, expr))

    for point in positions:
        w.line('Vec3 {}_pos = {}->findStationLocationInGround(*state, {});'
               .format(point.name, point.body, _vec(point.point_in_body)))
        vector_output('position', point.name, '{}_pos'.format(point.name))
    for point in velocities:
        w.line('Vec3 {}_vel = {}->findStationVelocityInGround(*state, {});'
               .format(point.name, point.body, _vec(point.point_in_body)))
        vector_output('velocity', point.name, '{}_vel'.format(point.name))

    active_sides = [side for side in SIDES
                    if any(s == side for s in sides)]
    if exports.export_grfs:
        for side in active_sides:
            var = 'GRF_{}'.format(side[0])
            w.line('Vec3 {}(0);'.format(var))
            for count, s in enumerate(sides):
                if s == side:
                    w.line('{} += GRF_{}[1];'.format(var, count))
            vector_output('GRFs', side, var)

    if exports.export_grms:
        w.line('Vec3 normal(0, 1, 0);')
        for side in active_sides:
            var = 'GRM_{}'.format(side[0])
            w.line('Vec3 {}(0);'.format(var))
            for count, (contact, s) in enumerate(zip(contacts, sides)):
                if s != side:
                    continue
                frame = contact.sphere.frame
                w.line('Vec3 locationCP_G_{0} = {1}->findStationLocationInGround'
                       '(*state, {2}_location) - {2}_radius * normal;'.format(
                           count, frame, contact.name))
                w.line('{} += locationCP_G_{} % GRF_{}[1];'.format(
                    var, count, count))
            vector_output('GRMs', side, var)

    if exports.export_separate_grfs:
        for count, contact in enumerate(contacts):
            vector_output('separateGRFs', contact.name,
                          'GRF_{}[1]'.format(count))

    if exports.export_contact_powers:
        for count, contact in enumerate(contacts):
            index = io.add_output('contactPowers', contact.name, 1)[0] - 1
            w.line('Vec3 {0}_vel_G = {1}->findStationVelocityInGround(*state, '
                   '{0}_location);'.format(contact.name, contact.sphere.frame))
            w.line('res[0][{}] = value<T>(GRF_{}[1][1] * {}_vel_G[1]);'.format(
                index, count, contact.name))
    w.line()
    w.line('return 0;')


def _write_main(w):
    w.line('int main() {', 0)
    w.line('Recorder x[NIN];')
    w.line('Recorder tau[NR];')
    w.line('for (int i = 0; i < NIN; ++i) x[i] <<= 0;')
    w.line('const Recorder* Recorder_arg[n_in] = { x };')
    w.line('Recorder* Recorder_res[n_out] = { tau };')
    w.line('F_generic<Recorder>(Recorder_arg, Recorder_res);')
    w.line('double res[NR];')
    w.line('for (int i = 0; i < NR; ++i) Recorder_res[0][i] >>= res[i];')
    w.line('Recorder::stop_recording();')
    w.line('return 0;')
    w.line('}', 0)


def _count_outputs(io, n_points, contacts, sides, exports):
    n = io.n_outputs + 3 * n_points
    n_sides = len(set(s for s in sides if s is not None))
    if exports.export_grfs:
        n += 3 * n_sides
    if exports.export_grms:
        n += 3 * n_sides
    if exports.export_separate_grfs:
        n += 3 * len(contacts)
    if exports.export_contact_powers:
        n += len(contacts)
    return n


def write_cpp_file(model_path, output_dir, output_filename,
                   joints_order=None, coordinates_order=None,
                   input_3d_body_forces=(), input_3d_body_moments=(),
                   export_3d_positions=(), export_3d_velocities=(),
                   exports=None):
    """Write ``<output_filename>.cpp`` and ``<output_filename>_IO.mat``.

    Parameters
    ----------
    model_path : str
        Path to the OpenSim model (``.osim``).
    output_dir : str
        Directory receiving both files. Created if missing.
    output_filename : str
        Base name of the generated files.
    joints_order, coordinates_order : list of str, optional
        Order of joints and coordinates in the function's inputs and
        outputs. Empty uses the model file's order. The two orders must
        be consistent.
    input_3d_body_forces : list of BodyForceInput or dict
        Forces acting on bodies, added as inputs.
    input_3d_body_moments : list of BodyMomentInput or dict
        Moments acting on bodies, added as inputs.
    export_3d_positions, export_3d_velocities : list of PointOutput or dict
        Points whose position or velocity in ground is exported.
    exports : ExportOptions, optional
        Ground reaction outputs. None of them by default.

    Returns
    -------
    osimad.io_map.IOMap
        Index map of the function, also saved next to the source.
    """
    if exports is None:
        exports = ExportOptions()
    model = load_osim_model(model_path)

    joints = order_joints(model, joints_order)
    coordinates = order_coordinates(model, coordinates_order, joints)
    bodies = model.dynamic_bodies()
    body_names = set(b.name for b in bodies)

    forces = _as_descriptors(input_3d_body_forces, BodyForceInput)
    moments = _as_descriptors(input_3d_body_moments, BodyMomentInput)
    positions = _as_descriptors(export_3d_positions, PointOutput)
    velocities = _as_descriptors(export_3d_velocities, PointOutput)
    _check_descriptors(forces, 'force input', body_names)
    _check_descriptors(moments, 'moment input', body_names)
    _check_descriptors(positions, 'position output', body_names)
    _check_descriptors(velocities, 'velocity output', body_names)

    contacts = [c for c in model.contacts if c.sphere.frame in body_names]
    sides = [contact_side(c.name) for c in contacts]
    for contact, side in zip(contacts, sides):
        if side is None:
            logger.info('Cannot identify the side of contact %s; it is '
                        'excluded from the left/right totals', contact.name)

    io = IOMap([c.name for c in coordinates])
    for force in forces:
        io.add_input('forces', force.name)
    for moment in moments:
        io.add_input('moments', moment.name)
    n_outputs = _count_outputs(io, len(positions) + len(velocities),
                               contacts, sides, exports)

    os.makedirs(output_dir, exist_ok=True)
    cpp_path = os.path.join(output_dir, output_filename + '.cpp')
    with open(cpp_path, 'w') as f:
        w = _CppWriter(f)
        _write_header(w, io.n_coordinates, io.n_inputs, n_outputs)
        w.line('template<typename T>', 0)
        w.line('int F_generic(const T** arg, T** res) {', 0)
        w.line()
        w.line('// Definition of model.')
        w.line('OpenSim::Model* model;')
        w.line('model = new OpenSim::Model();')
        w.line()
        _write_bodies(w, bodies)
        _write_joints(w, joints)
        _write_contacts(w, contacts)
        _write_applied_forces(w, model, contacts, forces, moments, io)
        _write_outputs(w, contacts, sides, positions, velocities, exports,
                       io)
        w.line('}', 0)
        w.line()
        _write_main(w)

    if io.n_outputs != n_outputs:
        raise AssertionError(
            'Output count mismatch: {} != {}'.format(io.n_outputs, n_outputs))

    io_path = os.path.join(output_dir, output_filename + '_IO.mat')
    save_io_map(io, io_path)
    logger.info('Wrote %s (%d inputs, %d outputs)',
                cpp_path, io.n_inputs, io.n_outputs)
    return io
