"""Generate a CasADi external function from an OpenSim model.

Given an ``.osim`` model, :func:`generate_external_function` writes a C++
file with a function ``F`` that builds the model programmatically and
runs inverse dynamics. OpenSimAD compiles and runs it to record the
expression graph of ``F``. CasADi turns the graph into C code of ``F``
and its Jacobian, which is finally compiled into a library that can be
loaded with ``casadi.external('F', path)`` when formulating trajectory
optimization problems.

Assuming ``output_filename='F'``, these files end up in ``output_dir``:

``F.cpp``
    Source of the function. Not needed afterwards.
``F_IO.mat``
    Index map of the inputs and outputs (see :mod:`osimad.io_map`).
``F.casadi``
    Serialised CasADi function, loadable with ``casadi.Function.load``.
    Not every CasADi version can load it; 3.6.3 is known to work.
``F.dll`` / ``F.so`` / ``F.dylib``
    The external function, unless ``no_dll`` is set.
``F.lib``
    Import library (Windows only), needed to link code calling ``F.dll``.
"""

import enum
import logging
import os
import shutil

import filelock

from osimad.cleanup import remove_all_temp_files
from osimad.codegen import generate_f
from osimad.codegen import SERIALIZED_FILENAME
from osimad.config import JobContext
from osimad.emitter import ExportOptions
from osimad.emitter import write_cpp_file
from osimad.expression_graph import build_expression_graph
from osimad.io_map import load_io_map
from osimad.model import load_osim_model
from osimad.native_build import build_external_function
from osimad.verification import verify_inverse_dynamics


logger = logging.getLogger(__name__)


def _remove_lock_file(path):
    # the lock is released at this point, its file is left behind by filelock
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning('Could not remove %s: %s', path, e)


class Stage(enum.Enum):
    INIT = 0
    SOURCE_EMITTED = 1
    GRAPH_BUILT = 2
    CODE_GENERATED = 3
    ARTIFACTS_COPIED = 4
    NATIVE_BUILT = 5
    VERIFIED = 6
    CLEANED_UP = 7
    DONE = 8


class PipelineResult(object):
    """Files and state produced by :func:`generate_external_function`."""

    def __init__(self, job):
        self.job = job
        self.stage = Stage.INIT
        self.io_map = None
        self.artifacts = []
        self.verification = None

    def advance(self, stage):
        logger.debug('%s: %s -> %s', self.job.dir_name,
                     self.stage.name, stage.name)
        self.stage = stage

    def __repr__(self):
        return '<PipelineResult {} stage={} artifacts={}>'.format(
            self.job.job_name, self.stage.name,
            [os.path.basename(p) for p in self.artifacts])


def generate_external_function(
        model_path, output_dir,
        joints_order=None, coordinates_order=None,
        input_3d_body_forces=(), input_3d_body_moments=(),
        export_3d_positions=(), export_3d_velocities=(),
        export_grfs=True, export_grms=True,
        export_separate_grfs=False, export_contact_powers=False,
        output_filename='F', compiler=None, verbose_mode=False,
        verify_id=False, second_order_derivatives=False, no_dll=False,
        import_library=True, check_exit_codes=True, root=None,
        unique_job_dir=False):
    """Generate an external function computing inverse dynamics.

    The function ``F`` takes as input the joint positions and velocities
    (intertwined), the joint accelerations, and optionally forces and
    moments acting on bodies. It returns the joint torques and, optionally,
    positions and velocities of points, the total ground reaction forces
    and moments of the left and right side, the ground reaction force of
    each contact element and the deformation power of each contact
    element. Contact elements are assigned to a side by a prefix (``r_``,
    ``R_``, ``l_``, ``L_``) or a suffix (``_r``, ``_R``, ``_l``, ``_L``).

    The contribution of the patella is ignored.

    Parameters
    ----------
    model_path : str
        Path to the OpenSim model (``.osim``).
    output_dir : str
        Directory where the generated files are saved.
    joints_order, coordinates_order : list of str, optional
        Order of joints and coordinates in the function's inputs and
        outputs. Empty uses the order of the model file.
    input_3d_body_forces : list of dict or BodyForceInput
        Forces acting on bodies, e.g.
        ``{'body': 'torso', 'point_in_body': [-0.1, 0.3, 0],
        'name': 'back_push', 'reference_frame': 'ground'}``.
    input_3d_body_moments : list of dict or BodyMomentInput
        Moments acting on bodies, e.g.
        ``{'body': 'tibia_l', 'name': 'exo_shank_l',
        'reference_frame': 'tibia_l'}``.
    export_3d_positions, export_3d_velocities : list of dict or PointOutput
        Points whose position/velocity in ground is exported, e.g.
        ``{'body': 'tibia_l', 'point_in_body': [0, -0.012, 0],
        'name': 'left_shin'}``.
    export_grfs, export_grms : bool
        Export total ground reaction forces/moments per side.
    export_separate_grfs : bool
        Export the ground reaction force of each contact element.
    export_contact_powers : bool
        Export the deformation power of each contact element.
    output_filename : str
        Name of the generated files.
    compiler : str, optional
        CMake generator, e.g. ``'Visual Studio 17 2022'``.
    verbose_mode : bool
        Print the output of the external tools.
    verify_id : bool
        Verify the function against OpenSim's inverse dynamics tool.
    second_order_derivatives : bool
        Also generate second derivative information. This greatly
        increases compilation time for models with many degrees of freedom.
    no_dll : bool
        Do not compile the library.
    import_library : bool
        Also copy the import library (``.lib``) on Windows.
    check_exit_codes : bool
        Abort when an external tool exits with a non-zero status. Turning
        this off only logs the failures.
    root : str, optional
        Workspace root, see :func:`osimad.config.get_workspace_root`.
    unique_job_dir : bool
        Use a unique name for the temporary directories of this build.

    Returns
    -------
    PipelineResult
        The generated files, the index map and the verification result.
    """
    # fail fast on a bad model before any external tool runs
    load_osim_model(model_path)
    output_dir = os.path.abspath(output_dir)
    os.makedirs(output_dir, exist_ok=True)

    job = JobContext.create(output_filename, root=root,
                            unique=unique_job_dir)
    os.makedirs(job.root, exist_ok=True)
    result = PipelineResult(job)
    exports = ExportOptions(export_grfs, export_grms,
                            export_separate_grfs, export_contact_powers)

    try:
        with filelock.FileLock(job.job_lock_path):
            try:
                _run(result, model_path, output_dir, joints_order,
                     coordinates_order, input_3d_body_forces,
                     input_3d_body_moments, export_3d_positions,
                     export_3d_velocities, exports, compiler, verbose_mode,
                     verify_id, second_order_derivatives, no_dll,
                     import_library, check_exit_codes)
            except Exception:
                logger.error('Generating %s failed after stage %s',
                             output_filename, result.stage.name)
                raise
            finally:
                remove_all_temp_files(job.dir_name, root=job.root)
            result.advance(Stage.CLEANED_UP)
    finally:
        _remove_lock_file(job.job_lock_path)
    result.advance(Stage.DONE)
    return result


def _run(result, model_path, output_dir, joints_order, coordinates_order,
         forces, moments, positions, velocities, exports, compiler,
         verbose, verify_id, second_order_derivatives, no_dll,
         import_library, check):
    job = result.job
    name = job.job_name

    result.io_map = write_cpp_file(
        model_path, output_dir, name,
        joints_order=joints_order, coordinates_order=coordinates_order,
        input_3d_body_forces=forces, input_3d_body_moments=moments,
        export_3d_positions=positions, export_3d_velocities=velocities,
        exports=exports)
    result.artifacts += [os.path.join(output_dir, name + '.cpp'),
                         os.path.join(output_dir, name + '_IO.mat')]
    result.advance(Stage.SOURCE_EMITTED)

    foo_path = build_expression_graph(job, output_dir, compiler=compiler,
                                      verbose=verbose, check=check)
    result.advance(Stage.GRAPH_BUILT)

    io = load_io_map(os.path.join(output_dir, name + '_IO.mat'))
    generate_f(io['input']['nInputs'], foo_path, second_order_derivatives)
    result.advance(Stage.CODE_GENERATED)

    serialized = os.path.join(foo_path, SERIALIZED_FILENAME)
    if os.path.isfile(serialized):
        target = os.path.join(output_dir, name + '.casadi')
        shutil.copyfile(serialized, target)
        result.artifacts.append(target)
    result.advance(Stage.ARTIFACTS_COPIED)

    if not no_dll:
        result.artifacts += build_external_function(
            job, foo_path, output_dir, compiler=compiler,
            verbose=verbose, check=check, import_library=import_library)
        result.advance(Stage.NATIVE_BUILT)

    if verify_id:
        if no_dll:
            logger.warning('Skipping verification: no library was built')
        else:
            result.verification = verify_inverse_dynamics(
                model_path, output_dir, name, result.io_map,
                verbose=verbose, check=check)
            result.advance(Stage.VERIFIED)
