import logging
import os
import platform
import shutil

from osimad.config import template_dir
from osimad.errors import ExpressionGraphBuildError
from osimad.process import run_command


logger = logging.getLogger(__name__)

BUILD_CONFIG = 'RelWithDebInfo'
GRAPH_FILENAME = 'foo.py'


def _find_executable(build_dir, target_name):
    if platform.system() == 'Windows':
        candidates = [
            os.path.join(build_dir, BUILD_CONFIG, target_name + '.exe'),
            os.path.join(build_dir, target_name + '.exe'),
        ]
    else:
        candidates = [
            os.path.join(build_dir, target_name),
            os.path.join(build_dir, BUILD_CONFIG, target_name),
        ]
    for path in candidates:
        if os.path.isfile(path):
            return path
    raise ExpressionGraphBuildError(
        ['<executable>'], 0,
        'Built executable not found, looked for: {}'.format(
            ', '.join(candidates)))


def _runtime_env(ctx):
    env = os.environ.copy()
    lib_dirs = [os.path.join(ctx.sdk_dir, 'lib'), ctx.sdk_bin_dir]
    if platform.system() == 'Windows':
        key = 'PATH'
    elif platform.system() == 'Darwin':
        key = 'DYLD_LIBRARY_PATH'
    else:
        key = 'LD_LIBRARY_PATH'
    if env.get(key):
        lib_dirs.append(env[key])
    env[key] = os.pathsep.join(lib_dirs)
    return env


def build_expression_graph(ctx, cpp_dir, compiler=None, verbose=False,
                           check=True):
    """Compile the emitted C++ source and record its expression graph.

    The source ``<cpp_dir>/<job_name>.cpp`` is compiled against the
    OpenSimAD SDK in ``ctx.sdk_dir``. The resulting program is run from
    the SDK's ``bin`` directory, where it writes the expression graph
    ``foo.py``; the graph is then moved into the job's build directory.

    Parameters
    ----------
    ctx : osimad.config.JobContext
        Paths of the current job.
    cpp_dir : str
        Directory holding the emitted ``.cpp`` file.
    compiler : str, optional
        CMake generator, e.g. ``'Visual Studio 17 2022'``. The platform
        default generator is used when omitted.
    verbose : bool
        Stream the output of CMake and the compiler to the console.
    check : bool
        Raise on a non-zero exit status.

    Returns
    -------
    str
        Directory holding ``foo.py``.

    Raises
    ------
    osimad.errors.ExpressionGraphBuildError
        If a step fails or no expression graph was produced.
    """
    cpp_path = os.path.join(cpp_dir, ctx.job_name + '.cpp')
    if not os.path.isfile(cpp_path):
        raise FileNotFoundError('C++ source not found: {}'.format(cpp_path))
    ctx.make_dirs()
    build_dir = ctx.graph_build_dir

    configure = ['cmake', template_dir('buildExpressionGraph')]
    if compiler:
        configure += ['-G', compiler]
    configure += [
        '-DTARGET_NAME:STRING={}'.format(ctx.job_name),
        '-DSDK_DIR:PATH={}'.format(ctx.sdk_dir),
        '-DCPP_DIR:PATH={}'.format(os.path.abspath(cpp_dir)),
    ]
    run_command(configure, cwd=build_dir, verbose=verbose, check=check,
                stage='graph')
    run_command(['cmake', '--build', '.', '--config', BUILD_CONFIG],
                cwd=build_dir, verbose=verbose, check=check, stage='graph')

    executable = _find_executable(build_dir, ctx.job_name)
    run_command([executable], cwd=ctx.sdk_bin_dir, verbose=verbose,
                check=check, stage='graph', env=_runtime_env(ctx))

    produced = os.path.join(ctx.sdk_bin_dir, GRAPH_FILENAME)
    if not os.path.isfile(produced):
        raise ExpressionGraphBuildError(
            [executable], 0,
            'Expression graph {} was not written'.format(produced))
    graph_path = os.path.join(build_dir, GRAPH_FILENAME)
    shutil.move(produced, graph_path)
    logger.info('Expression graph written to %s', graph_path)
    return build_dir
