import logging
import os
import platform
import shutil

from osimad.config import template_dir
from osimad.errors import NativeBuildError
from osimad.process import run_command
from osimad.process import working_directory


logger = logging.getLogger(__name__)

BUILD_CONFIG = 'RelWithDebInfo'
CODE_FILENAME = 'foo_jac.c'


def shared_library_name(name, system=None):
    """Return the file name of the external function on ``system``."""
    system = system or platform.system()
    if system == 'Windows':
        return name + '.dll'
    if system == 'Darwin':
        return name + '.dylib'
    if system == 'Linux':
        return name + '.so'
    raise ValueError('Platform not supported: {}'.format(system))


def _installed_artifacts(install_dir, name, system):
    """Return ``(installed path, output name)`` pairs to copy.

    The import library is ``None`` on platforms without one.
    """
    if system == 'Windows':
        shared = os.path.join(install_dir, 'bin', name + '.dll')
        import_lib = os.path.join(install_dir, 'lib', name + '.lib')
        return (shared, name + '.dll'), (import_lib, name + '.lib')
    lib_name = 'lib' + shared_library_name(name, system)
    shared = os.path.join(install_dir, 'lib', lib_name)
    return (shared, shared_library_name(name, system)), None


def build_external_function(ctx, foo_path, output_dir, compiler=None,
                            verbose=False, check=True, import_library=True):
    """Compile ``foo_jac.c`` into a shared library.

    The packaged ``CMakeLists.txt`` and the generated code are staged in
    the job's native build directory. CMake is configured with the job's
    install directory as prefix, then built and installed. Both steps run
    inside the staged build tree; the working directory of this process is
    restored afterwards.

    Parameters
    ----------
    ctx : osimad.config.JobContext
        Paths of the current job.
    foo_path : str
        Directory holding ``foo_jac.c``.
    output_dir : str
        Directory receiving the library.
    compiler : str, optional
        CMake generator, e.g. ``'Visual Studio 17 2022'``.
    verbose : bool
        Stream CMake and compiler output to the console.
    check : bool
        Raise on a non-zero exit status. A failed configure step never
        continues to the build step when ``check`` is true.
    import_library : bool
        Also copy the import library (``.lib``) where the platform has one.

    Returns
    -------
    list of str
        Paths of the copied files in ``output_dir``.

    Raises
    ------
    osimad.errors.NativeBuildError
        If CMake fails or the installed library is missing.
    """
    system = platform.system()
    code_path = os.path.join(foo_path, CODE_FILENAME)
    if not os.path.isfile(code_path):
        raise FileNotFoundError(
            'Generated code not found: {}'.format(code_path))

    ctx.make_dirs()
    os.makedirs(output_dir, exist_ok=True)
    build_dir = ctx.native_build_dir
    shutil.copy2(
        os.path.join(template_dir('buildExternalFunction'), 'CMakeLists.txt'),
        build_dir)
    shutil.copy2(code_path, build_dir)

    configure = ['cmake', build_dir]
    if compiler:
        configure += ['-G', compiler]
    configure += [
        '-DTARGET_NAME:STRING={}'.format(ctx.job_name),
        '-DINSTALL_DIR:PATH={}'.format(ctx.install_dir),
    ]
    build = ['cmake', '--build', '.', '--config', BUILD_CONFIG,
             '--target', 'install']
    with working_directory(build_dir):
        run_command(configure, cwd=build_dir, verbose=verbose, check=check,
                    stage='native')
        run_command(build, cwd=build_dir, verbose=verbose, check=check,
                    stage='native')

    shared, import_lib = _installed_artifacts(
        ctx.install_dir, ctx.job_name, system)
    artifacts = [shared]
    if import_lib is not None and import_library:
        artifacts.append(import_lib)

    copied = []
    for source, target_name in artifacts:
        if not os.path.isfile(source):
            raise NativeBuildError(
                build, 0, 'Expected build output not found: {}'.format(
                    source))
        target = os.path.join(output_dir, target_name)
        shutil.copy2(source, target)
        copied.append(target)
        logger.info('Copied %s', target)
    return copied
