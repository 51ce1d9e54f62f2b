import contextlib
import logging
import os
import subprocess

from osimad.errors import error_for_stage


logger = logging.getLogger(__name__)


@contextlib.contextmanager
def working_directory(path):
    """Temporarily change the current working directory.

    The previous directory is restored when the block exits, including
    when it exits with an exception.
    """
    previous = os.getcwd()
    os.chdir(path)
    try:
        yield path
    finally:
        os.chdir(previous)


def run_command(args, cwd=None, verbose=False, check=True, stage=None,
                env=None):
    """Run an external tool and wait for it to finish.

    There is no timeout; code generation with second-order derivatives and
    native compilation of large models can take a long time.

    Parameters
    ----------
    args : list of str
        Command line.
    cwd : str, optional
        Working directory of the child process.
    verbose : bool
        Stream the tool's output to the console instead of capturing it.
    check : bool
        Raise when the exit status is non-zero. With ``check=False`` the
        failure is only logged.
    stage : str, optional
        Pipeline stage (``'graph'``, ``'native'`` or ``'verify'``) used to
        select the exception type.
    env : dict, optional
        Environment of the child process.

    Returns
    -------
    int
        Exit status of the process.

    Raises
    ------
    osimad.errors.ExternalProcessError
        If ``check`` is true and the process exits with a non-zero status.
    """
    args = [str(a) for a in args]
    logger.info('Running: %s', ' '.join(args))
    if verbose:
        result = subprocess.run(args, cwd=cwd, env=env)
        output = ''
    else:
        result = subprocess.run(
            args, cwd=cwd, env=env,
            stdout=subprocess.PIPE, stderr=subprocess.STDOUT,
            universal_newlines=True)
        output = result.stdout or ''
        if output:
            logger.debug(output)

    if result.returncode != 0:
        if check:
            raise error_for_stage(stage)(args, result.returncode, output)
        logger.warning('Ignoring exit code %d of: %s',
                       result.returncode, ' '.join(args))
    return result.returncode
