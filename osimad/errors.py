class OsimADError(Exception):
    """Base class of errors raised while generating an external function."""


class ModelFileError(OsimADError, FileNotFoundError):
    """The OpenSim model file is missing or cannot be interpreted.

    Raised before any external tool is started.
    """


class ExternalProcessError(OsimADError, RuntimeError):
    """An external tool exited with a non-zero status.

    Parameters
    ----------
    command : list of str
        Command line that failed.
    returncode : int
        Exit status of the process.
    output : str, optional
        Captured stdout and stderr. Empty when the output was streamed to
        the console.
    """

    stage = 'external process'

    def __init__(self, command, returncode, output=''):
        self.command = list(command)
        self.returncode = returncode
        self.output = output or ''
        message = "{} failed (exit code {}): {}".format(
            self.stage, returncode, ' '.join(self.command))
        if self.output:
            tail = self.output.strip().splitlines()[-20:]
            message += '\n' + '\n'.join(tail)
        super(ExternalProcessError, self).__init__(message)


class ExpressionGraphBuildError(ExternalProcessError):
    stage = 'expression graph build'


class CodeGenerationError(ExternalProcessError):
    stage = 'code generation'

    def __init__(self, message, command=(), returncode=None, output=''):
        self.command = list(command)
        self.returncode = returncode
        self.output = output
        OsimADError.__init__(self, "{} failed: {}".format(self.stage, message))


class NativeBuildError(ExternalProcessError):
    stage = 'native build'


class VerificationToolError(ExternalProcessError):
    stage = 'inverse dynamics verification'


_STAGE_ERRORS = {
    'graph': ExpressionGraphBuildError,
    'native': NativeBuildError,
    'verify': VerificationToolError,
}


def error_for_stage(stage):
    """Return the exception class reporting a failure of ``stage``."""
    if stage is None:
        return ExternalProcessError
    try:
        return _STAGE_ERRORS[stage]
    except KeyError:
        raise ValueError(
            'Unknown stage {!r}, expected one of {}'.format(
                stage, sorted(_STAGE_ERRORS)))
