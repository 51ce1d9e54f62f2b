import os
import os.path as osp
import uuid


_default_root = osp.expanduser('~/.osimad')

GRAPH_BUILD_DIRNAME = 'buildExpressionGraph'
NATIVE_BUILD_DIRNAME = 'buildExternalFunction'
INSTALL_DIRNAME = 'installExternalFunction'
SDK_DIRNAME = 'OpenSimAD-install'
LOCK_FILENAME = 'lockFile.txt'
LEFTOVER_SCRIPT_FILENAME = 'foo.py'

WORKING_DIRNAMES = (GRAPH_BUILD_DIRNAME, NATIVE_BUILD_DIRNAME,
                    INSTALL_DIRNAME)


def get_workspace_root():
    """Return the root of the working-directory tree.

    The root is read from ``OSIMAD_ROOT`` and defaults to ``~/.osimad``.
    It holds the three per-job working roots and the OpenSimAD SDK.
    """
    return os.environ.get('OSIMAD_ROOT', _default_root)


def template_dir(name):
    """Return the packaged CMake template directory ``name``.

    Parameters
    ----------
    name : str
        Either ``'buildExpressionGraph'`` or ``'buildExternalFunction'``.
    """
    path = osp.join(osp.dirname(osp.abspath(__file__)), 'data', name)
    if not osp.isfile(osp.join(path, 'CMakeLists.txt')):
        raise FileNotFoundError(
            'CMake template not found: {}'.format(path))
    return path


def working_roots(root=None):
    """Return the three working roots below ``root``.

    Returns
    -------
    tuple of str
        Expression graph build root, native build root and install root.
    """
    if root is None:
        root = get_workspace_root()
    return tuple(osp.join(root, name) for name in WORKING_DIRNAMES)


def sdk_bin_dir(root=None):
    if root is None:
        root = get_workspace_root()
    return osp.join(root, SDK_DIRNAME, 'bin')


def lock_file_path(root=None):
    return osp.join(sdk_bin_dir(root), LOCK_FILENAME)


def leftover_script_path(root=None):
    return osp.join(sdk_bin_dir(root), LEFTOVER_SCRIPT_FILENAME)


class JobContext(object):
    """Paths used by one external-function build.

    All paths are computed once from ``root`` and the job's directory name
    and passed explicitly to every stage.

    Parameters
    ----------
    job_name : str
        Name of the generated function files (``<job_name>.dll`` etc.).
    root : str, optional
        Workspace root. Defaults to :func:`get_workspace_root`.
    dir_name : str, optional
        Name of the per-job subdirectories. Defaults to ``job_name``.
    """

    def __init__(self, job_name, root=None, dir_name=None):
        if not job_name:
            raise ValueError('job_name must be a non-empty string')
        if osp.basename(job_name) != job_name or job_name in ('.', '..'):
            raise ValueError(
                'job_name must be a plain file name, got {!r}'.format(
                    job_name))
        self.job_name = job_name
        self.root = osp.abspath(root or get_workspace_root())
        self.dir_name = dir_name or job_name

        (self.graph_build_root,
         self.native_build_root,
         self.install_root) = working_roots(self.root)
        self.graph_build_dir = osp.join(self.graph_build_root, self.dir_name)
        self.native_build_dir = osp.join(self.native_build_root,
                                         self.dir_name)
        self.install_dir = osp.join(self.install_root, self.dir_name)

        self.sdk_dir = osp.join(self.root, SDK_DIRNAME)
        self.sdk_bin_dir = osp.join(self.sdk_dir, 'bin')
        self.lock_file = osp.join(self.sdk_bin_dir, LOCK_FILENAME)
        self.leftover_script = osp.join(self.sdk_bin_dir,
                                        LEFTOVER_SCRIPT_FILENAME)
        self.job_lock_path = osp.join(self.root, self.dir_name + '.lock')

    @classmethod
    def create(cls, job_name, root=None, unique=False):
        """Create a context, optionally with a unique directory name.

        With ``unique=True`` the job directories are named
        ``<job_name>_<8 hex digits>`` so that concurrent builds of the same
        function never share working directories.
        """
        dir_name = None
        if unique:
            dir_name = '{}_{}'.format(job_name, uuid.uuid4().hex[:8])
        return cls(job_name, root=root, dir_name=dir_name)

    @property
    def job_dirs(self):
        return (self.graph_build_dir, self.native_build_dir,
                self.install_dir)

    def make_dirs(self):
        for path in self.job_dirs:
            os.makedirs(path, exist_ok=True)
        os.makedirs(self.sdk_bin_dir, exist_ok=True)

    def __repr__(self):
        return '<JobContext {!r} root={!r}>'.format(self.dir_name, self.root)
