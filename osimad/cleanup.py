import errno
import logging
import os
import shutil

from osimad.config import get_workspace_root
from osimad.config import leftover_script_path
from osimad.config import lock_file_path
from osimad.config import working_roots


logger = logging.getLogger(__name__)


def _remove_tree(path):
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning('Could not remove %s: %s', path, e)


def _remove_file(path):
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning('Could not remove %s: %s', path, e)


def _list_subdirectories(path):
    try:
        entries = list(os.scandir(path))
    except OSError as e:
        if e.errno not in (errno.ENOENT, errno.ENOTDIR):
            logger.warning('Could not list %s: %s', path, e)
        return []
    return [entry for entry in entries
            if entry.name not in ('.', '..')
            and entry.is_dir(follow_symlinks=False)]


def remove_all_temp_files(job_name=None, root=None):
    """Remove temporary files created while generating external functions.

    They are removed automatically when a build finishes, but can persist
    if a build was interrupted.

    Parameters
    ----------
    job_name : str, optional
        Only remove the working directories of this build. By default the
        directories of every build are removed.
    root : str, optional
        Workspace root. Defaults to :func:`osimad.config.get_workspace_root`.

    Notes
    -----
    Missing directories are ignored. Other filesystem errors are logged as
    warnings and never raised. The OpenSimAD lock file and a leftover
    ``foo.py`` are always deleted, regardless of ``job_name``.
    """
    if root is None:
        root = get_workspace_root()

    for temp_root in working_roots(root):
        for entry in _list_subdirectories(temp_root):
            if job_name is not None and entry.name != job_name:
                continue
            logger.debug('Removing %s', entry.path)
            _remove_tree(entry.path)

    for path in (lock_file_path(root), leftover_script_path(root)):
        if os.path.isfile(path):
            logger.debug('Removing %s', path)
            _remove_file(path)
