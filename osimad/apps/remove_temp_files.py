#!/usr/bin/env python

import argparse
import logging

from osimad.cleanup import remove_all_temp_files
from osimad.config import get_workspace_root


def main():
    """Remove build directories left behind by interrupted builds."""
    parser = argparse.ArgumentParser(
        description='Remove temporary files created while generating '
                    'external functions.')
    parser.add_argument(
        'job_name',
        type=str,
        nargs='?',
        default=None,
        help='Only remove the directories of this build')
    parser.add_argument(
        '--root',
        type=str,
        default=None,
        help='Workspace root (default: $OSIMAD_ROOT or ~/.osimad)')
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Print removed paths')

    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format='%(message)s')
    else:
        logging.basicConfig(level=logging.WARNING, format='%(message)s')

    root = args.root or get_workspace_root()
    remove_all_temp_files(args.job_name, root=root)
    if args.job_name:
        print("Removed temporary files of '{}' in {}".format(
            args.job_name, root))
    else:
        print("Removed temporary files in {}".format(root))


if __name__ == '__main__':
    main()
