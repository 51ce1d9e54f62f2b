#!/usr/bin/env python

import argparse
import json
import logging
import os
import sys

from osimad.errors import OsimADError
from osimad.pipeline import generate_external_function


SETTINGS_KEYS = (
    'joints_order', 'coordinates_order',
    'input_3d_body_forces', 'input_3d_body_moments',
    'export_3d_positions', 'export_3d_velocities',
)


def load_settings(path):
    """Read the list-valued options from a JSON file.

    Unknown keys are rejected so that typos do not go unnoticed.
    """
    with open(path) as f:
        settings = json.load(f)
    if not isinstance(settings, dict):
        raise ValueError('Settings file must hold a JSON object')
    unknown = sorted(set(settings) - set(SETTINGS_KEYS))
    if unknown:
        raise ValueError('Unknown settings: {}. Allowed: {}'.format(
            ', '.join(unknown), ', '.join(SETTINGS_KEYS)))
    return settings


def main():
    parser = argparse.ArgumentParser(
        description='Generate a CasADi external function computing inverse '
                    'dynamics of an OpenSim model.',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Build F.so (or F.dll / F.dylib) next to the model
  generate_external_function model.osim out

  # Export separate contact forces and verify against the ID tool
  generate_external_function model.osim out --name F_gait \\
      --export-separate-grfs --verify-id

  # Orders, body forces and exported points from a JSON file
  generate_external_function model.osim out --settings settings.json
        """)
    parser.add_argument(
        'model',
        type=str,
        help='Path to the OpenSim model (.osim)')
    parser.add_argument(
        'output_dir',
        type=str,
        help='Directory receiving the generated files')
    parser.add_argument(
        '--name', '-n',
        type=str,
        default='F',
        help='Name of the generated files (default: F)')
    parser.add_argument(
        '--compiler',
        type=str,
        default=None,
        help="CMake generator, e.g. 'Visual Studio 17 2022'")
    parser.add_argument(
        '--settings',
        type=str,
        default=None,
        help='JSON file with any of: {}'.format(', '.join(SETTINGS_KEYS)))
    parser.add_argument(
        '--no-grfs',
        action='store_true',
        help='Do not export total ground reaction forces')
    parser.add_argument(
        '--no-grms',
        action='store_true',
        help='Do not export total ground reaction moments')
    parser.add_argument(
        '--export-separate-grfs',
        action='store_true',
        help='Export the ground reaction force of each contact element')
    parser.add_argument(
        '--export-contact-powers',
        action='store_true',
        help='Export the deformation power of each contact element')
    parser.add_argument(
        '--verify-id',
        action='store_true',
        help='Verify the function against the OpenSim ID tool')
    parser.add_argument(
        '--second-order',
        action='store_true',
        help='Also generate second derivative information')
    parser.add_argument(
        '--no-dll',
        action='store_true',
        help='Stop after code generation, do not compile the library')
    parser.add_argument(
        '--no-import-library',
        action='store_true',
        help='Do not copy the import library (.lib) on Windows')
    parser.add_argument(
        '--ignore-exit-codes',
        action='store_true',
        help='Only log failing external tools instead of aborting')
    parser.add_argument(
        '--unique-job-dir',
        action='store_true',
        help='Use unique temporary directories for this build')
    parser.add_argument(
        '--root',
        type=str,
        default=None,
        help='Workspace root (default: $OSIMAD_ROOT or ~/.osimad)')
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Show the output of the external tools')

    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.INFO, format='%(message)s')
    else:
        logging.basicConfig(level=logging.WARNING, format='%(message)s')

    if not os.path.exists(args.model):
        print("Error: Model file '{}' not found".format(args.model),
              file=sys.stderr)
        sys.exit(1)

    try:
        settings = {}
        if args.settings:
            settings = load_settings(args.settings)

        result = generate_external_function(
            args.model, args.output_dir,
            export_grfs=not args.no_grfs,
            export_grms=not args.no_grms,
            export_separate_grfs=args.export_separate_grfs,
            export_contact_powers=args.export_contact_powers,
            output_filename=args.name,
            compiler=args.compiler,
            verbose_mode=args.verbose,
            verify_id=args.verify_id,
            second_order_derivatives=args.second_order,
            no_dll=args.no_dll,
            import_library=not args.no_import_library,
            check_exit_codes=not args.ignore_exit_codes,
            root=args.root,
            unique_job_dir=args.unique_job_dir,
            **settings)
    except (OsimADError, ValueError, OSError) as e:
        print("Error: {}".format(e), file=sys.stderr)
        sys.exit(1)

    print("Generated {} ({} inputs, {} outputs)".format(
        args.name, result.io_map.n_inputs, result.io_map.n_outputs))
    for path in result.artifacts:
        print("  {}".format(path))
    if result.verification is not None:
        status = 'passed' if result.verification.passed else 'FAILED'
        print("Verification {} (max error {:.3g})".format(
            status, result.verification.max_error))


if __name__ == '__main__':
    main()
