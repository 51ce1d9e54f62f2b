#!/usr/bin/env python

import argparse
import os
import sys


def get_available_apps():
    """Dynamically discover available apps in the apps directory."""
    apps_dir = os.path.dirname(__file__)
    apps = {}

    app_metadata = {
        'generate_external_function':
            'Generate a CasADi external function from an OpenSim model',
        'remove_temp_files': 'Remove temporary build directories',
        'show_io_map': 'Show the input/output index map of a function',
    }

    for filename in sorted(os.listdir(apps_dir)):
        if filename.endswith('.py') and filename not in ('__init__.py',
                                                         'cli.py'):
            app_name = filename[:-3]
            try:
                module_path = 'osimad.apps.{}'.format(app_name)
                module = __import__(module_path, fromlist=['main'])
            except ImportError:
                continue
            if hasattr(module, 'main'):
                command_name = app_name.replace('_', '-')
                apps[command_name] = {
                    'module': module_path,
                    'help': app_metadata.get(
                        app_name, 'Run {}'.format(command_name)),
                }
    return apps


def main():
    parser = argparse.ArgumentParser(
        prog='osimad',
        description='OpenSimAD external function CLI tool'
    )

    subparsers = parser.add_subparsers(
        dest='command',
        help='Available commands'
    )

    available_apps = get_available_apps()
    for command_name, app_info in available_apps.items():
        app_parser = subparsers.add_parser(
            command_name,
            help=app_info['help'],
            add_help=False
        )
        app_parser.set_defaults(
            func=lambda args, module=app_info['module']: run_app(
                '{}:main'.format(module), args)
        )

    args, unknown = parser.parse_known_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    # Pass remaining arguments to the subcommand
    sys.argv = [args.command] + unknown
    args.func(args)


def run_app(module_path, args):
    module_name, func_name = module_path.split(':')
    module = __import__(module_name, fromlist=[func_name])
    func = getattr(module, func_name)
    func()


if __name__ == '__main__':
    main()
