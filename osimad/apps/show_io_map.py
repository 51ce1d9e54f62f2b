#!/usr/bin/env python

import argparse
import os
import sys

import numpy as np

from osimad.io_map import load_io_map


def _format_indices(value):
    values = np.atleast_1d(value).tolist()
    if len(values) == 1:
        return str(values[0])
    return '{}-{}'.format(values[0], values[-1])


def _print_group(title, entries, indent='  '):
    print('{}{}:'.format(indent, title))
    for name, value in sorted(entries.items(),
                              key=lambda kv: np.min(kv[1])):
        print('{}  {:<24s} {}'.format(indent, name, _format_indices(value)))


def main():
    """Print the index map stored in an ``_IO.mat`` file."""
    parser = argparse.ArgumentParser(
        description='Show the 1-based input/output indices of a generated '
                    'external function.')
    parser.add_argument(
        'io_file',
        type=str,
        help='Path to the <name>_IO.mat file')

    args = parser.parse_args()

    if not os.path.exists(args.io_file):
        print("Error: File '{}' not found".format(args.io_file),
              file=sys.stderr)
        sys.exit(1)

    try:
        io = load_io_map(args.io_file)
    except ValueError as e:
        print("Error: {}".format(e), file=sys.stderr)
        sys.exit(1)

    print('Coordinates: {}'.format(int(io['nCoordinates'])))
    print('Inputs: {}'.format(int(io['input']['nInputs'])))
    for group in ('Qs', 'Qdots', 'Qdotdots', 'forces', 'moments'):
        if group in io['input']:
            _print_group(group, io['input'][group])
    print('Outputs: {}'.format(int(io['output']['nOutputs'])))
    _print_group('torques', io['coordi'])
    for group in ('position', 'velocity'):
        if group in io['output']:
            _print_group(group, io['output'][group])
    for group in ('GRFs', 'GRMs', 'separateGRFs', 'contactPowers'):
        if group in io:
            _print_group(group, io[group])


if __name__ == '__main__':
    main()
