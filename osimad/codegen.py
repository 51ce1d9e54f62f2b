import importlib.util
import logging
import os
import uuid

import casadi as ca

from osimad.errors import CodeGenerationError


logger = logging.getLogger(__name__)

GRAPH_FILENAME = 'foo.py'
CODE_NAME = 'foo_jac'
SERIALIZED_FILENAME = 'F_foo.casadi'


def _load_graph_module(foo_path):
    path = os.path.join(foo_path, GRAPH_FILENAME)
    if not os.path.isfile(path):
        raise CodeGenerationError(
            'expression graph not found: {}'.format(path))
    # unique module name so that graphs of different jobs never mix
    name = 'osimad_graph_{}'.format(uuid.uuid4().hex)
    spec = importlib.util.spec_from_file_location(name, path)
    module = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        raise CodeGenerationError(
            'could not load {}: {}'.format(path, e))
    if not hasattr(module, 'foo'):
        raise CodeGenerationError('{} defines no foo()'.format(path))
    return module


def generate_f(n_inputs, foo_path, second_order_derivatives=False):
    """Generate C code of ``F`` and its derivatives from the graph.

    ``foo_jac.c`` always contains ``F`` and its Jacobian. With
    ``second_order_derivatives`` the Jacobian of the Jacobian is added as
    well, which greatly increases code generation and compilation time for
    models with many degrees of freedom.

    The function is also serialised to ``F_foo.casadi``.

    Parameters
    ----------
    n_inputs : int
        Length of the input vector of ``F``.
    foo_path : str
        Directory holding ``foo.py``. Generated files are written here.
    second_order_derivatives : bool
        Also generate second derivative information.

    Returns
    -------
    str
        Path of the generated ``foo_jac.c``.
    """
    n_inputs = int(n_inputs)
    if n_inputs <= 0:
        raise ValueError('n_inputs must be positive, got {}'.format(n_inputs))
    module = _load_graph_module(foo_path)

    try:
        arg = ca.SX.sym('arg', n_inputs)
        y = module.foo(arg)
        if isinstance(y, (tuple, list)):
            y = y[0]
        F = ca.Function('F', [arg], [y])
        jac = F.jacobian()

        cg = ca.CodeGenerator(CODE_NAME)
        cg.add(F)
        cg.add(jac)
        if second_order_derivatives:
            logger.info('Adding second derivatives, this may take a while')
            cg.add(jac.jacobian())
        cg.generate(foo_path + os.sep)
        F.save(os.path.join(foo_path, SERIALIZED_FILENAME))
    except Exception as e:
        raise CodeGenerationError(
            'could not generate code from {}: {}'.format(foo_path, e))

    c_path = os.path.join(foo_path, CODE_NAME + '.c')
    logger.info('Generated %s', c_path)
    return c_path
