import os.path as osp


data_dir = osp.abspath(osp.dirname(__file__))


def models_dir():
    return osp.join(data_dir, 'models')


def double_pendulum_osim_path():
    """Planar double pendulum with two pin joints and no contacts."""
    return osp.join(models_dir(), 'double_pendulum.osim')


def leg_contacts_osim_path():
    """Two-leg model with a patella and three foot contact spheres.

    The contacts ``R_heel`` and ``foot_l`` belong to the right and left
    side; ``contact1`` has no side.
    """
    return osp.join(models_dir(), 'leg_contacts.osim')
