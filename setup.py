import os

from setuptools import find_packages
from setuptools import setup


version = '0.1.0'


def listup_package_data():
    data_files = []
    for root, _, files in os.walk('osimad/data'):
        for filename in files:
            if filename.endswith('.py'):
                continue
            data_files.append(
                os.path.join(
                    root[len('osimad/'):],
                    filename))
    return data_files


def read_requirements(filename):
    requires = []
    with open(filename) as f:
        for line in f:
            req = line.split('#')[0].strip()
            if req:
                requires.append(req)
    return requires


install_requires = read_requirements('requirements.txt')
test_install_requires = read_requirements('requirements_test.txt')


console_scripts = [
    "osimad=osimad.apps.cli:main",
    "osimad-generate=osimad.apps.generate_external_function:main",
    "osimad-clean=osimad.apps.remove_temp_files:main",
    "osimad-io=osimad.apps.show_io_map:main",
]


setup(
    name='osim-ad',
    version=version,
    description='Generate CasADi external functions from OpenSim models '
                'with OpenSimAD',
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
    license='Apache-2.0',
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Science/Research',
        'Natural Language :: English',
        'License :: OSI Approved :: Apache Software License',
        'Programming Language :: Python',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Programming Language :: Python :: Implementation :: CPython',
    ],
    packages=find_packages(exclude=('tests', 'tests.*')),
    package_data={'osimad': listup_package_data()},
    zip_safe=False,
    install_requires=install_requires,
    entry_points={
        "console_scripts": console_scripts,
    },
    extras_require={
        'test': test_install_requires,
        'all': test_install_requires,
    },
)
