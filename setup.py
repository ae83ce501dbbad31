#! /usr/bin/env python

import os
from setuptools import setup

# Deduce the version from the __init__.py file:
version = None
with open(os.path.join(os.path.dirname(__file__), 'surfdemons', '__init__.py'), 'r') as fid:
    for line in (line.strip() for line in fid):
        if line.startswith('__version__'):
            version = line.split('=')[1].strip().strip('\'')
            break
if version is None: raise ValueError('No version found in surfdemons/__init__.py!')

setup(
    name='surfdemons',
    version=version,
    description='Spherical demons registration of genus-0 cortical surfaces',
    keywords='neuroscience mesh cortex registration demons',
    long_description='''
                     surfdemons registers the spherical embedding of one genus-0 surface to that
                     of another by demons-style alignment of the surfaces' depth potentials.
                     ''',
    license='GPLv3',
    classifiers=['Development Status :: 3 - Alpha',
                 'Intended Audience :: Science/Research',
                 'Intended Audience :: Developers',
                 'License :: OSI Approved :: GNU General Public License v3 or later (GPLv3+)',
                 'Programming Language :: Python :: 3',
                 'Topic :: Software Development :: Libraries :: Python Modules',
                 'Topic :: Scientific/Engineering',
                 'Topic :: Scientific/Engineering :: Medical Science Apps.',
                 'Operating System :: POSIX',
                 'Operating System :: Unix',
                 'Operating System :: MacOS'],
    packages=['surfdemons',
              'surfdemons.util',
              'surfdemons.io',
              'surfdemons.geometry',
              'surfdemons.features',
              'surfdemons.registration',
              'surfdemons.commands',
              'surfdemons.test'],
    python_requires='>=3.8',
    install_requires=['numpy>=1.20',
                      'scipy>=1.12',
                      'nibabel>=4.0',
                      'pyrsistent>=0.11',
                      'pimms>=0.3',
                      'pandas>=1.0'],
    extras_require={
        'test': ['pytest>=6.0']})
