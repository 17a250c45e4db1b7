""" Perigrid setup script.

"""

import os
import re
from setuptools import setup


name = 'perigrid'
description = 'Periodic B-spline control grids for multi-resolution registration'

# Get version and docstring from the package
with open(os.path.join(os.path.dirname(__file__), name, '__init__.py')) as f:
    init_source = f.read()
__version__ = re.search(r"^__version__ = '(.*)'", init_source, re.M).group(1)
__doc__ = re.search(r'"""(.*?)"""', init_source, re.S).group(1).strip()


setup(
    name = name,
    version = __version__,
    license = '(new) BSD',

    keywords = "B-spline registration grid periodic medical",
    description = description,
    long_description = __doc__,

    platforms = 'any',
    provides = ['perigrid'],
    python_requires = '>=3.6',
    install_requires = ['numpy', 'numba'],
    extras_require = {'test': ['pytest']},

    packages = ['perigrid'],
    package_dir = {'perigrid': 'perigrid'},

    zip_safe = False,

    classifiers=[
          'Development Status :: 3 - Alpha',
          'Intended Audience :: Science/Research',
          'License :: OSI Approved :: BSD License',
          'Operating System :: OS Independent',
          'Programming Language :: Python',
          'Programming Language :: Python :: 3',
          ],
    )
