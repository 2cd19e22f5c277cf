#!/usr/bin/env python
from setuptools import setup, find_packages

if __name__ == "__main__":

    setup(
        name='stackciv',
        version='0.1.0',
        description='Rest-frame stacking of absorption-line spectra with '
                    'continuum fitting and resampling errors',
        package_dir={'': 'src'},
        packages=find_packages(where='src'),
        python_requires='>=3.9',
        install_requires=[
            'astropy',
            'numpy',
            'scipy',
            'tqdm',
        ],
        extras_require={
            'test': ['pytest'],
        },
    )
