from setuptools import setup

setup(
    name = 'thbiga',
    version = '0.1.0',
    description = 'Truncated hierarchical B-splines and multi-patch interface coupling for Isogeometric Analysis',
    long_description = 'thbiga provides tensor product, hierarchical and truncated hierarchical B-spline bases,\n'
                       'multi-patch topology and parameter remapping across patch interfaces.',

    classifiers=[
        'Programming Language :: Python :: 3',
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Science/Research',
        'Topic :: Scientific/Engineering :: Mathematics',
    ],
    packages = ['thbiga'],

    python_requires = '>=3.8',
    install_requires = [
        'numpy>=1.17',
        'scipy',
        'networkx',
    ],
    extras_require = {
        'test': ['pytest'],
    },
)
