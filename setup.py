from setuptools import setup, find_packages

setup(
    name="mitograph",
    version="3.1.0",
    packages=find_packages(exclude=['tests']),
    py_modules=['run_segmentation'],
    install_requires=[
        'numpy',
        'SimpleITK',
        'scipy',
        'tqdm',
        'scikit-image',
        'networkx',
        'vtk'
    ],
    extras_require={
        'test': ['pytest'],
    },
    entry_points={
        'console_scripts': ['mitograph=run_segmentation:main'],
    },
)
