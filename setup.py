"""Setup script for BatchGrader project."""

from setuptools import setup, find_packages
import os

# Read version from __init__.py
def get_version():
    init_file = os.path.join(os.path.dirname(__file__), 'src', 'batchgrader', '__init__.py')
    with open(init_file, 'r') as f:
        for line in f:
            if line.startswith('__version__'):
                return line.split('=')[1].strip().strip('"').strip("'")
    raise RuntimeError('Unable to find version string.')

setup(
    name="batchgrader",
    version=get_version(),
    description="Batch autograder for zipped student web-server projects",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.8",
    install_requires=[
        "pyyaml>=5.4.1",
        "requests>=2.25",
        "pymongo>=4.0",
        "rich>=12.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ]
    },
    entry_points={
        "console_scripts": [
            "batchgrader=batchgrader.autograder:main",
        ],
    },
)
