"""
Setup shim for face2head.

Package metadata, dependencies and the face2head console script are
declared in pyproject.toml; this file only serves pip versions that
cannot build from pyproject.toml alone.
"""

from setuptools import setup

setup()
