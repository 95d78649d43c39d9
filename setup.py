"""
Setup configuration for the DMT loading simulator.
"""

from setuptools import setup, find_namespace_packages

setup(
    name="dmt-loading-sim",
    version="1.0.0",
    description="Adaptive bit loading and Monte-Carlo verification for DMT links",
    author="Team NoWiresAttached",
    packages=find_namespace_packages(include=["dmt", "dmt.*"]),
    install_requires=[
        "numpy",
        "scipy",
    ],
    extras_require={
        "test": ["pytest"],
    },
    python_requires=">=3.9",
)
