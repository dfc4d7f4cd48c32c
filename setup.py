"""
Setup script for the cross_asset package.

Pure Python; sources live under src/python.
"""

from setuptools import find_packages, setup

setup(
    name="cross-asset-model",
    version="1.0.0",
    description="Cross-asset stochastic model construction, calibration and simulation",
    package_dir={"": "src/python"},
    packages=find_packages(where="src/python", include=["cross_asset", "cross_asset.*"]),
    python_requires=">=3.8",
    install_requires=[
        "numpy>=1.21",
        "scipy>=1.7",
        "pandas>=1.3",
    ],
    extras_require={
        "yaml": ["pyyaml>=5.4"],
        "test": ["pytest>=7.0", "pyyaml>=5.4"],
    },
    zip_safe=False,
)
