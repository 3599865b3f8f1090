#!/usr/bin/env python3
"""Setup script for shared_clustering package.
"""

from setuptools import find_packages, setup

setup(
    name="shared-clustering",
    version="1.0.0",
    description="Hierarchical clustering of DNA matches by shared match lists",
    author="Shared Clustering Team",
    packages=find_packages(include=["shared_clustering*"]),
    python_requires=">=3.10",
    install_requires=[
        "pandas>=1.5.0",
        "numpy>=1.23.0",
        "pyyaml>=6.0",
        "joblib>=1.2.0",
        "psutil>=5.9.0",
        "tqdm>=4.64.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "hypothesis>=6.0.0",
        ],
        "dev": [
            "pytest>=7.0.0",
            "hypothesis>=6.0.0",
            "black>=23.0.0",
            "ruff>=0.1.0",
            "mypy>=1.5.0",
            "pandas-stubs>=2.0.0",
            "types-PyYAML>=6.0.0",
            "types-psutil>=5.9.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "shared-clustering=shared_clustering.cli:main",
        ],
    },
)
