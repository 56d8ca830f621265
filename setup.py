#!/usr/bin/env python3
"""
ITQ-LSH Package Setup

Installation script for the ITQ-LSH (Iterative Quantization Hashing) package.
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read README for long description
readme_path = Path(__file__).parent / "README.md"
long_description = readme_path.read_text(encoding="utf-8") if readme_path.exists() else ""

setup(
    name="itqlsh",
    version="1.0.0",
    description="Iterative Quantization hashing with multi-probe search for Approximate Nearest Neighbor Search",
    long_description=long_description,
    long_description_content_type="text/markdown",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
        "Topic :: Scientific/Engineering :: Information Analysis",
        "Topic :: Database :: Database Engines/Servers",
    ],
    keywords=[
        "nearest-neighbor-search",
        "approximate-nearest-neighbors",
        "ann",
        "vector-search",
        "similarity-search",
        "lsh",
        "hashing",
        "iterative-quantization",
        "multi-probe",
    ],
    packages=find_packages(exclude=["tests*", "benchmarks*", "examples*", "docs*"]),
    python_requires=">=3.9",
    install_requires=[
        "numpy>=1.20.0",
        "scipy>=1.7.0",
        "numba>=0.55.0",
        "tqdm>=4.64.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "black>=23.0.0",
            "isort>=5.12.0",
            "mypy>=1.0.0",
            "flake8>=6.0.0",
        ],
        "benchmark": [
            "hnswlib>=0.7.0",
        ],
        "all": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "black>=23.0.0",
            "isort>=5.12.0",
            "mypy>=1.0.0",
            "flake8>=6.0.0",
            "hnswlib>=0.7.0",
        ],
    },
    include_package_data=True,
    zip_safe=False,
)
