#!/usr/bin/env python3
# =============================================================================
#  irflow - setup.py
#
#  For development:
#      pip install -e ".[dev]"
#      python -m pytest
# =============================================================================

from __future__ import annotations

import re
from pathlib import Path

from setuptools import setup, find_packages

# ---------------------------------------------------------------------------
#  Read version from the package so we have a single source of truth.
# ---------------------------------------------------------------------------
_HERE = Path(__file__).resolve().parent


def _read_version() -> str:
    """Extract ``__version__`` from irflow/__init__.py."""
    init = _HERE / "irflow" / "__init__.py"
    text = init.read_text(encoding="utf-8")
    match = re.search(r'^__version__\s*=\s*"([^"]+)"', text, re.MULTILINE)
    if match:
        return match.group(1)
    return "0.0.0"


def _read_long_description() -> str:
    """Read README.md for the long description."""
    readme = _HERE / "README.md"
    if readme.exists():
        return readme.read_text(encoding="utf-8")
    return ""


setup(
    name="irflow",
    version=_read_version(),
    description=(
        "Whole-program dataflow analysis engine: fixed-point solvers, "
        "CHA call graphs, ICFGs, constant propagation and dead-code detection."
    ),
    long_description=_read_long_description(),
    long_description_content_type="text/markdown",
    license="MIT",
    author="irflow contributors",
    python_requires=">=3.10",
    packages=find_packages(
        include=[
            "irflow",
            "irflow.*",
        ],
        exclude=[
            "tests",
            "tests.*",
        ],
    ),
    install_requires=[],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "pytest-cov>=4.0",
            "ruff>=0.4",
            "mypy>=1.10",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "Topic :: Software Development :: Quality Assurance",
        "Topic :: Software Development :: Compilers",
    ],
    keywords=[
        "static-analysis",
        "data-flow",
        "control-flow",
        "call-graph",
        "constant-propagation",
        "program-analysis",
    ],
    zip_safe=False,
)
