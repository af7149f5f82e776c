#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Setup script for the AgriTrace EUDR compliance workflow engine.
"""

from pathlib import Path

from setuptools import find_packages, setup

VERSION = "1.0.0"

# Read README for long description
readme_file = Path(__file__).parent / "README.md"
if readme_file.exists():
    long_description = readme_file.read_text(encoding="utf-8")
else:
    long_description = "AgriTrace EUDR Compliance Workflow Engine"

setup(
    name="agritrace-eudr",
    version=VERSION,
    description="EUDR compliance workflow engine for agricultural commodity traceability",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="AgriTrace Team",
    license="MIT",
    packages=find_packages(include=["agritrace", "agritrace.*"]),
    python_requires=">=3.9",
    install_requires=[
        "pydantic>=2",
        "prometheus_client",
    ],
    extras_require={
        "test": ["pytest"],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
)
