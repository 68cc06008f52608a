# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Setup configuration for panel-error-tracker package."""

from pathlib import Path

from setuptools import find_packages, setup

# Read the README file
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text(encoding="utf-8")

setup(
    name="panel-error-tracker",
    version="0.1.0",
    author="Copilot-for-Consensus Contributors",
    description="Error aggregation and reporting pipeline with fingerprint deduplication",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.10",
    install_requires=[
        "pymongo>=4.6.3",  # MongoDB client
        "prometheus-client>=0.19.0",  # Tracker health metrics
        "fastapi>=0.110.0",  # Operator REST API
        "starlette>=0.36.0",  # Request middleware
        "pydantic>=2.0.0",  # API response models
        "pyyaml>=6.0",  # YAML configuration files
        "uvicorn>=0.27.0",  # ASGI server for main.py
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "httpx>=0.26.0",
            "pylint>=3.0.0",
            "mypy>=1.0.0",
        ],
        "test": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "httpx>=0.26.0",  # Required by fastapi.testclient
        ],
    },
)
