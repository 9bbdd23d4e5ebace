#!/usr/bin/env python3
"""
Setup script for replay-sandbox package
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read the README file
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text(encoding='utf-8')

# Read requirements
requirements = []
with open(this_directory / 'requirements.txt', 'r') as f:
    for line in f:
        line = line.strip()
        if line and not line.startswith('#'):
            requirements.append(line)

setup(
    name="replay-sandbox",
    version="0.1.0",
    description="Replay-based execution of student Python programs with simulated input suspension, batch grading and challenge sessions",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["replay_sandbox", "replay_sandbox.*"]),
    python_requires=">=3.10",
    install_requires=requirements,
    extras_require={
        "dev": [
            "pytest>=7.0.0",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Intended Audience :: Education",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    entry_points={
        "console_scripts": [
            "replay-sandbox=replay_sandbox.main:main",
        ],
    },
)
