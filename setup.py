# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

from setuptools import find_packages, setup

setup(
    name="meridian-runtime",
    version="0.1.0",
    description="Graph execution engine for inference graphs with control flow",
    author="Wahyu Ardiansyah",
    license="Apache-2.0",
    packages=find_packages(include=("meridian", "meridian.*")),
    python_requires=">=3.9",
    install_requires=[
        "numpy>=1.24",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "hypothesis>=6.0",
        ],
    },
)
