"""Setup script for icare-extraction package following Cosmic Python pattern."""

from setuptools import setup, find_packages

setup(
    name="icare-extraction",
    version="1.0.0",
    description="ICAREdata extraction client - extracts mCODE data per patient and posts FHIR messages",
    author="ICAREdata Extraction Team",
    package_dir={"": "src"},
    packages=find_packages("src"),
    python_requires=">=3.11",
    install_requires=[
        "pydantic",
        "requests",
        "fhirpathpy",
        "python-dateutil",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "pytest-cov",
        ],
        "dev": [
            "black",
            "flake8",
            "mypy",
            "pre-commit",
        ],
    },
    entry_points={
        "console_scripts": [
            "icare-extract=icare_extraction.entrypoints.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Healthcare Industry",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3.11",
        "Topic :: Scientific/Engineering :: Medical Science Apps.",
    ],
)
