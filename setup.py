# setup.py - Package the semantic geometry ingestion pipeline
from setuptools import setup, find_packages

setup(
    name="semantic_geometry",
    version="0.1.0",
    packages=find_packages(include=["semantic_geometry", "semantic_geometry.*"]),
    python_requires=">=3.8",
    install_requires=[
        "numpy",
        "duckdb",
        "pyarrow",
    ],
    extras_require={
        "test": ["pytest"],
    },
)
