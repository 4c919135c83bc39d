"""
Form Builder setup.py — Package configuration.
"""

from setuptools import find_packages, setup

setup(
    name="formbuilder",
    version="1.0.0",
    description="Form Builder — revisioned forms, publication and submissions engine",
    packages=find_packages(include=["formbuilder", "formbuilder.*"]),
    python_requires=">=3.11",
    install_requires=[
        "sqlalchemy>=2.0",
        "pydantic>=2.5",
        "pyyaml>=6.0",
        "httpx>=0.27",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
        ],
    },
)
