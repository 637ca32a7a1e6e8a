"""
Setup script for the Stationery Dataset Builder.

This setup script configures the project for installation and distribution.

Author: Stationery Dataset Builder Team
Date: October 2026
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read README for long description
def read_readme():
    readme_path = Path(__file__).parent / "README.md"
    if readme_path.exists():
        with open(readme_path, "r", encoding="utf-8") as fh:
            return fh.read()
    return "Stationery Dataset Builder - Open Images acquisition and YOLO conversion"

# Read requirements
def read_requirements():
    requirements_path = Path(__file__).parent / "requirements.txt"
    if requirements_path.exists():
        with open(requirements_path, "r", encoding="utf-8") as fh:
            return [
                line.strip()
                for line in fh
                if line.strip() and not line.startswith("#") and not line.startswith("--")
            ]
    return []

setup(
    name="stationery-dataset-builder",
    version="1.0.0",
    author="Stationery Dataset Builder Team",
    author_email="contact@example.com",
    description="Resumable Open Images acquisition and YOLO label conversion for stationery detection",
    long_description=read_readme(),
    long_description_content_type="text/markdown",

    # Package configuration
    packages=find_packages(include=["src", "src.*"]),
    package_dir={"": "."},

    # Dependencies
    python_requires=">=3.8",
    install_requires=read_requirements(),

    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-cov>=4.1.0",
            "pytest-mock>=3.11.1",
            "pytest-timeout>=2.1.0",
            "black>=23.7.0",
            "flake8>=6.0.0",
            "isort>=5.12.0",
        ],
        "test": [
            "pytest>=7.4.0",
            "pytest-cov>=4.1.0",
            "pytest-mock>=3.11.1",
            "pytest-timeout>=2.1.0",
        ],
    },

    # Entry points for command-line tools
    entry_points={
        "console_scripts": [
            "stationery-build-dataset=src.data_preparation.build_dataset:main",
        ],
    },

    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Science/Research",
        "Topic :: Scientific/Engineering :: Image Recognition",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Operating System :: OS Independent",
    ],

    keywords=[
        "computer-vision", "object-detection", "yolo", "open-images",
        "dataset", "annotation-conversion"
    ],

    include_package_data=True,
    zip_safe=False,

    # License
    license="MIT",
    platforms=["any"],
)
