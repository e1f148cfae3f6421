"""
Setup script for the Sidekick runtime core package.

This package provides the DynamoDB-backed two-tier cache, voice session
concurrency control and process memory monitoring for the Sidekick backend.
"""
from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="sidekick-core",
    version="1.0.0",
    author="Sidekick Backend Team",
    description="Cache, voice session and memory management for the Sidekick backend",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.11",
    install_requires=[
        # AWS SDK
        "boto3>=1.28.85",
        "botocore>=1.31.85",

        # Process memory sampling
        "psutil>=5.9.0",
    ],
    extras_require={
        "dev": [
            # Testing
            "pytest>=7.4.3",
            "pytest-cov>=4.1.0",
            "moto[dynamodb]>=5.0.0",

            # Code quality
            "black>=23.11.0",
            "flake8>=6.1.0",
            "mypy>=1.7.1",

            # Type stubs
            "boto3-stubs[dynamodb,cloudwatch]>=1.28.85",
            "types-psutil>=5.9.0",
        ],
    },
    include_package_data=True,
    zip_safe=False,
)
