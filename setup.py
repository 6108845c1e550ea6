"""Setup configuration for vardb package"""

from setuptools import setup, find_packages

setup(
    name="vardb",
    version="0.1.0",
    author="vardb Development Team",
    description="Population-scale genomic variant database with Numba-accelerated cohort statistics",
    long_description=open("README.md").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    packages=find_packages(include=["vardb", "vardb.*"]),
    install_requires=[
        "numpy>=1.19.0",
        "scipy>=1.6.0",
        "pandas>=1.2.0",
        "h5py>=3.0.0",
        "tqdm>=4.60.0",
        "numba>=0.50.0",
    ],
    extras_require={
        # Faster VCF parsing and required for .bcf files
        "vcf": [
            "cyvcf2>=0.30.0",
        ],
        "test": [
            "pytest>=7.0",
        ],
        # Convenience extra to pull in all optional loaders
        "all": [
            "cyvcf2>=0.30.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "vardb-query=vardb.cli.utils:main",
        ],
    },
    python_requires=">=3.8",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Topic :: Scientific/Engineering :: Bio-Informatics",
    ],
)
