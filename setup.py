"""
Setup configuration for asoaudit package.
"""

from setuptools import setup, find_packages

setup(
    name="asoaudit",
    version="0.1.0",
    description="App Store Optimization metadata scoring and recommendation engine",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    install_requires=[
        # Keep in sync with requirements.txt
        "pydantic>=2.0",
        "PyYAML>=6.0",
        "python-dotenv>=1.0",
        "click>=8.0",
        "numpy>=1.24",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    package_data={
        "asoaudit": ["rulesets/*.yaml", "rulesets/*/*.yaml"],
    },
    include_package_data=True,
    entry_points={
        "console_scripts": [
            "asoaudit=asoaudit.cli.main:cli",
        ],
    },
)
