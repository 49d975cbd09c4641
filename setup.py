"""Package setup for Fiscal Credit Engine."""

from setuptools import setup, find_packages

setup(
    name="fiscal-credit-engine",
    version="1.0.0",
    description="Brazilian fiscal document parsing, tax credit recovery, and regime comparison",
    long_description=open("README.md", encoding="utf-8").read(),
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*", "examples"]),
    python_requires=">=3.10",
    install_requires=[
        "rich>=13.0",
        "pandas>=2.0",
        "loguru>=0.7",
        "python-dotenv>=1.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "fiscal-engine=fiscal_engine.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Financial and Insurance Industry",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Office/Business :: Financial :: Accounting",
    ],
    keywords="tax credits sped pgdas nfe simples-nacional regime-comparison",
)
