"""LexLedger setup - offline-first store, sync queue and audit log."""
from setuptools import setup, find_packages

setup(
    name="lexledger",
    version="0.1.0",
    description="LexLedger: offline-first local store, sync queue and tamper-evident audit log",
    packages=find_packages(include=["lexledger", "lexledger.*", "lexledger_cli", "lexledger_cli.*"]),
    python_requires=">=3.10",
    install_requires=[
        "click>=8.0",
        "blake3>=0.3",
        "requests>=2.28",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "lexledger=lexledger_cli.main:cli",
        ],
    },
)
