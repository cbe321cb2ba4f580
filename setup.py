"""
Setup script for notioneringsledger-sync.

Keeps the shared lecture roster of a study group in step with each
member's Notion lecture database:

1. Bulk seed - every lecture exists in every user's database
2. Selection sync - one user's pick is mirrored to everyone
3. Job tracking - progress is persisted and polled over HTTP or the CLI

The 'ledger' command is the CLI entry point; the API is served by
`python main.py` (uvicorn).
"""

from setuptools import find_packages, setup

setup(
    name="notioneringsledger-sync",
    version="0.1.0",
    description="Lecture roster -> Notion sync engine with durable job tracking",
    long_description=open("README.md", encoding="utf-8").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    packages=find_packages(include=["ledger_sync", "ledger_sync.*"]),
    py_modules=["config", "main"],
    python_requires=">=3.10",
    install_requires=[
        # CLI
        "typer>=0.9.0",
        "rich>=13.0.0",
        # Database
        "sqlalchemy>=2.0.0",
        "psycopg2-binary>=2.9.0",
        # Config & Validation
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        # HTTP
        "httpx>=0.25.0",
        "notion-client>=2.2.0",
        "fastapi>=0.100.0",
        "uvicorn>=0.23.0",
        # Logging
        "loguru>=0.7.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "ruff>=0.1.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "ledger=ledger_sync.cli.main:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Framework :: FastAPI",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Education",
    ],
    keywords="notion sync lectures roster",
)
