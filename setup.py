"""
Setup script for flagcore package.

Feature flag resolution engine: registry, reconciliation, overrides, client cache.
"""

from setuptools import setup, find_packages

setup(
    name="flagcore",
    version="0.1.0",
    description="Feature flag resolution engine with scoped overrides and idempotent reconciliation",
    packages=find_packages(include=["flagcore", "flagcore.*"]),
    python_requires=">=3.11",
    install_requires=[
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        "structlog>=23.0.0",
        "prometheus-client>=0.17.0",
        "httpx>=0.25.0",
    ],
    extras_require={
        "postgres": [
            "sqlalchemy[asyncio]>=2.0.0",
            "asyncpg>=0.28.0",
        ],
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "sqlalchemy[asyncio]>=2.0.0",
            "asyncpg>=0.28.0",
        ],
    },
)
