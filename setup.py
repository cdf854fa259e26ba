from setuptools import setup, find_packages

with open('README.md') as f:
    long_description = f.read()

setup(
    name="mssql_api_bridge",
    version="0.1.0",
    description="A FastAPI-based CRUD API and OpenAPI generator for SQL Server tables and views",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "fastapi",
        "sqlalchemy>=2.0",
        "pymssql",
        "uvicorn",
        "pydantic>=2",
        "pydantic-settings",
        "pyyaml",
        "structlog",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "httpx",
        ],
    },
    entry_points={
        "console_scripts": [
            "mssql-api-bridge=mssql_bridge.cli:main",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.9",
    long_description=long_description,
    long_description_content_type='text/markdown',
)
