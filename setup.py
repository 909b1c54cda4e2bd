"""Setup script for Vigil task orchestration."""

from setuptools import find_packages, setup

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="vigil-tasks",
    version="0.1.0",
    author="Your Name",
    author_email="your.email@example.com",
    description="Task orchestration engine for crypto security and market monitors",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/yourusername/vigil",
    packages=find_packages(exclude=["tests", "tests.*"]),
    package_data={
        "vigil": ["migrations/up/*.sql", "migrations/down/*.sql"],
    },
    include_package_data=True,
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Libraries :: Application Frameworks",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.11",
    install_requires=[
        "aiosqlite>=0.19.0",
        "click>=8.0.0",
        "rich>=13.0.0",
        "pydantic>=2.0.0",
        "apscheduler>=3.10.0,<4",
        "psutil>=5.9.0",
    ],
    extras_require={
        "web": [
            "fastapi>=0.100.0",
            "uvicorn[standard]>=0.23.0",
        ],
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "httpx>=0.24.0",
            "fastapi>=0.100.0",
            "mypy>=1.0.0",
            "black>=23.0.0",
            "isort>=5.12.0",
            "ruff>=0.1.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "vigil=vigil.cli.cli:cli",
        ],
    },
)
