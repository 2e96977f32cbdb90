#!/usr/bin/env python3
# -*- coding: utf-8 -*-

from setuptools import setup, find_packages

# Read version from __init__.py
with open("src/quiz_lead_processor/__init__.py", "r") as f:
    for line in f:
        if line.startswith("__version__"):
            version = line.split("=")[1].strip().strip('"').strip("'")
            break
    else:
        version = "0.0.1"

# Read long description from README.md
with open("README.md", "r", encoding="utf-8") as f:
    long_description = f.read()

setup(
    name="quiz-lead-processor",
    version=version,
    description="Asynchronous AI processing core for quiz lead-generation campaigns",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="GoAIX",
    author_email="dev@goaiex.com",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    include_package_data=True,
    python_requires=">=3.9",
    install_requires=[
        "python-dotenv>=1.0.1",
        "pydantic>=2.6.1",
        "tenacity>=8.2.3",
        "apscheduler>=3.10.4,<4",
        "pytz>=2024.1",
        "psutil>=5.9.8",
        "httpx>=0.27.0",
        "openai>=1.30.0",
        "redis>=5.0.1",
    ],
    extras_require={
        "test": [
            "pytest>=8.0.0",
            "pytest-asyncio>=0.23.5",
            "pytest-cov>=4.1.0",
            "fakeredis>=2.21.0",
        ],
        "dev": [
            "pytest>=8.0.0",
            "pytest-asyncio>=0.23.5",
            "pytest-cov>=4.1.0",
            "fakeredis>=2.21.0",
            "black>=24.1.0",
            "ruff>=0.1.15",
            "mypy>=1.8.0",
            "isort>=5.13.2",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
)
