"""
Setup script for mockforge.

MockForge generates complete mock exams from previous-year papers and
reference mocks using the Gemini API. It spreads work across a pool of
API keys, recovers truncated or malformed JSON, continues short
responses until the target question count is reached, and renders the
result as a slide deck, PDF or JSON.

The 'mockforge' command is the entry point.
"""

from setuptools import find_packages, setup

setup(
    name="mockforge",
    version="1.0.0",
    description="Resilient Gemini mock-exam generator with API key rotation",
    long_description=open("README.md", encoding="utf-8").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    packages=find_packages(include=["mockforge", "mockforge.*"]),
    python_requires=">=3.10",
    install_requires=[
        # CLI
        "typer>=0.9.0",
        "rich>=13.0.0",
        # Config & Validation
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        # HTTP
        "httpx>=0.25.0",
        # Logging
        "loguru>=0.7.0",
        # Generation
        "google-genai>=1.0.0",
        # LLM JSON repair
        "json-repair>=0.25.0",
        # Rendering
        "python-pptx>=0.6.21",
        "reportlab>=4.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "ruff>=0.1.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "mockforge=mockforge.cli.main:run",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Education",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Education",
    ],
    keywords="gemini mock-test exam generation cli education",
)
