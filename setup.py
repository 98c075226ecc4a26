"""Setup file for screengate."""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="screengate",
    version="0.1.0",
    author="Your Name",
    description="Admission control and job lifecycle for a metered screening service",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/yourusername/screengate",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.10",
    install_requires=[
        "pydantic>=2.0.0",
        "pydantic-core>=2.0.0",
        "pydantic-settings>=2.0.0",
        "python-dotenv>=1.0.0",
        "typer>=0.9.0",
        "loguru>=0.7.0",
        "sqlalchemy>=2.0.0",
        "alembic>=1.12.0",
    ],
    extras_require={
        "postgres": ["psycopg2-binary>=2.9.0"],
        "test": ["pytest>=7.0.0"],
    },
    entry_points={
        "console_scripts": [
            "screengate=screengate.cli:main",
        ],
    },
)
