"""
FileVault setup.py — Package configuration and CLI entry point.
"""

from setuptools import find_packages, setup

setup(
    name="filevault",
    version="1.0.0",
    description="FileVault — file catalog with asynchronous image thumbnails",
    packages=find_packages(include=["filevault", "filevault.*"]),
    python_requires=">=3.11",
    entry_points={
        "console_scripts": [
            "filevault=filevault.cli:main",
        ],
    },
    install_requires=[
        "sqlalchemy>=2.0",
        "psycopg2-binary>=2.9",
        "pydantic>=2.5",
        "redis>=5.0",
        "celery[redis]>=5.3",
        "pyyaml>=6.0",
        "Pillow>=10.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
        ],
    },
)
