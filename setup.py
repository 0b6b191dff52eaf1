"""
MediaScribe — setuptools build script.

Usage:
    # Development (editable install):
    pip install -e .[test]

    # Run the CLI:
    mediascribe interview.mp4
"""

from setuptools import setup

APP_NAME = "mediascribe"

PACKAGES = [
    "mediascribe",
    "mediascribe.core",
]

setup(
    name=APP_NAME,
    version="1.0.0",
    description="Turn audio/video files into cleaned, speaker-labelled Markdown transcripts",
    packages=PACKAGES,
    py_modules=["main"],
    install_requires=[
        "requests>=2.28.0",
        "boto3>=1.26.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "mediascribe=main:main",
        ],
    },
    python_requires=">=3.10",
)
