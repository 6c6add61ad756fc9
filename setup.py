"""Setup configuration for Chatguard."""

from setuptools import setup, find_packages

setup(
    name="chatguard",
    version="0.0.1",
    description="In-room chat logger with obfuscation-tolerant profanity detection and a searchable history",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.11",
    install_requires=[
        "aiosqlite>=0.19",
        "prompt_toolkit>=3.0",
        "python-dotenv>=1.0",
        "PyYAML>=6.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
    entry_points={
        "console_scripts": [
            "chatguard=chatguard.main:main",
        ],
    },
)
