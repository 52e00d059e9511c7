from setuptools import setup, find_packages

setup(
    name="forget-me-not",
    version="0.1.0",
    description="forget-me-not - desktop reminder daemon and client",
    python_requires=">=3.10",
    packages=find_packages(include=["fmn", "fmn.*"]),
    install_requires=[
        "python-dotenv>=1.0.0",
        "pydantic>=2.0.0",
        "loguru>=0.7.0",
        "pyyaml>=6.0",
        "plyer>=2.1.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "fmn=fmn.cli:main",
            "fmn-daemon=fmn.main:main",
        ],
    },
)
