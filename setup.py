from setuptools import setup, find_packages

setup(
    name="linguaiq-assessment",
    version="0.1.0",
    packages=find_packages(exclude=["linguaiq.tests", "linguaiq.tests.*"]),
    install_requires=[
        "pydantic>=2.0.0",
        "sqlalchemy[asyncio]>=2.0.0",
        "aiosqlite>=0.19.0",
        "python-dotenv>=0.19.0",
        "PyYAML>=6.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    python_requires=">=3.9",
)
