from setuptools import setup, find_packages

setup(
    name="reader-cache",
    version="1.0.0",
    packages=find_packages(include=["reader_cache", "reader_cache.*"]),
    install_requires=[
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        "PyYAML>=6.0",
        "python-dotenv>=0.19.0",
        "sqlalchemy[asyncio]>=2.0.0",
        "aiosqlite>=0.19.0",
        "redis>=5.0.1",
        "aiohttp>=3.8.0",
        "aiofiles>=23.2.1",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    python_requires=">=3.9",
)
