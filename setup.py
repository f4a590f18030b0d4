from setuptools import setup, find_packages

setup(
    name="codeassess-backend",
    version="0.1.0",
    packages=find_packages(),
    install_requires=[
        "pydantic>=1.8.0,<2.0.0",
        "sqlalchemy>=1.4.0,<2.0.0",
        "alembic>=1.7.0",
        "python-dotenv>=0.19.0",
        "asyncpg>=0.25.0",
        "aiosqlite>=0.17.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.20.0",
        ],
    },
    python_requires=">=3.8",
)
