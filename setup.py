from pathlib import Path
from setuptools import find_packages, setup


ROOT = Path(__file__).parent


def read_version() -> str:
    """Return ``__version__`` from the package without importing it."""
    init = ROOT / "trendhunter" / "__init__.py"
    for line in init.read_text(encoding="utf-8").splitlines():
        if line.startswith("__version__"):
            return line.split("=", 1)[1].strip().strip("\"'")
    raise RuntimeError("__version__ not found")


setup(
    name="trendhunter",
    version=read_version(),
    description="Cluster freshly listed Solana tokens into trend topics and refresh their market data",
    packages=find_packages(include=["trendhunter", "trendhunter.*"]),
    python_requires=">=3.11",
    install_requires=[
        "aiohttp>=3.9",
        "SQLAlchemy[asyncio]>=2.0",
        "aiosqlite>=0.19",
        "pydantic>=2.0",
        "cachetools>=5.3",
        "orjson>=3.9",
        "pypinyin>=0.50",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.23",
        ],
    },
    entry_points={
        "console_scripts": [
            "trendhunter=trendhunter.main:main",
        ],
    },
)
