"""Setup script for cmas-mcp-server package."""
from pathlib import Path
from setuptools import setup, find_packages

# Read long description from README
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text(encoding="utf-8") if readme_file.exists() else ""

setup(
    name="cmas-mcp-server",
    version="1.0.0",
    description="MCP server for the Configuration Manager Admin Service",
    packages=find_packages(exclude=["tests*"]),
    python_requires=">=3.10",
    install_requires=[
        "httpx>=0.27",
        "httpx-ntlm>=1.4",
        "lxml>=5.0",
        "mcp>=1.2,<2",
        "pydantic>=2.5",
        "python-dotenv>=1.0",
        "uvicorn>=0.29",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
    entry_points={
        "console_scripts": [
            "cmas-mcp-server=cmas_mcp.server:main",
            "cmas-mcp-http=cmas_mcp.http_server:main",
        ],
    },
    long_description=long_description,
    long_description_content_type="text/markdown",
)
