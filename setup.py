"""
Setup script for hookrelay
"""
from setuptools import setup, find_packages

setup(
    name="hookrelay",
    version="0.1.0",
    packages=find_packages(include=["hookrelay", "hookrelay.*"]),
    install_requires=[
        "pydantic>=2.8.0",
        "python-dotenv>=1.0.1",
        "httpx>=0.27.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
            "fastapi>=0.115.0",
        ],
    },
    python_requires=">=3.11",
    description="hookrelay - Webhook notification and delivery for event-driven applications",
    author="SynApps Team",
    author_email="synapps.info@nxtg.ai",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
