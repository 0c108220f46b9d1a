from setuptools import setup, find_packages
from pathlib import Path

README = Path(__file__).parent / "README.md"
long_desc = README.read_text(encoding="utf-8") if README.exists() else "Inframon"

setup(
    name="inframon",
    version="0.3.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    python_requires=">=3.8",
    install_requires=[
        "Flask>=2.2",
        "flask-cors>=3.0",
        "requests>=2.28",
        "psutil>=5.9",
        "PyYAML>=6.0",
        "prometheus_client>=0.16",
    ],
    extras_require={
        "test": ["pytest>=7"],
    },
    entry_points={
        "console_scripts": [
            "inframon = inframon.main:main",
            "inframon-health = inframon.health:main"
        ]
    },
    author="Jérémie",
    description="Multi-node system metrics dashboard with LAN master discovery",
    long_description=long_desc,
    long_description_content_type="text/markdown",
    license="MIT",
)
