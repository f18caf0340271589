from pathlib import Path

from setuptools import find_packages, setup

BASE_DIR = Path(__file__).parent
README = (BASE_DIR / "README.md").read_text(encoding="utf-8")

setup(
    name="host-telemetry-service",
    version="0.1.0",
    description="FastAPI service that exposes a normalized host telemetry snapshot.",
    long_description=README,
    long_description_content_type="text/markdown",
    author="Monitoring Stack",
    packages=find_packages(include=["host_telemetry", "host_telemetry.*"]),
    package_data={"host_telemetry": ["static/*.html"]},
    python_requires=">=3.10",
    include_package_data=True,
    install_requires=[
        "fastapi>=0.115.0",
        "uvicorn[standard]>=0.32.0",
        "psutil>=5.9.0",
        "pyudev>=0.24.0; sys_platform == 'linux'",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "httpx>=0.27.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "host-telemetry-service=host_telemetry.main:main",
        ]
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
)
