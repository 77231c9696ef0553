from setuptools import find_packages, setup

setup(
    name="packflow",
    version="0.3.0",
    description="Dataflow engine that transforms game database packs through node graphs",
    packages=find_packages(include=["packflow", "packflow.*"]),
    python_requires=">=3.9",
    install_requires=[
        "pydantic>=2.0",
        "pandas>=1.5",
        "pyyaml>=6.0",
        "rich>=13.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "packflow=packflow.cli:main",
        ],
    },
)
