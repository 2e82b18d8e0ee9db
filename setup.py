from setuptools import setup, find_packages

setup(
    name="houdini-infer",
    version="0.1.0",
    description="Houdini: annotation inference over candidate invariants, checked with Z3",
    packages=find_packages(include=["houdini", "houdini.*"]),
    python_requires=">=3.10",
    install_requires=[
        "z3-solver>=4.12.0",
        "pyyaml>=6.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "hypothesis>=6.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "houdini=houdini.cli:main",
        ],
    },
)
