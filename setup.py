from setuptools import setup, find_packages

setup(
    name="codegraph-indexer",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "requests",
        "pyyaml",
        "networkx>=3.0",
        "tree-sitter>=0.22",
        "tree-sitter-python",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
    author="Uday Kanth",
    description="Indexes source code into a schema-constrained knowledge graph.",
)
