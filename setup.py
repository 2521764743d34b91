from setuptools import find_packages, setup

setup(
    name="dagdeploy",
    version="1.0.0",
    packages=find_packages(include=["dagdeploy", "dagdeploy.*"]),
    install_requires=[line for line in open("requirements-core.txt").read().splitlines() if line],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    python_requires=">=3.9",
    entry_points={
        "console_scripts": [
            "dagdeploy=dagdeploy.cli:main",
        ],
    },
)
