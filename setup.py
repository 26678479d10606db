from setuptools import setup, find_packages

setup(
    name="sibyl",
    version="0.1.0",
    description="Local daemon that runs programs once, captures their output and tracks them",
    license="MIT",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "typer>=0.9.0",
        "rich>=13.0.0",
        "python-dotenv>=1.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "sibyl=sibyl.main:sibyl",
            "sibyld=sibyl.daemon.server:main",
        ],
    },
    python_requires=">=3.10",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
)
