"""Setup script for the Video Squish project"""

from setuptools import setup

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="video-squish",
    version="0.1.0",
    description="Personal video triage: AI-rated renaming, annotation and re-encoding of clip folders",
    long_description=long_description,
    long_description_content_type="text/markdown",
    package_dir={"": "src"},
    py_modules=[
        "analysis",
        "batch",
        "compression",
        "config",
        "errors",
        "main",
        "metadata_store",
        "models",
        "naming",
        "pipeline",
        "transcoding",
    ],
    classifiers=[
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Operating System :: MacOS",
        "Operating System :: POSIX :: Linux",
        "Development Status :: 3 - Alpha",
        "Intended Audience :: End Users/Desktop",
        "Topic :: Multimedia :: Video",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
    ],
    python_requires=">=3.9",
    install_requires=[
        "openai>=1.0.0",
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        "pyyaml>=5.4.0",
        "tqdm>=4.62.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "video-squish=main:main",
        ],
    },
)
