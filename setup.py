from setuptools import find_packages, setup

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="git-wrapped",
    version="0.1.0",
    description="Your year in code: yearly git statistics for one repository or a whole directory of them",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Intended Audience :: Developers",
        "Topic :: Utilities",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
    ],
    python_requires=">=3.8",
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "git-wrapped=git_wrapped.git_wrapped:main",
        ],
    },
)
