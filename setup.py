import sys
from pathlib import Path

from setuptools import setup, find_namespace_packages

if sys.version_info[0:2] < (3, 10):
    raise RuntimeError("This package requires Python 3.10+.")

setup(
    name="moat-rtutcp",
    version="0.1.0",
    packages=find_namespace_packages(include=['moat.*']),
    url="https://github.com/M-o-a-T/moat",
    license="MIT",
    author="Matthias Urlichs",
    author_email="<matthias@urlichs.de>",
    description="Talk Modbus-RTU to Modbus-TCP servers",
    long_description=Path(__file__).with_name("README.rst").read_text(encoding="utf-8"),
    install_requires=["anyio>=4.9", "asyncclick>=8.1.7", "pymodbus>=3.8"],
    extras_require={"test": ["pytest", "trio>=0.32"]},
    entry_points={"console_scripts": ["moat-rtutcp = moat.rtutcp.__main__:main"]},
    python_requires=">=3.10",
    classifiers=[
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Framework :: AnyIO",
        "Framework :: Trio",
        "License :: OSI Approved",
    ],
)
