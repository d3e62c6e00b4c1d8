import codecs
import os
import re

from packaging.requirements import Requirement
from setuptools import find_packages, setup

here = os.path.abspath(os.path.dirname(__file__))


def read_requirements(path):
    with open(os.path.join(here, path)) as requirements_file:
        lines = (line.split("#", 1)[0].strip() for line in requirements_file)
        return [str(Requirement(line)) for line in lines if line]


install_requires = read_requirements("requirements.txt")

# loading version from setup.py
with codecs.open(os.path.join(here, "xordht/__init__.py"), encoding="utf-8") as init_file:
    version_match = re.search(r"^__version__ = ['\"]([^'\"]*)['\"]", init_file.read(), re.M)
    version_string = version_match.group(1)

extras = {}
extras["dev"] = read_requirements("requirements-dev.txt")
extras["all"] = extras["dev"]

setup(
    name="xordht",
    version=version_string,
    description="A distributed key-value store over an XOR-distance peer overlay",
    long_description="A distributed hash table where peers store and find binary values by fanning out requests "
    "to the peers nearest to a key in XOR distance. Peers run as asyncio actors in a shared in-process arena.",
    author="xordht contributors",
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    license="MIT",
    python_requires=">=3.8",
    install_requires=install_requires,
    extras_require=extras,
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Topic :: Software Development",
        "Topic :: Software Development :: Libraries",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Topic :: System :: Distributed Computing",
    ],
    entry_points={
        "console_scripts": [
            "xordht-dht = xordht.xordht_cli.run_dht:main",
        ]
    },
    keywords="dht, kademlia, xor distance, distributed hash table, peer-to-peer, asyncio",
)
