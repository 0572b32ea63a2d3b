[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "floodguard"
version = "0.1.0"
description = "Packet-capture based SYN, UDP and ICMP flood detection with automatic iptables blocking"
requires-python = ">=3.10"
dependencies = []
keywords = ["ddos", "syn-flood", "iptables", "ipset", "firewall", "packet-capture"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking :: Firewalls",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
floodguard = "floodguard.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["floodguard"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
