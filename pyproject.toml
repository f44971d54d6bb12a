[build-system]
requires = ["setuptools>=64"]
build-backend = "setuptools.build_meta"

[project]
name = "multicalc"
version = "0.1.0"
description = "Multi-user arithmetic expression calculator: an HTTP orchestrator that splits expressions into tasks and a worker-pool agent that computes them"
requires-python = ">=3.10"
keywords = ["calculator", "expressions", "orchestrator", "agent", "jwt", "http", "sqlite"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
    "Topic :: Scientific/Engineering :: Mathematics",
]
dependencies = [
    "bcrypt",
    "pyjwt",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
multicalc-orchestrator = "multicalc.orchestrator:main"

[tool.setuptools.packages.find]
include = ["multicalc*"]

[tool.pytest.ini_options]
addopts = "-ra"
