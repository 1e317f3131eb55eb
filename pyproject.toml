[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "servingop"
version = "0.8.0"
description = "Reconciler logic that installs and maintains a Knative Serving installation from a manifest of resources, against an in-memory cluster."
requires-python = ">=3.10"
keywords = [
    "knative",
    "serving",
    "operator",
    "reconciler",
    "manifest",
    "kubernetes",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
]
dependencies = [
    "pyyaml",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["servingop"]

[tool.hatch.build.targets.sdist]
include = [
    "servingop",
    "tests",
]

[tool.pytest.ini_options]
addopts = "-ra"
