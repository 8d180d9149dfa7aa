[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "guardian"
version = "0.1.0"
description = "Terraform workflow helpers: command argument builders, HCL entrypoint and module discovery, state-file IAM parsing, and small GitHub, IAM and Cloud Storage clients."
requires-python = ">=3.10"
keywords = ["terraform", "hcl", "iam", "github", "cloud-storage", "infrastructure"]
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
    "Topic :: Software Development :: Build Tools",
]
dependencies = [
    "requests>=2.28",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
    "responses>=0.23",
]

[tool.hatch.build.targets.wheel]
packages = ["guardian"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
