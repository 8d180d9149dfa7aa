"""Terraform workflow helpers: argument builders, HCL reading and module discovery, state-file IAM parsing and API clients."""

__version__ = "0.1.0"