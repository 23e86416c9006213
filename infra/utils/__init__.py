"""Utility modules for beeux-infra.

This package contains helpers for JSON path lookups, Terraform variable
files and console string formatting.
"""

from .json_utils import deployment_outputs, lookup
from .string_utils import format_list, mask_secret, matching_lines
from .terraform_utils import set_tfvar, tfvar_read, update_tfvars_file

__all__ = [
    # JSON utilities
    "lookup",
    "deployment_outputs",
    # String utilities
    "mask_secret",
    "matching_lines",
    "format_list",
    # Terraform utilities
    "tfvar_read",
    "set_tfvar",
    "update_tfvars_file",
]
