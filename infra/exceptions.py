"""Custom exception types for beeux-infra.

This module defines the exception hierarchy raised by the provisioning,
management and teardown workflows. Library code raises these; the command
line layer turns them into a red ``[ERROR]`` line and exit code 1.

Exception Hierarchy:
    BeeuxError (base)
    ├── PrerequisiteError - Missing CLI tool, login, template or var file
    ├── ConfigurationError - Invalid environment or VM manifest values
    ├── ValidationError - Invalid user input (VM names, ranges, SSH keys)
    ├── AzureCliError - Non-zero exit from an ``az`` invocation
    ├── DeploymentError - Deployment reported as failed by Azure
    ├── TerraformError - Non-zero exit from a ``terraform`` invocation
    └── RemoteCommandError - SSH command failure on a provisioned VM
"""

from typing import Any, Dict, List, Optional


class BeeuxError(Exception):
    """Base exception for all beeux-infra errors.

    Attributes:
        message: Human-readable error description
        context: Additional contextual information (e.g., VM names, file paths)
    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        """Initialize BeeuxError.

        Args:
            message: Human-readable error description
            context: Optional dict with additional context (VM names, paths, etc.)
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        """Return formatted error message with context."""
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} (context: {context_str})"
        return self.message


class PrerequisiteError(BeeuxError):
    """Raised when something required before a run is missing.

    Examples:
        - Template directory for new VMs not found
        - Bicep template or parameter file missing
        - Terraform var file not created yet
    """

    pass


class ConfigurationError(BeeuxError):
    """Raised when the VM manifest or environment settings are invalid."""

    pass


class ValidationError(BeeuxError):
    """Raised when user supplied values are rejected.

    Examples:
        - VM name not matching ``ubuntu-dev-NN``
        - Bulk range beyond the supported fleet size
        - SSH public key in an unexpected format
    """

    pass


class AzureCliError(BeeuxError):
    """Raised when an ``az`` command exits non-zero."""

    def __init__(
        self,
        message: str,
        command: Optional[List[str]] = None,
        returncode: Optional[int] = None,
        stderr: str = "",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, context)
        self.command = command or []
        self.returncode = returncode
        self.stderr = stderr


class DeploymentError(BeeuxError):
    """Raised when an ARM deployment does not complete successfully."""

    pass


class TerraformError(BeeuxError):
    """Raised when a Terraform step fails (init, validate, plan, apply)."""

    pass


class RemoteCommandError(BeeuxError):
    """Raised when a command run over SSH on a provisioned VM fails."""

    pass
