"""
Base platform interface for hardening operations.

Defines the common interface that platform-specific hardening
modules implement, plus the shared command runner.
"""

import shlex
import subprocess
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Union

from ..core.models import HardeningRule, RuleResult


class BasePlatform(ABC):
    """
    Abstract base class for platform-specific hardening operations.
    """

    def __init__(self, command_timeout: int = 60):
        """
        Initialize platform handler.

        Args:
            command_timeout: Default timeout in seconds for each command
        """
        self.command_timeout = command_timeout

    @abstractmethod
    def audit_rule(self, rule: HardeningRule) -> RuleResult:
        """
        Audit a hardening rule without making changes.

        Args:
            rule: Hardening rule to audit

        Returns:
            RuleResult: Result of the audit operation
        """
        pass

    @abstractmethod
    def apply_rule(self, rule: HardeningRule) -> RuleResult:
        """
        Apply a hardening rule to the system.

        Args:
            rule: Hardening rule to apply

        Returns:
            RuleResult: Result of the application operation
        """
        pass

    @abstractmethod
    def get_service_status(self, service_name: str) -> Dict[str, Any]:
        """
        Get the status of a system service.

        Args:
            service_name: Name of the service to check

        Returns:
            Dict[str, Any]: Service status information
        """
        pass

    @abstractmethod
    def stop_service(self, service_name: str) -> bool:
        """
        Stop a system service.

        Args:
            service_name: Name of the service to stop

        Returns:
            bool: True if successful, False otherwise
        """
        pass

    @abstractmethod
    def disable_service(self, service_name: str) -> bool:
        """
        Disable a system service from starting at boot.

        Args:
            service_name: Name of the service to disable

        Returns:
            bool: True if successful, False otherwise
        """
        pass

    @abstractmethod
    def read_config_file(self, file_path: str) -> str:
        """
        Read contents of a configuration file.

        Raises:
            FileNotFoundError: If file doesn't exist
            PermissionError: If access is denied
        """
        pass

    @abstractmethod
    def write_config_file(self, file_path: str, content: str, backup: bool = True) -> bool:
        """
        Write contents to a configuration file.

        Args:
            file_path: Path to the configuration file
            content: New file contents
            backup: Whether to create a backup before writing

        Returns:
            bool: True if successful, False otherwise
        """
        pass

    @abstractmethod
    def backup_file(self, file_path: str) -> str:
        """
        Create a backup of a file.

        Returns:
            str: Path to the backup file

        Raises:
            IOError: If backup operation fails
        """
        pass

    def execute_command(self, command: Union[str, List[str]], timeout: int = None) -> Dict[str, Any]:
        """
        Execute a system command with timeout.

        Never raises: a command that cannot be started or times out is
        reported with exit code -1.

        Args:
            command: Command string (split with shlex) or argument list
            timeout: Timeout in seconds (platform default if None)

        Returns:
            Dict[str, Any]: Execution result with stdout, stderr, and exit code
        """
        timeout = timeout or self.command_timeout
        start_time = time.monotonic()

        if isinstance(command, str):
            cmd_args = shlex.split(command)
        else:
            cmd_args = list(command)

        try:
            result = subprocess.run(
                cmd_args,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False
            )

            return {
                'stdout': result.stdout,
                'stderr': result.stderr,
                'exit_code': result.returncode,
                'execution_time_ms': int((time.monotonic() - start_time) * 1000),
                'success': result.returncode == 0
            }

        except subprocess.TimeoutExpired:
            return {
                'stdout': '',
                'stderr': f'Command timed out after {timeout} seconds',
                'exit_code': -1,
                'execution_time_ms': timeout * 1000,
                'success': False
            }
        except (OSError, subprocess.SubprocessError) as e:
            return {
                'stdout': '',
                'stderr': str(e),
                'exit_code': -1,
                'execution_time_ms': int((time.monotonic() - start_time) * 1000),
                'success': False
            }

    def check_file_exists(self, file_path: str) -> bool:
        """Check if a file exists."""
        return Path(file_path).exists()

