"""
Operating System detection utilities.

Detects the macOS release, the privileges the tool is running with and the
user who invoked it through sudo.
"""

import logging
import os
import platform
import pwd
import shutil
import subprocess
from pathlib import Path
from typing import Optional, Tuple

from ..core.models import SystemInfo

logger = logging.getLogger(__name__)

HOMEBREW_PATHS = [
    "/opt/homebrew/bin/brew",   # Apple Silicon
    "/usr/local/bin/brew",      # Intel
]


def detect_os() -> SystemInfo:
    """
    Detect the current operating system and gather system information.

    Returns:
        SystemInfo: OS release, build, architecture and hostname.
    """
    system = platform.system()
    hostname = platform.node()
    architecture = platform.machine()

    if system == "Darwin":
        return _detect_macos(hostname, architecture)

    # Anything else is reported as-is and rejected by validate_supported_os()
    return SystemInfo(
        product_name=system or "unknown",
        os_version=platform.release(),
        architecture=architecture,
        hostname=hostname,
        kernel_version=platform.release()
    )


def _detect_macos(hostname: str, architecture: str) -> SystemInfo:
    """Detect macOS version and build via sw_vers."""
    os_version = platform.mac_ver()[0]
    product_name = "macOS"
    build_version = None

    try:
        result = subprocess.run(
            ["sw_vers"], capture_output=True, text=True, timeout=10
        )
        if result.returncode == 0:
            fields = _parse_sw_vers(result.stdout)
            product_name = fields.get("ProductName", product_name)
            os_version = fields.get("ProductVersion", os_version)
            build_version = fields.get("BuildVersion")
    except (subprocess.TimeoutExpired, subprocess.SubprocessError, FileNotFoundError) as e:
        logger.debug("sw_vers unavailable, falling back to platform.mac_ver(): %s", e)

    return SystemInfo(
        product_name=product_name,
        os_version=os_version or "unknown",
        build_version=build_version,
        architecture=architecture,
        hostname=hostname,
        kernel_version=platform.release()
    )


def _parse_sw_vers(output: str) -> dict:
    """Parse `sw_vers` output ("Key:<tab>Value" lines) into a dictionary."""
    fields = {}
    for line in output.splitlines():
        if ':' in line:
            key, value = line.split(':', 1)
            fields[key.strip()] = value.strip()
    return fields


def parse_version(version: str) -> Tuple[int, ...]:
    """
    Turn a dotted version string into a comparable tuple.

    Non-numeric trailing parts are ignored, so "14.4.1" -> (14, 4, 1)
    and "15.0 beta" -> (15, 0).
    """
    parts = []
    for piece in version.strip().split('.'):
        digits = ''
        for ch in piece:
            if not ch.isdigit():
                break
            digits += ch
        if not digits:
            break
        parts.append(int(digits))
    return tuple(parts)


def validate_supported_os(system_info: SystemInfo, minimum_version: str = "13.0") -> bool:
    """
    Validate that the detected OS is supported by the hardening tool.

    Args:
        system_info: SystemInfo object from detect_os()
        minimum_version: Oldest supported macOS release

    Returns:
        bool: True if OS is macOS at or above minimum_version.
    """
    if not system_info.is_macos:
        return False

    current = parse_version(system_info.os_version)
    if not current:
        return False
    return current >= parse_version(minimum_version)


def is_admin() -> bool:
    """
    Check if the current process has administrative privileges.

    Returns:
        bool: True if running as root, False otherwise.
    """
    return os.geteuid() == 0


def can_sudo() -> bool:
    """Check for a cached sudo credential without prompting."""
    try:
        result = subprocess.run(
            ["sudo", "-n", "-v"], capture_output=True, timeout=10
        )
        return result.returncode == 0
    except (subprocess.TimeoutExpired, subprocess.SubprocessError, FileNotFoundError):
        return False


def acquire_sudo() -> bool:
    """
    Obtain a sudo credential, prompting for the password on the terminal.

    Returns:
        bool: True if sudo accepted the credential.
    """
    if can_sudo():
        return True
    try:
        # No output capture: sudo needs the terminal for its prompt
        result = subprocess.run(["sudo", "-v"], timeout=120)
        return result.returncode == 0
    except (subprocess.TimeoutExpired, subprocess.SubprocessError, FileNotFoundError) as e:
        logger.error("Could not obtain sudo credential: %s", e)
        return False


def get_invoking_user() -> Optional[str]:
    """
    Get the name of the human user running the tool.

    When started through sudo this is SUDO_USER, otherwise the owner of
    the current process.
    """
    sudo_user = os.environ.get("SUDO_USER")
    if sudo_user:
        return sudo_user
    try:
        return pwd.getpwuid(os.getuid()).pw_name
    except KeyError:
        return os.environ.get("USER")


def get_user_home(user: Optional[str]) -> Path:
    """Resolve a user's home directory from the password database."""
    if user:
        try:
            return Path(pwd.getpwnam(user).pw_dir)
        except KeyError:
            logger.warning("User %s not found in password database", user)
    return Path.home()


def find_homebrew() -> Optional[str]:
    """
    Locate the Homebrew executable.

    Returns:
        Optional[str]: Path to brew, or None if Homebrew is not installed.
    """
    brew = shutil.which("brew")
    if brew:
        return brew

    for candidate in HOMEBREW_PATHS:
        if Path(candidate).exists():
            return candidate

    return None
