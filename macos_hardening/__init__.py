"""
macOS Hardening Tool

Runs an ordered checklist of native macOS administrative commands to bring
a Mac into a more secure configuration.
"""

from .version_info import __version__

from .core.orchestrator import HardeningTool, PreflightError
from .core.models import HardeningResult, RuleResult

__all__ = ["HardeningTool", "PreflightError", "HardeningResult", "RuleResult", "__version__"]
