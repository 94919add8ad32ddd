"""
Test fixtures and utilities for the hardening tool test suite.

Provides common fixtures, mock objects, and helper functions
used across multiple test modules.
"""

import textwrap
from unittest.mock import Mock

import pytest

from macos_hardening.core.models import (
    AuditCheck, HardeningRule, HardeningRun, RuleResult, RuleSeverity,
    RuleStatus, SessionContext, SystemInfo
)
from macos_hardening.platforms.macos import MacOSPlatform


@pytest.fixture
def mock_system_info():
    """Create a SystemInfo for a supported macOS release."""
    return SystemInfo(
        product_name="macOS",
        os_version="14.4.1",
        build_version="23E224",
        architecture="arm64",
        hostname="test-mac",
        kernel_version="23.4.0"
    )


@pytest.fixture
def user_session(tmp_path):
    """Session of an admin user who ran the tool without sudo."""
    return SessionContext(started_elevated=False, invoking_user="alice", home_dir=tmp_path)


@pytest.fixture
def root_session(tmp_path):
    """Session of the tool started through sudo by alice."""
    return SessionContext(started_elevated=True, invoking_user="alice", home_dir=tmp_path)


@pytest.fixture
def macos_platform(user_session):
    """MacOSPlatform bound to a non-root session."""
    return MacOSPlatform(
        user_session,
        variables={"screensaver_idle_time": 300},
        shell_history={".zshrc": ["HISTSIZE=0", "SAVEHIST=0"]}
    )


@pytest.fixture
def firewall_rule():
    """Create a sample firewall rule."""
    return HardeningRule(
        id="firewall_enable",
        title="Enable Application Firewall",
        description="Turns on the application layer firewall",
        category="firewall",
        severity="high",
        cis_benchmark="2.2.1",
        audit_checks=[AuditCheck(
            command="/usr/libexec/ApplicationFirewall/socketfilterfw --getglobalstate",
            expected_output="enabled"
        )],
        apply_commands=["/usr/libexec/ApplicationFirewall/socketfilterfw --setglobalstate on"]
    )


@pytest.fixture
def user_defaults_rule():
    """Create a rule that writes the invoking user's preferences."""
    return HardeningRule(
        id="misc_terminal_secure_keyboard",
        title="Terminal Secure Keyboard Entry",
        category="misc",
        audit_checks=[AuditCheck(
            command="defaults read com.apple.Terminal SecureKeyboardEntry",
            expected_output="1",
            match="exact"
        )],
        apply_commands=["defaults write com.apple.Terminal SecureKeyboardEntry -bool true"],
        run_as_user=True,
        privileged=False
    )


@pytest.fixture
def sample_rule_result():
    """Create a sample rule result."""
    return RuleResult(
        rule_id="firewall_enable",
        rule_title="Enable Application Firewall",
        status=RuleStatus.PASS,
        severity=RuleSeverity.HIGH,
        category="firewall",
        message="Compliant",
        before_state={"socketfilterfw --getglobalstate": "Firewall is enabled. (State = 1)"},
        execution_time_ms=42
    )


@pytest.fixture
def mock_hardening_run(mock_system_info):
    """Create a hardening run with no results yet."""
    return HardeningRun(
        run_id="test-run-001",
        operation="audit",
        system_info=mock_system_info,
        categories=["firewall"]
    )


@pytest.fixture
def rules_dir(tmp_path):
    """Directory with two small rule definition files."""
    directory = tmp_path / "rules"
    directory.mkdir()
    (directory / "01_firewall.yaml").write_text(textwrap.dedent("""
        category: firewall
        rules:
          - id: firewall_enable
            title: Enable Application Firewall
            severity: high
            audit_checks:
              - command: /usr/libexec/ApplicationFirewall/socketfilterfw --getglobalstate
                expected_output: enabled
            apply_commands:
              - /usr/libexec/ApplicationFirewall/socketfilterfw --setglobalstate on
          - id: firewall_stealth_mode
            title: Enable Stealth Mode
            audit_checks:
              - command: /usr/libexec/ApplicationFirewall/socketfilterfw --getstealthmode
                expected_output: "on"
            apply_commands:
              - /usr/libexec/ApplicationFirewall/socketfilterfw --setstealthmode on
    """))
    (directory / "02_sharing.yaml").write_text(textwrap.dedent("""
        category: sharing
        rules:
          - id: sharing_disable_smb
            title: Disable SMB File Sharing
            service: com.apple.smbd
          - id: sharing_disable_bonjour_advertising
            title: Disable Bonjour Advertising
            requires_restart: true
            audit_checks:
              - command: defaults read /Library/Preferences/com.apple.mDNSResponder.plist NoMulticastAdvertisements
                expected_output: "1"
                match: exact
            apply_commands:
              - defaults write /Library/Preferences/com.apple.mDNSResponder.plist NoMulticastAdvertisements -bool true
    """))
    return directory


def command_result(stdout: str = "", stderr: str = "", returncode: int = 0) -> Mock:
    """Build a fake subprocess.CompletedProcess."""
    return Mock(stdout=stdout, stderr=stderr, returncode=returncode)


def make_rule_result(rule_id: str = "test_rule",
                     status: RuleStatus = RuleStatus.PASS,
                     severity: RuleSeverity = RuleSeverity.MEDIUM) -> RuleResult:
    """Helper function to create rule results."""
    return RuleResult(
        rule_id=rule_id,
        rule_title=f"Test Rule {rule_id}",
        status=status,
        severity=severity,
        category="test"
    )
