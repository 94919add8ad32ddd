"""
Core orchestrator for the macOS Hardening Tool.

The HardeningTool class runs the hardening checklist in order: every rule
is audited, skipped when already compliant, otherwise applied and verified.
A failing rule is logged and the run moves on to the next one.
"""

import copy
import logging
import uuid
from pathlib import Path
from typing import Callable, Dict, List, Optional

import yaml

from ..core.models import (
    HardeningResult, HardeningRule, HardeningRun, RuleResult, RuleSeverity,
    RuleStatus, SessionContext, SystemInfo, utcnow
)
from ..platforms.macos import MacOSPlatform
from ..rules.loader import PACKAGES_CATEGORY, RuleLoader
from ..utils.os_detection import acquire_sudo, detect_os, validate_supported_os
from .session import CredentialKeepAlive, build_session

logger = logging.getLogger(__name__)


DEFAULT_CONFIG = {
    "hardening": {
        "minimum_os_version": "13.0",
        "command_timeout": 60,
        "sudo_keepalive_interval": 60,
        "skip_categories": [],
    },
    "variables": {
        "screensaver_idle_time": 300,
        "filevault_recovery_plist": "/var/root/filevault_recovery.plist",
    },
    "packages": {
        "enabled": True,
        "casks": ["lulu", "blockblock", "knockknock", "oversight"],
    },
    "shell_history": {
        ".bash_profile": ["HISTSIZE=0", "HISTFILESIZE=0"],
        ".zshrc": ["HISTSIZE=0", "SAVEHIST=0"],
    },
    "logging": {
        "level": "INFO",
        "file": None,
    },
}


class PreflightError(RuntimeError):
    """A precondition for running the checklist is not met."""


class HardeningTool:
    """
    Main orchestrator class for macOS hardening operations.

    Ties together the rule checklist, the macOS platform handler and the
    per-run session state.
    """

    def __init__(self, config_path: Optional[str] = None,
                 rules_dir: Optional[str] = None,
                 session: Optional[SessionContext] = None,
                 system_info: Optional[SystemInfo] = None):
        """
        Initialize the hardening tool.

        Args:
            config_path: Path to YAML configuration file (optional)
            rules_dir: Directory with rule definitions (packaged ones if None)
            session: Pre-built session state (detected if None)
            system_info: Pre-detected system information (detected if None)
        """
        self.config = self._load_config(config_path)
        self.system_info = system_info or detect_os()
        self.session = session or build_session()

        packages = self.config["packages"]
        casks = packages.get("casks", []) if packages.get("enabled", True) else []
        self.rule_loader = RuleLoader(rules_dir, package_casks=casks)

        hardening = self.config["hardening"]
        self.platform = MacOSPlatform(
            self.session,
            command_timeout=int(hardening.get("command_timeout", 60)),
            variables=self.config["variables"],
            shell_history=self.config["shell_history"],
        )

    def preflight(self, require_privileges: bool = True) -> None:
        """
        Check the preconditions that abort a run.

        Args:
            require_privileges: Also require root or a sudo credential

        Raises:
            PreflightError: If the OS is unsupported or privileges are missing
        """
        minimum = str(self.config["hardening"].get("minimum_os_version", "13.0"))
        if not validate_supported_os(self.system_info, minimum):
            raise PreflightError(
                f"Unsupported operating system: {self.system_info.product_name} "
                f"{self.system_info.os_version} (requires macOS {minimum} or later)"
            )

        if not require_privileges or self.session.started_elevated:
            return

        logger.info("Not running as root; requesting sudo credential")
        if not acquire_sudo():
            raise PreflightError(
                "Administrative privileges required. Run as an administrator "
                "or with sudo: sudo macos-hardening apply"
            )

    def audit(self, categories: Optional[List[str]] = None,
              rule_ids: Optional[List[str]] = None) -> HardeningResult:
        """
        Perform a read-only audit of system compliance.

        Args:
            categories: List of rule categories to audit
            rule_ids: List of specific rule IDs to audit

        Returns:
            HardeningResult: Complete audit results
        """
        rules = self._get_applicable_rules(categories, rule_ids)
        return self._execute("audit", rules, categories, rule_ids, self.platform.audit_rule)

    def apply(self, categories: Optional[List[str]] = None,
              rule_ids: Optional[List[str]] = None,
              interactive: bool = False,
              dry_run: bool = False,
              confirm: Optional[Callable[[HardeningRule], bool]] = None) -> HardeningResult:
        """
        Apply hardening rules to the system.

        Args:
            categories: List of rule categories to apply
            rule_ids: List of specific rule IDs to apply
            interactive: Ask ``confirm`` before changing each rule
            dry_run: Audit only and report what would be changed
            confirm: Callback deciding whether a rule may be applied

        Returns:
            HardeningResult: Complete application results
        """
        rules = self._get_applicable_rules(categories, rule_ids)

        def apply_one(rule: HardeningRule) -> RuleResult:
            if dry_run:
                result = self.platform.audit_rule(rule)
                if result.status in (RuleStatus.FAIL, RuleStatus.ERROR):
                    result.message = f"Would apply: {rule.title} ({result.message})"
                return result

            if interactive and confirm is not None:
                audit_result = self.platform.audit_rule(rule)
                if audit_result.status == RuleStatus.PASS:
                    audit_result.message = "Already compliant, no changes made"
                    return audit_result
                if not confirm(rule):
                    return self._make_result(rule, RuleStatus.SKIPPED, "Skipped by user")

            result = self.platform.apply_rule(rule)
            if result.status == RuleStatus.APPLIED and rule.requires_restart:
                self.session.mark_restart_required(rule.title)
            return result

        operation = "dry_run" if dry_run else "apply"
        return self._execute(operation, rules, categories, rule_ids, apply_one)

    def get_available_rules(self, category: Optional[str] = None,
                            severity: Optional[RuleSeverity] = None) -> List[HardeningRule]:
        """
        Get list of available hardening rules with optional filtering.

        Returns:
            List[HardeningRule]: Filtered list of rules in checklist order
        """
        return self.rule_loader.get_rules(category=category, severity=severity)

    def get_rule_details(self, rule_id: str) -> HardeningRule:
        """
        Get detailed information about a specific rule.

        Raises:
            ValueError: If rule is not found
        """
        rule = self.rule_loader.get_rule_by_id(rule_id)
        if not rule:
            raise ValueError(f"Rule not found: {rule_id}")
        return rule

    def get_categories(self) -> List[str]:
        return self.rule_loader.get_categories()

    def _execute(self, operation: str, rules: List[HardeningRule],
                 categories: Optional[List[str]], rule_ids: Optional[List[str]],
                 action: Callable[[HardeningRule], RuleResult]) -> HardeningResult:
        """Run ``action`` over the rules in order and collect a run record."""
        run = HardeningRun(
            run_id=str(uuid.uuid4()),
            operation=operation,
            system_info=self.system_info,
            started_elevated=self.session.started_elevated,
            categories=categories or [],
            rule_ids=rule_ids or []
        )
        skip_categories = set(
            self._normalize_categories(self.config["hardening"].get("skip_categories")))
        interval = int(self.config["hardening"].get("sudo_keepalive_interval", 60))
        restart_marker = len(self.session.restart_required)

        logger.info("Starting %s of %d rules", operation.replace("_", " "), len(rules))

        with CredentialKeepAlive(self.session, interval=interval):
            current_category = None
            for rule in rules:
                if rule.category != current_category:
                    current_category = rule.category
                    logger.info("==== %s ====", current_category.replace("_", " ").title())

                if rule.category in skip_categories:
                    result = self._make_result(rule, RuleStatus.SKIPPED,
                                               "Category disabled in configuration")
                else:
                    try:
                        result = action(rule)
                    except Exception as e:
                        logger.debug("Rule %s raised", rule.id, exc_info=True)
                        result = self._make_result(rule, RuleStatus.ERROR, f"{operation} failed: {e}")

                self._log_result(result)
                run.rule_results.append(result)

        run.restart_required = self.session.restart_required[restart_marker:]
        run.completed_at = utcnow()
        run.calculate_summary()

        logger.info("Finished %s: %d compliant, %d applied, %d failed, %d errors, %d skipped",
                    operation.replace("_", " "), run.passed_rules, run.applied_rules,
                    run.failed_rules, run.error_rules, run.skipped_rules)

        return HardeningResult(run=run)

    def _log_result(self, result: RuleResult) -> None:
        line = f"{result.rule_title}: {result.message or result.status.value}"
        if result.status == RuleStatus.ERROR:
            logger.error("ERROR %s", line)
        elif result.status == RuleStatus.FAIL:
            logger.warning("FAIL %s", line)
        elif result.status == RuleStatus.APPLIED:
            logger.info("APPLIED %s", line)
        elif result.status == RuleStatus.PASS:
            logger.info("OK %s", line)
        else:
            logger.info("%s %s", result.status.value.upper(), line)

    def _make_result(self, rule: HardeningRule, status: RuleStatus, message: str) -> RuleResult:
        return RuleResult(
            rule_id=rule.id,
            rule_title=rule.title,
            status=status,
            severity=rule.severity,
            category=rule.category,
            message=message
        )

    def _load_config(self, config_path: Optional[str]) -> Dict:
        """Load configuration from file merged over the defaults."""
        config = copy.deepcopy(DEFAULT_CONFIG)

        if not config_path:
            return config

        if not Path(config_path).exists():
            logger.warning("Config file %s not found, using defaults", config_path)
            return config

        try:
            with open(config_path, 'r') as f:
                user_config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Could not load config %s, using defaults: %s", config_path, e)
            return config

        if not isinstance(user_config, dict):
            logger.warning("Config %s is not a mapping, using defaults", config_path)
            return config

        for section, values in user_config.items():
            if isinstance(values, dict) and isinstance(config.get(section), dict):
                config[section].update(values)
            else:
                config[section] = values

        config["hardening"]["skip_categories"] = self._normalize_categories(
            config["hardening"].get("skip_categories"))

        return config

    def _normalize_categories(self, value) -> List[str]:
        """Accept a list, a single category name or nothing."""
        if value is None:
            return []
        if isinstance(value, str):
            return [value.strip().lower()] if value.strip() else []
        if isinstance(value, (list, tuple, set)):
            return [str(v).strip().lower() for v in value if str(v).strip()]
        logger.warning("Ignoring invalid hardening.skip_categories: %r", value)
        return []

    def _get_applicable_rules(self, categories: Optional[List[str]],
                              rule_ids: Optional[List[str]]) -> List[HardeningRule]:
        """Get rules matching the filters, in checklist order."""
        rules = self.rule_loader.get_rules()

        if rule_ids:
            wanted = set(rule_ids)
            unknown = wanted - {r.id for r in rules}
            for rule_id in sorted(unknown):
                logger.warning("Unknown rule id: %s", rule_id)
            rules = [r for r in rules if r.id in wanted]

        if categories:
            wanted_categories = {c.strip().lower() for c in categories}
            known = set(self.rule_loader.get_categories()) | {PACKAGES_CATEGORY}
            for category in sorted(wanted_categories - known):
                logger.warning("Unknown category: %s", category)
            rules = [r for r in rules if r.category in wanted_categories]

        return rules
