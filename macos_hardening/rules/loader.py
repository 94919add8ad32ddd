"""
Rule loader for managing hardening rule definitions.

Loads the ordered hardening checklist from YAML files and provides
filtering and lookup functionality.
"""

import logging
import re
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import ValidationError

from ..core.models import AuditCheck, HardeningRule, RuleSeverity

logger = logging.getLogger(__name__)

PACKAGES_CATEGORY = "packages"


class RuleLoader:
    """
    Manages loading and filtering of hardening rules.

    Rule files are read in file name order (``01_firewall.yaml``,
    ``02_gatekeeper.yaml``, ...) and rules keep their order within a file,
    which makes the result the execution order of the checklist.
    """

    def __init__(self, rules_dir: Optional[str] = None,
                 package_casks: Optional[List[str]] = None):
        """
        Initialize rule loader.

        Args:
            rules_dir: Directory containing rule YAML files (uses default if None)
            package_casks: Homebrew casks to add as installation rules
        """
        if rules_dir:
            self.rules_dir = Path(rules_dir)
        else:
            self.rules_dir = Path(__file__).parent / "definitions"

        self.package_casks = list(package_casks or [])
        self._rules_cache: Optional[List[HardeningRule]] = None

    def get_rules(self, category: Optional[str] = None,
                  severity: Optional[RuleSeverity] = None) -> List[HardeningRule]:
        """
        Get hardening rules in checklist order with optional filtering.

        Args:
            category: Filter by rule category
            severity: Filter by severity level

        Returns:
            List[HardeningRule]: Filtered list of rules
        """
        rules = self._load_all_rules()

        if category:
            rules = [r for r in rules if r.category == category.lower()]

        if severity:
            rules = [r for r in rules if r.severity == severity]

        return rules

    def get_rule_by_id(self, rule_id: str) -> Optional[HardeningRule]:
        """
        Get a specific rule by its ID.

        Args:
            rule_id: Unique rule identifier

        Returns:
            Optional[HardeningRule]: Rule if found, None otherwise
        """
        for rule in self._load_all_rules():
            if rule.id == rule_id:
                return rule

        return None

    def get_categories(self) -> List[str]:
        """Get the checklist categories in execution order."""
        categories = []
        for rule in self._load_all_rules():
            if rule.category not in categories:
                categories.append(rule.category)
        return categories

    def reload_rules(self) -> None:
        """Force reload of rules from files."""
        self._rules_cache = None

    def _load_all_rules(self) -> List[HardeningRule]:
        """Load all rules from YAML files with caching."""
        if self._rules_cache is not None:
            return self._rules_cache

        rules = []
        seen_ids = set()

        if not self.rules_dir.is_dir():
            logger.error("Rules directory not found: %s", self.rules_dir)
            yaml_files = []
        else:
            yaml_files = sorted(self.rules_dir.glob("*.yaml"))

        for yaml_file in yaml_files:
            try:
                with open(yaml_file, 'r') as f:
                    data = yaml.safe_load(f)
            except (OSError, yaml.YAMLError) as e:
                logger.warning("Failed to load rules from %s: %s", yaml_file, e)
                continue

            for rule in self._parse_file(data, yaml_file):
                if rule.id in seen_ids:
                    logger.warning("Duplicate rule id %s in %s, ignoring", rule.id, yaml_file.name)
                    continue
                seen_ids.add(rule.id)
                rules.append(rule)

        for rule in self.build_package_rules(self.package_casks):
            if rule.id not in seen_ids:
                seen_ids.add(rule.id)
                rules.append(rule)

        self._rules_cache = rules
        return rules

    def _parse_file(self, data, yaml_file: Path) -> List[HardeningRule]:
        """Parse one definition file (``category`` + ``rules`` list, or a bare list)."""
        if isinstance(data, dict):
            default_category = data.get('category')
            entries = data.get('rules', [])
        elif isinstance(data, list):
            default_category = None
            entries = data
        else:
            logger.warning("Unexpected content in %s, skipping", yaml_file)
            return []

        rules = []
        for rule_data in entries or []:
            if not isinstance(rule_data, dict):
                logger.warning("Skipping malformed entry in %s: %r", yaml_file.name, rule_data)
                continue
            if default_category and 'category' not in rule_data:
                rule_data = dict(rule_data, category=default_category)
            rule = self._parse_rule(rule_data)
            if rule:
                rules.append(rule)
        return rules

    def _parse_rule(self, rule_data: dict) -> Optional[HardeningRule]:
        """Parse a rule dictionary into a HardeningRule object."""
        try:
            return HardeningRule(**rule_data)
        except ValidationError as e:
            logger.warning("Invalid rule %s: %s", rule_data.get('id', 'unknown'),
                           "; ".join(err['msg'] for err in e.errors()))
            return None
        except TypeError as e:
            logger.warning("Failed to parse rule %s: %s", rule_data.get('id', 'unknown'), e)
            return None

    @staticmethod
    def build_package_rules(casks: List[str]) -> List[HardeningRule]:
        """
        Create one installation rule per Homebrew cask.

        Homebrew refuses to run as root, so these rules always run as the
        invoking user.
        """
        rules = []
        for cask in casks:
            slug = re.sub(r'[^a-z0-9]+', '_', cask.lower()).strip('_')
            rules.append(HardeningRule(
                id=f"packages_install_{slug}",
                title=f"Install {cask}",
                description=f"Install the {cask} Homebrew cask.",
                severity=RuleSeverity.INFO,
                category=PACKAGES_CATEGORY,
                remediation_steps=["Install Homebrew from https://brew.sh if it is missing"],
                audit_checks=[AuditCheck(command=f"brew list --cask {cask}")],
                apply_commands=[f"brew install --cask {cask}"],
                run_as_user=True,
                privileged=False,
            ))
        return rules
