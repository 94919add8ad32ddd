"""
Unit tests for the rule loader and the packaged checklist.
"""

import textwrap

import pytest

from macos_hardening.core.models import RuleSeverity
from macos_hardening.rules.loader import PACKAGES_CATEGORY, RuleLoader


CHECKLIST_ORDER = [
    "firewall", "gatekeeper", "filevault", "accounts", "remote_access", "sharing",
    "airdrop", "wireless", "privacy", "misc", "software_updates",
]


class TestPackagedDefinitions:
    """The checklist shipped with the tool must load cleanly."""

    @pytest.fixture(scope="class")
    def loader(self):
        return RuleLoader()

    def test_categories_in_checklist_order(self, loader):
        assert loader.get_categories() == CHECKLIST_ORDER

    def test_rule_ids_unique(self, loader):
        ids = [r.id for r in loader.get_rules()]
        assert len(ids) == len(set(ids))

    def test_every_rule_can_be_audited(self, loader):
        """Each rule has audit checks, a launchd service, or native handling."""
        for rule in loader.get_rules():
            assert rule.audit_checks or rule.service or rule.shell_history, rule.id

    def test_every_changeable_rule_has_a_way_to_apply(self, loader):
        for rule in loader.get_rules():
            if rule.service or rule.shell_history:
                continue
            assert rule.apply_commands or rule.remediation_steps, rule.id

    def test_restart_required_settings(self, loader):
        restart = {r.id for r in loader.get_rules() if r.requires_restart}
        assert {"filevault_enable", "gatekeeper_sip_enabled"} <= restart

    def test_user_domain_rules_do_not_need_root(self, loader):
        for rule in loader.get_rules():
            if rule.run_as_user:
                assert not rule.privileged, rule.id

    def test_expected_rules_present(self, loader):
        for rule_id in ["firewall_enable", "firewall_stealth_mode", "filevault_enable",
                        "accounts_disable_guest", "remote_access_disable_ssh",
                        "sharing_disable_smb", "airdrop_disable",
                        "wireless_bluetooth_controller_off", "privacy_disable_shell_history",
                        "misc_disable_hot_corners", "software_updates_automatic"]:
            assert loader.get_rule_by_id(rule_id) is not None, rule_id

    def test_filter_by_severity(self, loader):
        critical = loader.get_rules(severity=RuleSeverity.CRITICAL)
        assert critical
        assert all(r.severity == RuleSeverity.CRITICAL for r in critical)


class TestRuleLoader:
    """Test loading from a custom rules directory."""

    def test_file_and_rule_order(self, rules_dir):
        loader = RuleLoader(str(rules_dir))

        assert [r.id for r in loader.get_rules()] == [
            "firewall_enable", "firewall_stealth_mode",
            "sharing_disable_smb", "sharing_disable_bonjour_advertising",
        ]

    def test_category_from_file_header(self, rules_dir):
        loader = RuleLoader(str(rules_dir))
        assert [r.id for r in loader.get_rules(category="SHARING")] == [
            "sharing_disable_smb", "sharing_disable_bonjour_advertising",
        ]

    def test_get_rule_by_id_unknown(self, rules_dir):
        assert RuleLoader(str(rules_dir)).get_rule_by_id("nope") is None

    def test_package_rules_appended_last(self, rules_dir):
        loader = RuleLoader(str(rules_dir), package_casks=["lulu", "Little Snitch"])
        rules = loader.get_rules()

        assert [r.id for r in rules[-2:]] == ["packages_install_lulu", "packages_install_little_snitch"]
        assert loader.get_categories()[-1] == PACKAGES_CATEGORY

        lulu = rules[-2]
        assert lulu.run_as_user and not lulu.privileged
        assert lulu.audit_checks[0].command == "brew list --cask lulu"
        assert lulu.apply_commands == ["brew install --cask lulu"]

    def test_malformed_entries_are_skipped(self, rules_dir, caplog):
        (rules_dir / "03_broken.yaml").write_text(textwrap.dedent("""
            category: misc
            rules:
              - just a string
              - id: has space
                title: Bad id
              - id: misc_ok
                title: Still loaded
        """))

        loader = RuleLoader(str(rules_dir))

        assert loader.get_rule_by_id("misc_ok") is not None
        assert "Invalid rule has space" in caplog.text
        assert "malformed entry" in caplog.text

    def test_unparseable_file_is_skipped(self, rules_dir, caplog):
        (rules_dir / "00_bad.yaml").write_text("rules: [unclosed\n")

        loader = RuleLoader(str(rules_dir))

        assert len(loader.get_rules()) == 4
        assert "Failed to load rules" in caplog.text

    def test_duplicate_ids_keep_first(self, rules_dir, caplog):
        (rules_dir / "03_dupe.yaml").write_text(textwrap.dedent("""
            - id: firewall_enable
              title: Duplicate
              category: misc
        """))

        loader = RuleLoader(str(rules_dir))

        assert loader.get_rule_by_id("firewall_enable").title == "Enable Application Firewall"
        assert "Duplicate rule id firewall_enable" in caplog.text

    def test_missing_directory(self, tmp_path):
        assert RuleLoader(str(tmp_path / "missing")).get_rules() == []

    def test_reload_rules(self, rules_dir):
        loader = RuleLoader(str(rules_dir))
        assert len(loader.get_rules()) == 4

        (rules_dir / "03_airdrop.yaml").write_text(textwrap.dedent("""
            category: airdrop
            rules:
              - id: airdrop_disable
                title: Disable AirDrop
        """))
        assert len(loader.get_rules()) == 4

        loader.reload_rules()
        assert len(loader.get_rules()) == 5
