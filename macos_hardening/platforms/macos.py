"""
macOS platform implementation.

Runs the audit and apply commands of hardening rules through the native
administrative tools (defaults, dscl, systemsetup, socketfilterfw,
launchctl, ...), switching between root and the invoking user as each
rule requires.
"""

import logging
import re
import shlex
import shutil
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..core.models import (
    AuditCheck, HardeningRule, MatchMode, RuleResult, RuleStatus, SessionContext
)
from ..utils.os_detection import find_homebrew
from .base import BasePlatform

logger = logging.getLogger(__name__)


PLACEHOLDER = re.compile(r"\{([A-Za-z_]\w*)\}")


class MacOSPlatform(BasePlatform):
    """
    macOS platform handler.

    Commands flagged ``privileged`` get ``sudo -n`` when the tool was not
    started as root; commands flagged ``run_as_user`` run as the invoking
    user (``sudo -u``) when it was.
    """

    def __init__(self, session: SessionContext,
                 command_timeout: int = 60,
                 variables: Optional[Dict[str, Any]] = None,
                 shell_history: Optional[Dict[str, List[str]]] = None):
        """
        Initialize macOS platform handler.

        Args:
            session: Run state (privileges, invoking user, home directory)
            command_timeout: Timeout in seconds for each command
            variables: Values for {placeholders} in rule commands
            shell_history: rc file name -> lines that must be present
        """
        super().__init__(command_timeout)
        self.session = session
        self.variables = dict(variables or {})
        self.shell_history = dict(shell_history or {})
        # launchctl calls on the system domain always need root
        self._launchd = HardeningRule(id="launchctl", title="launchctl", category="services")

    # ------------------------------------------------------------------
    # Command construction
    # ------------------------------------------------------------------

    def render(self, text: str) -> str:
        """
        Fill {placeholders} from the config variables and the session.

        Only {name} tokens with a known value are replaced; other braces
        (regex quantifiers, literal {}) pass through unchanged.
        """
        values = {k: str(v) for k, v in self.variables.items()}
        values.update(self.session.template_values())
        return PLACEHOLDER.sub(lambda m: values.get(m.group(1), m.group(0)), text)

    def build_command(self, command: str, rule: HardeningRule) -> List[str]:
        """
        Turn a rule command into an argument list for the current session.

        Args:
            command: Command string from the rule definition
            rule: Rule the command belongs to

        Returns:
            List[str]: Arguments ready for execute_command()
        """
        args = shlex.split(self.render(command))
        if not args:
            raise ValueError(f"Empty command in rule {rule.id}")

        if args[0] == "brew":
            args[0] = find_homebrew() or "brew"

        if rule.run_as_user:
            if self.session.needs_user_switch():
                return ["sudo", "-u", self.session.invoking_user, "-H"] + args
            return args

        if rule.privileged and not self.session.started_elevated:
            return ["sudo", "-n"] + args

        return args

    def run_rule_command(self, command: str, rule: HardeningRule) -> Dict[str, Any]:
        args = self.build_command(command, rule)
        logger.debug("[%s] running: %s", rule.id, shlex.join(args))
        result = self.execute_command(args)
        logger.debug("[%s] exit=%s stdout=%r stderr=%r", rule.id,
                     result['exit_code'], result['stdout'].strip(), result['stderr'].strip())
        return result

    # ------------------------------------------------------------------
    # Audit / apply
    # ------------------------------------------------------------------

    def audit_rule(self, rule: HardeningRule) -> RuleResult:
        """
        Audit a macOS hardening rule.

        Args:
            rule: Hardening rule to audit

        Returns:
            RuleResult: Audit result
        """
        start_time = time.monotonic()

        try:
            if rule.shell_history:
                result = self._audit_shell_history(rule)
            elif rule.service:
                result = self._audit_service_rule(rule)
            else:
                result = self._audit_generic_rule(rule)
        except Exception as e:
            result = self._result(rule, RuleStatus.ERROR, f"Audit error: {e}")

        result.execution_time_ms = int((time.monotonic() - start_time) * 1000)
        return result

    def apply_rule(self, rule: HardeningRule) -> RuleResult:
        """
        Apply a macOS hardening rule.

        Already compliant rules are left alone. Otherwise the apply
        commands run in order and the audit is repeated to verify them.

        Args:
            rule: Hardening rule to apply

        Returns:
            RuleResult: Application result
        """
        start_time = time.monotonic()

        try:
            audit_result = self.audit_rule(rule)

            if audit_result.status == RuleStatus.PASS:
                audit_result.message = "Already compliant, no changes made"
                return audit_result

            if rule.shell_history:
                result = self._apply_shell_history(rule, audit_result)
            elif rule.service:
                result = self._apply_service_rule(rule, audit_result)
            else:
                result = self._apply_generic_rule(rule, audit_result)

        except Exception as e:
            result = self._result(
                rule, RuleStatus.ERROR, f"Application error: {e}",
                remediation_required=True
            )

        result.execution_time_ms = int((time.monotonic() - start_time) * 1000)
        return result

    def evaluate_check(self, check: AuditCheck, outcome: Dict[str, Any]) -> Tuple[bool, str]:
        """
        Decide whether one audit check passed.

        Returns:
            Tuple[bool, str]: (passed, human readable detail)
        """
        output = (outcome['stdout'] or '') + (outcome['stderr'] or '')
        stripped = output.strip()

        expected_exit = check.expected_exit_code
        if expected_exit is None and check.match != MatchMode.ABSENT:
            expected_exit = 0
        if expected_exit is not None and outcome['exit_code'] != expected_exit:
            return False, f"exit code {outcome['exit_code']} (expected {expected_exit})"

        if check.expected_output is None:
            return True, f"exit code {outcome['exit_code']}"

        expected = self.render(check.expected_output)
        shown = stripped.splitlines()[0] if stripped else "<no output>"

        if check.match == MatchMode.EXACT:
            passed = (outcome['stdout'] or '').strip() == expected
        elif check.match == MatchMode.REGEX:
            passed = re.search(expected, output, re.MULTILINE) is not None
        elif check.match == MatchMode.ABSENT:
            passed = expected not in output
        else:
            passed = expected in output

        if passed:
            return True, shown
        return False, f"got '{shown}', expected {check.match.value} '{expected}'"

    def _audit_generic_rule(self, rule: HardeningRule) -> RuleResult:
        """Run every audit check; all must pass."""
        if not rule.audit_checks:
            return self._result(rule, RuleStatus.SKIPPED, "No audit checks defined for this rule")

        observed = {}
        last = None
        for check in rule.audit_checks:
            outcome = self.run_rule_command(check.command, rule)
            last = outcome
            observed[self.render(check.command)] = outcome['stdout'].strip()

            if outcome['exit_code'] == -1:
                return self._result(
                    rule, RuleStatus.ERROR,
                    f"Could not run '{self.render(check.command)}': {outcome['stderr'].strip()}",
                    stdout=outcome['stdout'], stderr=outcome['stderr'],
                    exit_code=outcome['exit_code'], before_state=observed
                )

            passed, detail = self.evaluate_check(check, outcome)
            if not passed:
                return self._result(
                    rule, RuleStatus.FAIL, f"Non-compliant: {detail}",
                    stdout=outcome['stdout'], stderr=outcome['stderr'],
                    exit_code=outcome['exit_code'], before_state=observed,
                    remediation_required=True
                )

        return self._result(
            rule, RuleStatus.PASS, "Compliant",
            stdout=last['stdout'], stderr=last['stderr'],
            exit_code=last['exit_code'], before_state=observed
        )

    def _apply_generic_rule(self, rule: HardeningRule, audit_result: RuleResult) -> RuleResult:
        """Run the apply commands in order, then verify with a fresh audit."""
        if not rule.apply_commands:
            return self._result(
                rule, RuleStatus.SKIPPED, "No apply commands defined for this rule",
                before_state=audit_result.before_state
            )

        last = None
        for command in rule.apply_commands:
            outcome = self.run_rule_command(command, rule)
            last = outcome
            if outcome['success']:
                continue
            if rule.ignore_errors:
                logger.debug("[%s] ignoring failure of '%s'", rule.id, command)
                continue
            return self._result(
                rule, RuleStatus.ERROR,
                f"Command failed: {self.render(command)}: {outcome['stderr'].strip() or 'exit code ' + str(outcome['exit_code'])}",
                stdout=outcome['stdout'], stderr=outcome['stderr'],
                exit_code=outcome['exit_code'], before_state=audit_result.before_state,
                remediation_required=True
            )

        return self._verify(rule, audit_result, last)

    def _verify(self, rule: HardeningRule, audit_result: RuleResult,
                last: Optional[Dict[str, Any]] = None) -> RuleResult:
        """Re-audit after applying; compliant means APPLIED."""
        last = last or {'stdout': None, 'stderr': None, 'exit_code': None}

        if not rule.audit_checks and not rule.service and not rule.shell_history:
            return self._result(
                rule, RuleStatus.APPLIED, "Applied (no verification defined)",
                stdout=last['stdout'], stderr=last['stderr'], exit_code=last['exit_code'],
                before_state=audit_result.before_state
            )

        verification = self.audit_rule(rule)
        if verification.status == RuleStatus.PASS:
            return self._result(
                rule, RuleStatus.APPLIED, "Applied and verified",
                stdout=last['stdout'], stderr=last['stderr'], exit_code=last['exit_code'],
                before_state=audit_result.before_state,
                after_state=verification.before_state
            )

        return self._result(
            rule, RuleStatus.FAIL,
            f"Applied but verification failed: {verification.message}",
            stdout=verification.stdout, stderr=verification.stderr,
            exit_code=verification.exit_code,
            before_state=audit_result.before_state,
            after_state=verification.before_state,
            remediation_required=True
        )

    # ------------------------------------------------------------------
    # launchd services
    # ------------------------------------------------------------------

    def _audit_service_rule(self, rule: HardeningRule) -> RuleResult:
        """A service rule passes once launchd has the service disabled."""
        status = self.get_service_status(rule.service)
        if status['disabled']:
            return self._result(
                rule, RuleStatus.PASS, f"{rule.service} is disabled", before_state=status
            )
        return self._result(
            rule, RuleStatus.FAIL,
            f"Non-compliant: {rule.service} is not disabled"
            + (" and is loaded" if status['loaded'] else ""),
            before_state=status, remediation_required=True
        )

    def _apply_service_rule(self, rule: HardeningRule, audit_result: RuleResult) -> RuleResult:
        if not self.disable_service(rule.service):
            return self._result(
                rule, RuleStatus.ERROR, f"launchctl could not disable {rule.service}",
                before_state=audit_result.before_state, remediation_required=True
            )
        # bootout fails when the service is not loaded
        if audit_result.before_state and audit_result.before_state.get('loaded'):
            if not self.stop_service(rule.service):
                logger.warning("[%s] %s disabled but could not be stopped until restart",
                               rule.id, rule.service)
        return self._verify(rule, audit_result)

    def get_service_status(self, service_name: str) -> Dict[str, Any]:
        """Get launchd status of a system service."""
        disabled_out = self.run_rule_command("launchctl print-disabled system", self._launchd)
        pattern = rf'"{re.escape(service_name)}"\s*=>\s*(true|disabled)'
        disabled = re.search(pattern, disabled_out['stdout']) is not None

        loaded_out = self.run_rule_command(f"launchctl print system/{service_name}", self._launchd)

        return {
            'service': service_name,
            'disabled': disabled,
            'loaded': loaded_out['exit_code'] == 0,
        }

    def stop_service(self, service_name: str) -> bool:
        """Unload a system service from launchd."""
        result = self.run_rule_command(f"launchctl bootout system/{service_name}", self._launchd)
        return result['success']

    def disable_service(self, service_name: str) -> bool:
        """Disable a system service so launchd does not start it at boot."""
        result = self.run_rule_command(f"launchctl disable system/{service_name}", self._launchd)
        return result['success']

    # ------------------------------------------------------------------
    # Shell history
    # ------------------------------------------------------------------

    def _missing_history_lines(self) -> Dict[str, List[str]]:
        missing = {}
        for file_name, lines in self.shell_history.items():
            path = self.session.home_dir / file_name
            present = set()
            if self.check_file_exists(str(path)):
                present = {line.strip() for line in self.read_config_file(str(path)).splitlines()}
            absent = [line for line in lines if line.strip() not in present]
            if absent:
                missing[str(path)] = absent
        return missing

    def _audit_shell_history(self, rule: HardeningRule) -> RuleResult:
        if not self.shell_history:
            return self._result(rule, RuleStatus.SKIPPED, "No shell history settings configured")

        missing = self._missing_history_lines()
        if not missing:
            return self._result(
                rule, RuleStatus.PASS, "Shell history disabled in all rc files",
                before_state={'missing': {}}
            )

        summary = ", ".join(f"{Path(p).name}: {' '.join(lines)}" for p, lines in missing.items())
        return self._result(
            rule, RuleStatus.FAIL, f"Non-compliant: missing {summary}",
            before_state={'missing': missing}, remediation_required=True
        )

    def _apply_shell_history(self, rule: HardeningRule, audit_result: RuleResult) -> RuleResult:
        missing = (audit_result.before_state or {}).get('missing') or self._missing_history_lines()

        for file_path, lines in missing.items():
            content = ""
            if self.check_file_exists(file_path):
                content = self.read_config_file(file_path)
            if content and not content.endswith('\n'):
                content += '\n'
            content += '\n'.join(lines) + '\n'

            if not self.write_config_file(file_path, content, backup=True):
                return self._result(
                    rule, RuleStatus.ERROR, f"Failed to write {file_path}",
                    before_state=audit_result.before_state, remediation_required=True
                )

        return self._verify(rule, audit_result)

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def read_config_file(self, file_path: str) -> str:
        """Read a configuration file."""
        try:
            with open(file_path, 'r') as f:
                return f.read()
        except FileNotFoundError:
            raise FileNotFoundError(f"Configuration file not found: {file_path}")
        except PermissionError:
            raise PermissionError(f"Permission denied reading: {file_path}")

    def write_config_file(self, file_path: str, content: str, backup: bool = True) -> bool:
        """
        Write a configuration file.

        Files under the invoking user's home are handed back to that user
        when running as root.
        """
        try:
            if backup and Path(file_path).exists():
                self.backup_file(file_path)

            with open(file_path, 'w') as f:
                f.write(content)

            if self.session.needs_user_switch() and Path(file_path).is_relative_to(self.session.home_dir):
                shutil.chown(file_path, user=self.session.invoking_user)

            return True
        except (OSError, LookupError) as e:
            logger.error("Failed to write %s: %s", file_path, e)
            return False

    def backup_file(self, file_path: str) -> str:
        """Create a timestamped backup of a file."""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        backup_path = f"{file_path}.backup_{timestamp}"

        try:
            shutil.copy2(file_path, backup_path)
            logger.debug("Backed up %s to %s", file_path, backup_path)
            return backup_path
        except OSError as e:
            raise IOError(f"Failed to backup {file_path}: {e}")

    # ------------------------------------------------------------------

    def _result(self, rule: HardeningRule, status: RuleStatus, message: str, **kwargs) -> RuleResult:
        return RuleResult(
            rule_id=rule.id,
            rule_title=rule.title,
            status=status,
            severity=rule.severity,
            category=rule.category,
            message=message,
            **kwargs
        )
