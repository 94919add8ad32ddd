"""
Data models for the hardening tool using Pydantic for validation.
"""

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RuleSeverity(str, Enum):
    """Rule severity levels based on security impact."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


class RuleStatus(str, Enum):
    """Execution status of a hardening rule."""
    PASS = "pass"
    APPLIED = "applied"
    FAIL = "fail"
    ERROR = "error"
    SKIPPED = "skipped"
    NOT_APPLICABLE = "not_applicable"


class MatchMode(str, Enum):
    """How an audit check compares command output to its expected value."""
    CONTAINS = "contains"
    EXACT = "exact"
    REGEX = "regex"
    ABSENT = "absent"


class SystemInfo(BaseModel):
    """System information detected during runtime."""
    product_name: str = "macOS"
    os_version: str
    build_version: Optional[str] = None
    architecture: str
    hostname: str
    kernel_version: Optional[str] = None
    detected_at: datetime = Field(default_factory=utcnow)

    @property
    def is_macos(self) -> bool:
        return self.product_name.lower() in ("macos", "mac os x")


class AuditCheck(BaseModel):
    """A read-only command whose output decides compliance."""
    command: str = Field(..., min_length=1, description="Command to check current state")
    expected_output: Optional[str] = Field(None, description="String the output is matched against")
    match: MatchMode = MatchMode.CONTAINS
    expected_exit_code: Optional[int] = Field(None, description="Required exit code (0 when unset)")


class HardeningRule(BaseModel):
    """Definition of a hardening rule."""
    id: str = Field(..., min_length=1, description="Unique rule identifier")
    title: str = Field(..., description="Human-readable rule title")
    description: str = Field("", description="Detailed rule description")
    severity: RuleSeverity = Field(RuleSeverity.MEDIUM, description="Security impact level")
    category: str = Field(..., description="Checklist section (e.g. firewall, sharing)")
    cis_benchmark: Optional[str] = Field(None, description="CIS Benchmark reference")
    remediation_steps: List[str] = Field(default_factory=list, description="Manual remediation instructions")

    # Execution parameters
    audit_checks: List[AuditCheck] = Field(default_factory=list)
    apply_commands: List[str] = Field(default_factory=list)
    service: Optional[str] = Field(None, description="launchd label to disable instead of running commands")
    shell_history: bool = Field(False, description="Edit the invoking user's shell rc files from the shell_history config")
    run_as_user: bool = Field(False, description="Run commands as the invoking user instead of root")
    privileged: bool = Field(True, description="Commands need root")
    ignore_errors: bool = Field(False, description="Continue past failing apply commands")
    requires_restart: bool = False

    @field_validator('id')
    @classmethod
    def validate_id(cls, v):
        """Rule ids are used as CLI arguments, so no whitespace."""
        if any(c.isspace() for c in v):
            raise ValueError("Rule id must not contain whitespace")
        return v

    @field_validator('category')
    @classmethod
    def normalize_category(cls, v):
        return v.strip().lower()


class RuleResult(BaseModel):
    """Result of executing a hardening rule."""
    rule_id: str
    rule_title: str
    status: RuleStatus
    severity: RuleSeverity
    category: Optional[str] = None

    # Execution details
    executed_at: datetime = Field(default_factory=utcnow)
    execution_time_ms: Optional[int] = None

    # Before/after state
    before_state: Optional[Dict[str, Any]] = None
    after_state: Optional[Dict[str, Any]] = None

    # Output and errors
    stdout: Optional[str] = None
    stderr: Optional[str] = None
    exit_code: Optional[int] = None

    message: Optional[str] = None
    remediation_required: bool = False


class HardeningRun(BaseModel):
    """Complete hardening execution run."""
    run_id: str = Field(..., description="Unique run identifier")
    operation: str = Field(..., description="Operation type: audit, apply, or dry_run")
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    system_info: SystemInfo
    started_elevated: bool = False

    categories: List[str] = Field(default_factory=list, description="Rule categories executed")
    rule_ids: List[str] = Field(default_factory=list, description="Specific rules executed")

    rule_results: List[RuleResult] = Field(default_factory=list)
    restart_required: List[str] = Field(default_factory=list, description="Settings that need a restart")

    # Summary statistics
    total_rules: int = 0
    passed_rules: int = 0
    applied_rules: int = 0
    failed_rules: int = 0
    error_rules: int = 0
    skipped_rules: int = 0

    success: bool = False
    overall_score: float = 0.0  # Percentage of compliant rules

    def calculate_summary(self) -> None:
        """Calculate summary statistics from rule results."""
        self.total_rules = len(self.rule_results)
        self.passed_rules = sum(1 for r in self.rule_results if r.status == RuleStatus.PASS)
        self.applied_rules = sum(1 for r in self.rule_results if r.status == RuleStatus.APPLIED)
        self.failed_rules = sum(1 for r in self.rule_results if r.status == RuleStatus.FAIL)
        self.error_rules = sum(1 for r in self.rule_results if r.status == RuleStatus.ERROR)
        self.skipped_rules = sum(1 for r in self.rule_results if r.status == RuleStatus.SKIPPED)

        # Skipped and N/A rules do not count towards the score
        applicable_rules = self.total_rules - self.skipped_rules - sum(
            1 for r in self.rule_results if r.status == RuleStatus.NOT_APPLICABLE
        )

        if applicable_rules > 0:
            compliant = self.passed_rules + self.applied_rules
            self.overall_score = (compliant / applicable_rules) * 100.0
        else:
            self.overall_score = 100.0

        self.success = self.error_rules == 0 and self.failed_rules == 0


class HardeningResult(BaseModel):
    """Main result object for hardening operations."""
    run: HardeningRun

    @property
    def passed(self) -> bool:
        """Whether the hardening run was successful."""
        return self.run.success

    @property
    def overall_score(self) -> float:
        """Overall compliance score percentage."""
        return self.run.overall_score

    @property
    def failed_rules(self) -> List[RuleResult]:
        """List of rules that failed."""
        return [r for r in self.run.rule_results if r.status == RuleStatus.FAIL]

    @property
    def error_rules(self) -> List[RuleResult]:
        """List of rules whose commands could not run."""
        return [r for r in self.run.rule_results if r.status == RuleStatus.ERROR]

    @property
    def critical_failures(self) -> List[RuleResult]:
        """List of critical severity failures."""
        return [
            r for r in self.failed_rules + self.error_rules
            if r.severity == RuleSeverity.CRITICAL
        ]

    @property
    def restart_required(self) -> List[str]:
        return self.run.restart_required


class SessionContext(BaseModel):
    """
    Per-run state shared by the runner and the platform handler.

    Holds whether the process started as root, who invoked it, where that
    user's home directory is, and which applied settings need a restart.
    """
    started_elevated: bool = False
    invoking_user: Optional[str] = None
    home_dir: Path = Field(default_factory=Path.home)
    keepalive_id: Optional[int] = Field(None, description="Native id of the sudo keep-alive thread")
    restart_required: List[str] = Field(default_factory=list)

    def needs_user_switch(self) -> bool:
        """True when running as root on behalf of another account."""
        return self.started_elevated and bool(self.invoking_user) and self.invoking_user != "root"

    def mark_restart_required(self, label: str) -> None:
        if label not in self.restart_required:
            self.restart_required.append(label)

    def template_values(self) -> Dict[str, str]:
        return {
            "user": self.invoking_user or "",
            "home": str(self.home_dir),
        }
