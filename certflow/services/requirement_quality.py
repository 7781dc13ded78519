"""
Requirement Quality Validator

Rules-based scoring of safety-requirement text (0–10, five 2-point checks)
with a PASS / FLAG / REJECT verdict. Two named rule sets exist because the
interactive and batch checks historically scored differently:

    reference   interactive default. Weak language and constraint language
                share one "preventive constraint" check; severity alignment
                against the design-precedence hierarchy is scored; missing
                context is informational only.
    batch       project-wide sweep. Weak language and constraint language
                are scored separately; severity is not evaluated; every
                issue is a warning.

Usage:
    from certflow.services.requirement_quality import validate

    result = validate("The system shall detect brake failure within 200 ms",
                      hazard_severity="catastrophic", mitigation_level=3)
    result.status   # "PASS" / "FLAG" / "REJECT"
"""

import logging
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

from certflow.core.exceptions import ValidationError
from certflow.models import db
from certflow.models.project import Project
from certflow.models.safety import Requirement
from certflow.utils.helpers import get_or_raise

logger = logging.getLogger(__name__)

MAX_SCORE = 10
RULE_SETS = ("reference", "batch")
CONTEXT_MIN_LENGTH = 50
BATCH_RESULT_LIMIT = 50

# Mitigation strategies, most to least preferred
DESIGN_PRECEDENCE = (
    {"level": 1, "name": "Elimination", "description": "Eliminate the hazard through design selection"},
    {"level": 2, "name": "Design for minimum hazard", "description": "Reduce risk through design alteration"},
    {"level": 3, "name": "Safety devices", "description": "Incorporate engineered safety features"},
    {"level": 4, "name": "Warning annunciation", "description": "Provide warning devices"},
    {"level": 5, "name": "Alerts and labels", "description": "Signage, placards and cautions"},
    {"level": 6, "name": "Training", "description": "Procedures and operator training"},
    {"level": 7, "name": "Documentation", "description": "Manuals and written procedures"},
)
SIGNIFICANT_SEVERITIES = ("catastrophic", "critical")

# ── Patterns ─────────────────────────────────────────────────────────────

WEAK_WORDS = ("should", "may", "might", "could", "try", "attempt", "consider", "strive")
BATCH_WEAK_WORDS = WEAK_WORDS + ("ensure", "verify", "adequate", "sufficient", "as needed", "where practicable")

HUMAN_DEPENDENCE_RE = re.compile(
    r"\b(operator|personnel|user|driver|maintainer|staff|worker|crew)s?\s+"
    r"(shall|should|must|will|may)\b",
    re.IGNORECASE,
)

REFERENCE_CONSTRAINT_PATTERNS = (
    re.compile(r"\bshall\s+(not|prevent|prohibit|limit|restrict|detect|isolate|contain)\b", re.I),
    re.compile(r"\bno\s+single\s+failure\b", re.I),
    re.compile(r"\bfail[- ]safe\b", re.I),
    re.compile(r"\bredundant\b", re.I),
    re.compile(r"\bmaximum\b.*\b(time|duration|interval)\b", re.I),
    re.compile(r"\bwithin\s+\d+\s*(ms|milliseconds?|s|seconds?|minutes?)\b", re.I),
)
BATCH_CONSTRAINT_TERMS = (
    "shall prevent", "shall inhibit", "shall not allow", "shall be incapable of",
    "shall limit", "shall restrict", "shall detect", "shall isolate", "shall contain",
)

QUANTITATIVE_PATTERNS = (
    re.compile(r"\d+\s*(ms|milliseconds?|s|seconds?|minutes?|hours?)\b", re.I),
    re.compile(r"\d+\s*%"),
    re.compile(r"\d+\s*(m|meters?|ft|feet|km|miles?)\b", re.I),
    re.compile(r"\bSIL[- ]?[1-4]\b", re.I),
    re.compile(r"10\^?-?\d+"),
    re.compile(r"\d+\s*(V|volts?|A|amps?|W|watts?)\b", re.I),
    re.compile(r"\d+\s*(kg|lbs?|pounds?|N|newtons?)\b", re.I),
)

CONTEXT_PATTERNS = (
    re.compile(r"\bwhen\b", re.I),
    re.compile(r"\bif\b", re.I),
    re.compile(r"\bduring\b", re.I),
    re.compile(r"\bupon\b", re.I),
    re.compile(r"\bin\s+the\s+event\s+of\b", re.I),
    re.compile(r"\bunder\s+(normal|abnormal|degraded|emergency)\s+(conditions?|operations?|mode)\b", re.I),
)

# Issue texts double as the top_issues keys of a batch run
MSG_WEAK = "Weak language detected"
MSG_CONSTRAINT = "Missing constraint language"
MSG_HUMAN = "Relies on human action"
MSG_VERIFY = "Not objectively verifiable"
MSG_CONTEXT = "Missing operational context"


@dataclass
class QualityResult:
    score: int
    status: str
    rule_set: str
    preventive_constraint: bool
    human_independent: bool
    objectively_verifiable: bool
    severity_aligned: bool
    clear_context: bool
    has_weak_language: bool
    weak_terms: list = field(default_factory=list)
    issues: list = field(default_factory=list)
    max_score: int = MAX_SCORE

    @property
    def score_percentage(self) -> int:
        return round(100 * self.score / self.max_score)

    @property
    def critical_count(self) -> int:
        return sum(1 for i in self.issues if i["severity"] == "critical")

    @property
    def warning_count(self) -> int:
        return sum(1 for i in self.issues if i["severity"] == "warning")

    def to_dict(self) -> dict:
        data = asdict(self)
        data["score_percentage"] = self.score_percentage
        data["critical_count"] = self.critical_count
        data["warning_count"] = self.warning_count
        return data


def _issue(rule, severity, message, action):
    return {"rule": rule, "severity": severity, "message": message, "action": action}


def find_weak_terms(text: str, words=WEAK_WORDS) -> list[str]:
    """Hedging words (whole words) plus human-role phrasings such as 'operator shall'."""
    found = [w for w in words if re.search(rf"\b{re.escape(w)}\b", text, re.IGNORECASE)]
    for match in HUMAN_DEPENDENCE_RE.finditer(text):
        phrase = f"{match.group(1).lower()} {match.group(2).lower()}"
        if phrase not in found:
            found.append(phrase)
    return found


def _has_constraint(text: str, rule_set: str) -> bool:
    if rule_set == "batch":
        lowered = text.lower()
        return any(term in lowered for term in BATCH_CONSTRAINT_TERMS)
    return any(p.search(text) for p in REFERENCE_CONSTRAINT_PATTERNS)


def _is_verifiable(text: str, verification_method) -> bool:
    method = (verification_method or "").strip().lower()
    return any(p.search(text) for p in QUANTITATIVE_PATTERNS) or method not in ("", "none")


def _mitigation_level(value) -> int | None:
    if value is None or value == "":
        return None
    try:
        level = int(value)
    except (TypeError, ValueError):
        raise ValidationError("mitigation_level must be an integer 1-7",
                              details={"mitigation_level": value})
    if not 1 <= level <= len(DESIGN_PRECEDENCE):
        raise ValidationError("mitigation_level must be an integer 1-7",
                              details={"mitigation_level": value})
    return level


def validate(text: str, hazard_severity: str | None = None, verification_method: str | None = None,
             mitigation_level: int | None = None, rule_set: str = "reference") -> QualityResult:
    """
    Score requirement text against the quality rules.

    Deterministic and side-effect free.

    Raises:
        ValidationError: empty text, unknown rule_set or mitigation_level outside 1-7.
    """
    if rule_set not in RULE_SETS:
        raise ValidationError(f"rule_set must be one of {', '.join(RULE_SETS)}",
                              details={"rule_set": rule_set})
    text = (text or "").strip()
    if not text:
        raise ValidationError("text is required", details={"text": "required"})
    level = _mitigation_level(mitigation_level)
    severity = (hazard_severity or "").strip().lower()

    weak_terms = find_weak_terms(text, BATCH_WEAK_WORDS if rule_set == "batch" else WEAK_WORDS)
    has_weak = bool(weak_terms)
    has_constraint = _has_constraint(text, rule_set)
    human_independent = HUMAN_DEPENDENCE_RE.search(text) is None
    verifiable = _is_verifiable(text, verification_method)
    has_context = any(p.search(text) for p in CONTEXT_PATTERNS)
    context_checked = len(text) > CONTEXT_MIN_LENGTH

    if rule_set == "batch":
        return _batch_result(text, weak_terms, has_constraint, human_independent, verifiable,
                             has_context, context_checked)

    issues = []
    if has_weak:
        issues.append(_issue("WEAK_LANGUAGE", "warning", MSG_WEAK,
                             "Replace hedging terms with 'shall' for mandatory requirements"))
    if not has_constraint:
        issues.append(_issue("MISSING_CONSTRAINT", "warning", MSG_CONSTRAINT,
                             "Add specific constraints: 'shall prevent', 'shall detect within X ms', "
                             "'shall limit to Y'"))
    if not human_independent:
        issues.append(_issue("HUMAN_DEPENDENCE", "warning", MSG_HUMAN,
                             "Add automated controls or defense-in-depth"))
    if not verifiable:
        issues.append(_issue("VERIFIABILITY", "warning", MSG_VERIFY,
                             "Add measurable acceptance criteria or a verification method"))

    severity_aligned = True
    if severity in SIGNIFICANT_SEVERITIES:
        if level is None:
            severity_aligned = False
            issues.append(_issue("INSUFFICIENT_CONTROL", "warning",
                                 f"No design precedence level given for {severity} hazard",
                                 "State the mitigation level; use Level 1-3 for catastrophic/critical hazards"))
        elif level >= 5:
            severity_aligned = False
            issues.append(_issue("INSUFFICIENT_CONTROL", "critical",
                                 f"Design precedence Level {level} is insufficient for {severity} hazard",
                                 "Use Level 1-3 mitigations (Elimination, Design for Min Hazard, "
                                 "or Safety Devices)"))
        elif level == 4:
            severity_aligned = False
            issues.append(_issue("INSUFFICIENT_CONTROL", "warning",
                                 f"Warning annunciation alone is weak for {severity} hazard",
                                 "Back the annunciation with a Level 1-3 mitigation"))

    if not has_context and context_checked:
        issues.append(_issue("MISSING_CONTEXT", "info", MSG_CONTEXT,
                             "Add context: 'when X condition exists', 'during Y mode', 'upon Z event'"))

    if has_weak and not human_independent:
        # hedged human action is the hard blocker
        for issue in issues:
            if issue["rule"] in ("WEAK_LANGUAGE", "HUMAN_DEPENDENCE"):
                issue["severity"] = "critical"

    preventive = has_constraint and not has_weak
    checks = (preventive, human_independent, verifiable, severity_aligned, has_context)
    return QualityResult(
        score=2 * sum(checks),
        status=_verdict(issues),
        rule_set=rule_set,
        preventive_constraint=preventive,
        human_independent=human_independent,
        objectively_verifiable=verifiable,
        severity_aligned=severity_aligned,
        clear_context=has_context,
        has_weak_language=has_weak,
        weak_terms=weak_terms,
        issues=issues,
    )


def _batch_result(text, weak_terms, has_constraint, human_independent, verifiable,
                  has_context, context_checked) -> QualityResult:
    has_weak = bool(weak_terms)
    issues = []
    if has_weak:
        issues.append(_issue("WEAK_LANGUAGE", "warning", MSG_WEAK, f"Remove: {', '.join(weak_terms)}"))
    if not has_constraint:
        issues.append(_issue("MISSING_CONSTRAINT", "warning", MSG_CONSTRAINT,
                             "Use 'shall prevent / inhibit / limit / detect / isolate'"))
    if not human_independent:
        issues.append(_issue("HUMAN_DEPENDENCE", "warning", MSG_HUMAN,
                             "Make the system, not a person, the subject of the requirement"))
    if not verifiable:
        issues.append(_issue("VERIFIABILITY", "warning", MSG_VERIFY,
                             "Add a quantitative criterion or a verification method"))
    if not has_context and context_checked:
        issues.append(_issue("MISSING_CONTEXT", "warning", MSG_CONTEXT,
                             "Bind the requirement to an operating condition"))

    if has_weak and not human_independent:
        status = "REJECT"
    elif issues:
        status = "FLAG"
    else:
        status = "PASS"

    checks = (not has_weak, has_constraint, human_independent, verifiable, has_context)
    return QualityResult(
        score=2 * sum(checks),
        status=status,
        rule_set="batch",
        preventive_constraint=has_constraint,
        human_independent=human_independent,
        objectively_verifiable=verifiable,
        severity_aligned=True,
        clear_context=has_context,
        has_weak_language=has_weak,
        weak_terms=weak_terms,
        issues=issues,
    )


def _verdict(issues: list) -> str:
    if any(i["severity"] == "critical" for i in issues):
        return "REJECT"
    if any(i["severity"] == "warning" for i in issues):
        return "FLAG"
    return "PASS"


# ═════════════════════════════════════════════════════════════════════════════
# Batch validation with write-back
# ═════════════════════════════════════════════════════════════════════════════

def apply_assessment(requirement: Requirement, result: QualityResult, checked_at=None):
    """Copy a QualityResult onto the requirement's quality columns."""
    requirement.quality_score = result.score
    requirement.quality_status = result.status
    requirement.is_preventive_constraint = result.preventive_constraint
    requirement.is_human_independent = result.human_independent
    requirement.is_objectively_verifiable = result.objectively_verifiable
    requirement.is_severity_aligned = result.severity_aligned
    requirement.has_clear_context = result.clear_context
    requirement.has_weak_language = result.has_weak_language
    requirement.weak_language_flags = result.weak_terms or None
    requirement.quality_checked_at = checked_at or datetime.now(timezone.utc)


def batch_validate_requirements(project_id: int, requirement_ids: list | None = None,
                                rule_set: str = "batch") -> dict:
    """
    Validate a project's requirements (or a subset) and write the results back.

    Returns:
        {"summary": {...}, "top_issues": {message: count}, "results": [first 50]}
    """
    get_or_raise(Project, project_id)
    if rule_set not in RULE_SETS:
        raise ValidationError(f"rule_set must be one of {', '.join(RULE_SETS)}",
                              details={"rule_set": rule_set})

    query = Requirement.query.filter_by(project_id=project_id)
    if requirement_ids is not None:
        if not isinstance(requirement_ids, list):
            raise ValidationError("requirement_ids must be a list")
        try:
            ids = [int(i) for i in requirement_ids]
        except (TypeError, ValueError):
            raise ValidationError("requirement_ids must be integers")
        query = query.filter(Requirement.id.in_(ids))
    requirements = query.order_by(Requirement.id).all()

    now = datetime.now(timezone.utc)
    results = []
    issue_counts = {}
    for req in requirements:
        text = f"{req.title or ''} {req.description or ''}".strip()
        if not text:
            continue
        result = validate(text, verification_method=req.verification_method, rule_set=rule_set)
        apply_assessment(req, result, now)
        for issue in result.issues:
            issue_counts[issue["message"]] = issue_counts.get(issue["message"], 0) + 1
        results.append({
            "id": req.id,
            "uid": req.uid,
            "title": req.title,
            "quality_score": result.score,
            "status": result.status,
            "issues": [i["message"] for i in result.issues],
            "weak_terms": result.weak_terms,
        })
    db.session.commit()

    total = len(results)
    average = round(sum(r["quality_score"] for r in results) / total, 1) if total else 0.0
    summary = {
        "total": total,
        "passed": sum(1 for r in results if r["status"] == "PASS"),
        "flagged": sum(1 for r in results if r["status"] == "FLAG"),
        "rejected": sum(1 for r in results if r["status"] == "REJECT"),
        "average_score": average,
        "max_score": MAX_SCORE,
    }
    logger.info("Batch validation for project %s (%s): %s", project_id, rule_set, summary,
                extra={"project_id": project_id})
    return {
        "summary": summary,
        "rule_set": rule_set,
        "top_issues": dict(sorted(issue_counts.items(), key=lambda kv: (-kv[1], kv[0]))),
        "results": results[:BATCH_RESULT_LIMIT],
    }
