"""
Analyse des réponses de l'étape de validation.

Une réponse est positive ("OK", "looks good", "no issues"...) ou contient
une liste de problèmes, une ligne par problème :
    [CATEGORY] description
    - description
    1. description
"""

import re
from dataclasses import dataclass, field

_EXACT_POSITIVE = {"ok", "okay", "good", "correct", "fine", "perfect", "excellent"}

_POSITIVE_PATTERNS = [
    re.compile(r"^(ok|okay|good|correct|fine|perfect|excellent|accurate)\b", re.I),
    re.compile(r"^looks?\s+(good|fine|correct|okay)", re.I),
    re.compile(r"^no\s+(issues?|problems?|errors?)", re.I),
    re.compile(r"^(the\s+)?translation\s+is\s+(good|correct|accurate|fine)", re.I),
    re.compile(r"^(bem\s+traduzido|tradução\s+correta|está\s+(boa|correta|bem))", re.I),
    re.compile(r"^(traduction\s+correcte|aucun\s+problème|rien\s+à\s+signaler)", re.I),
]

_POSITIVE_WORDS = ("good", "ok", "fine", "correct", "yes", "great", "bon", "correcte")
_NEGATIVE_WORDS = ("no", "not", "issue", "error", "problem", "wrong", "incorrect")

_CATEGORY_LINE = re.compile(r"^\[([A-Z_]+)\]\s*(.+)$", re.I)
_BULLET_LINE = re.compile(r"^(?:[-*•]|\d+[.)])\s*(.+)$")


@dataclass
class ValidationIssue:
    type: str
    description: str
    severity: str = "medium"


@dataclass
class ValidationResult:
    is_ok: bool
    issues: list[ValidationIssue] = field(default_factory=list)
    raw_response: str = ""


def severity_for(issue_type: str) -> str:
    lowered = issue_type.lower()
    if "mistranslation" in lowered:
        return "critical"
    if "gender" in lowered or "plural" in lowered or "variant" in lowered:
        return "high"
    return "medium"


def is_positive_response(response: str) -> bool:
    if not response:
        return False
    normalized = response.strip().lower()
    if len(normalized) < 2:
        return False
    if normalized.rstrip(".!") in _EXACT_POSITIVE:
        return True
    if any(pattern.match(normalized) for pattern in _POSITIVE_PATTERNS):
        return True

    # Réponse courte sans mot négatif
    if len(normalized) < 20:
        words = re.findall(r"\w+", normalized)
        has_positive = any(word in _POSITIVE_WORDS for word in words)
        has_negative = any(word in _NEGATIVE_WORDS for word in words)
        return has_positive and not has_negative
    return False


def parse_validation_response(response: str) -> ValidationResult:
    """
    Convertit la réponse brute du modèle en ValidationResult.

    Example:
        >>> result = parse_validation_response("[GENDER] 'bom' devrait être 'bons'")
        >>> result.is_ok, result.issues[0].severity
        (False, 'high')
    """
    if not response or not response.strip():
        return ValidationResult(is_ok=False, raw_response=response or "")
    if is_positive_response(response):
        return ValidationResult(is_ok=True, raw_response=response)

    issues: list[ValidationIssue] = []
    for line in (line.strip() for line in response.splitlines()):
        if not line:
            continue
        bullet = _BULLET_LINE.match(line)
        if bullet and bullet.group(1).startswith("["):
            line = bullet.group(1)
        category = _CATEGORY_LINE.match(line)
        if category:
            issue_type = category.group(1).upper()
            issues.append(
                ValidationIssue(issue_type, category.group(2).strip(), severity_for(issue_type))
            )
            continue
        bullet = _BULLET_LINE.match(line)
        if bullet:
            issues.append(ValidationIssue("GENERAL", bullet.group(1).strip()))
        elif len(line) > 10 and not is_positive_response(line):
            issues.append(ValidationIssue("GENERAL", line))

    return ValidationResult(is_ok=not issues, issues=issues, raw_response=response)


def build_rewrite_instructions(result: ValidationResult) -> str:
    """Liste numérotée des problèmes, les plus graves d'abord."""
    if result.is_ok:
        return ""
    order = {"critical": 0, "high": 1, "medium": 2}
    issues = sorted(result.issues, key=lambda issue: order.get(issue.severity, 3))
    return "\n".join(
        f"{index}. [{issue.type}] {issue.description}"
        for index, issue in enumerate(issues, start=1)
    )
