from __future__ import annotations

import re as _re
import uuid
from datetime import datetime

from formdesk.db.models.form import CHOICE_TYPES, QuestionType

SHORT_ANSWER_MAX_LENGTH = 255

RULE_TYPES = ("regex", "min_length", "max_length", "min_value", "max_value", "email", "url")

_EMAIL_RE = _re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_URL_RE = _re.compile(r"^https?://[^\s/$.?#][^\s]*$", _re.IGNORECASE)
_TEXT_TYPES = (QuestionType.SHORT_ANSWER, QuestionType.PARAGRAPH)
_SINGLE_CHOICE = (QuestionType.MULTIPLE_CHOICE, QuestionType.DROPDOWN)


def _is_empty(val) -> bool:
    return val is None or val == "" or (isinstance(val, list) and len(val) == 0)


def _label(q: dict) -> str:
    return q.get("title") or q.get("id") or "?"


def _normalize_rule(rule, label: str, errors: list[str]) -> dict | None:
    if not isinstance(rule, dict):
        errors.append(f"Question \"{label}\" has an invalid validation rule.")
        return None
    rtype = str(rule.get("type") or "").strip().lower()
    if rtype not in RULE_TYPES:
        errors.append(f"Question \"{label}\" has an unknown validation rule \"{rtype}\".")
        return None
    value = rule.get("value")
    if rtype in ("min_length", "max_length", "min_value", "max_value"):
        try:
            value = float(value)
        except (TypeError, ValueError):
            errors.append(f"Validation rule \"{rtype}\" of \"{label}\" needs a numeric value.")
            return None
        if rtype in ("min_length", "max_length"):
            value = int(value)
    elif rtype == "regex":
        try:
            _re.compile(str(value or ""))
        except _re.error:
            errors.append(f"Regex for \"{label}\" is not valid.")
            return None
        value = str(value or "")
    out = {"type": rtype, "value": value}
    if rule.get("message"):
        out["message"] = str(rule["message"])
    return out


def normalize_questions(raw) -> tuple[list[dict], list[str]]:
    """Clean the question list of a form being saved.

    Returns (questions, errors). Ids are kept when given (stable across
    edits) and generated otherwise. Choice questions need at least two options.
    """
    errors: list[str] = []
    if raw is None:
        return [], errors
    if not isinstance(raw, list):
        return [], ["Questions must be a list."]

    questions: list[dict] = []
    seen: set[str] = set()
    for pos, q in enumerate(raw, start=1):
        if not isinstance(q, dict):
            errors.append(f"Question #{pos} is not an object.")
            continue
        title = str(q.get("title") or "").strip()
        label = title or f"#{pos}"
        if not title:
            errors.append(f"Question #{pos} needs a title.")

        qid = str(q.get("id") or "").strip() or uuid.uuid4().hex
        if qid in seen:
            errors.append(f"Question id \"{qid}\" is used more than once.")
        seen.add(qid)

        try:
            qtype = QuestionType(str(q.get("type") or "").strip().lower())
        except ValueError:
            errors.append(f"Question \"{label}\" has an unknown type \"{q.get('type')}\".")
            continue

        options = q.get("options") or []
        if not isinstance(options, list):
            errors.append(f"Options of \"{label}\" must be a list.")
            options = []
        options = [str(o).strip() for o in options if o is not None and str(o).strip()]
        if qtype in CHOICE_TYPES:
            if len(options) < 2:
                errors.append(f"Question \"{label}\" needs at least 2 options.")
            if len(set(options)) != len(options):
                errors.append(f"Question \"{label}\" has duplicate options.")
        else:
            options = []

        rules = []
        raw_rules = q.get("validationRules") or q.get("validation_rules") or []
        if not isinstance(raw_rules, list):
            errors.append(f"Validation rules of \"{label}\" must be a list.")
            raw_rules = []
        for r in raw_rules:
            nr = _normalize_rule(r, label, errors)
            if nr is not None:
                rules.append(nr)

        questions.append(
            {
                "id": qid,
                "title": title,
                "description": str(q.get("description") or ""),
                "type": qtype.value,
                "required": bool(q.get("required")),
                "options": options,
                "validationRules": rules,
            }
        )
    return questions, errors


def _check_rules(q: dict, val, errors: list[str]) -> None:
    label = _label(q)
    for rule in q.get("validationRules") or []:
        rtype = rule.get("type")
        value = rule.get("value")
        msg = rule.get("message")
        failed = False
        if rtype == "regex" and isinstance(val, str) and value:
            failed = not _re.match(value, val)
        elif rtype == "min_length" and isinstance(val, str):
            failed = len(val) < int(value)
        elif rtype == "max_length" and isinstance(val, str):
            failed = len(val) > int(value)
        elif rtype in ("min_value", "max_value") and isinstance(val, str):
            try:
                num = float(val)
            except ValueError:
                errors.append(msg or f"Answer for \"{label}\" must be a number.")
                continue
            failed = num < float(value) if rtype == "min_value" else num > float(value)
        elif rtype == "email" and isinstance(val, str):
            failed = not _EMAIL_RE.match(val)
        elif rtype == "url" and isinstance(val, str):
            failed = not _URL_RE.match(val)
        if failed:
            errors.append(msg or f"Answer for \"{label}\" does not satisfy \"{rtype}\".")


def _check_value(q: dict, val, errors: list[str]) -> None:
    label = _label(q)
    qtype = q.get("type")
    options = q.get("options") or []

    if qtype in _TEXT_TYPES:
        if not isinstance(val, str):
            errors.append(f"Answer for \"{label}\" must be text.")
            return
        if qtype == QuestionType.SHORT_ANSWER and len(val) > SHORT_ANSWER_MAX_LENGTH:
            errors.append(f"Answer for \"{label}\" is too long (max {SHORT_ANSWER_MAX_LENGTH} chars)")
            return
    elif qtype in _SINGLE_CHOICE:
        if not isinstance(val, str) or val not in options:
            errors.append(f"Answer for \"{label}\" must be one of the defined options.")
            return
    elif qtype == QuestionType.CHECKBOXES:
        if not isinstance(val, list) or not all(isinstance(v, str) for v in val):
            errors.append(f"Answer for \"{label}\" must be a list of options.")
            return
        if any(v not in options for v in val):
            errors.append(f"Answer for \"{label}\" contains an invalid option.")
            return
    elif qtype == QuestionType.DATE:
        try:
            datetime.strptime(val, "%Y-%m-%d")
        except (TypeError, ValueError):
            errors.append(f"Answer for \"{label}\" must be a date in YYYY-MM-DD format.")
            return
    elif qtype == QuestionType.TIME:
        if not isinstance(val, str) or not _parse_time(val):
            errors.append(f"Answer for \"{label}\" must be a time in HH:MM format.")
            return

    _check_rules(q, val, errors)


def _parse_time(val: str) -> bool:
    for fmt in ("%H:%M", "%H:%M:%S"):
        try:
            datetime.strptime(val, fmt)
            return True
        except ValueError:
            continue
    return False


def validate_answers(questions: list[dict], answers: dict) -> list[str]:
    """Validate answers against the form's questions.

    Every violation is collected; nothing short-circuits on the first one.
    """
    if not isinstance(answers, dict):
        return ["Answers must be an object keyed by question id."]

    errors: list[str] = []
    known = {q.get("id") for q in questions}
    for key in answers:
        if key not in known:
            errors.append(f"Unknown question id \"{key}\".")

    for q in questions:
        val = answers.get(q.get("id"))
        if _is_empty(val):
            if q.get("required"):
                errors.append(f"Answer for \"{_label(q)}\" is required.")
            continue
        _check_value(q, val, errors)
    return errors


def unwrap_answers(raw):
    """Accept both {"answers": {...}} and {"answers": {"answers": {...}}}."""
    if isinstance(raw, dict) and set(raw.keys()) == {"answers"} and isinstance(raw["answers"], dict):
        return raw["answers"]
    return raw
