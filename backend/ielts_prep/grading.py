from __future__ import annotations
import json
import logging
from typing import Any, Dict, Iterable, List, Mapping, Tuple

from .markup import MISSING


logger = logging.getLogger(__name__)

# A complete IELTS reading or listening paper has 40 marks
FULL_EXAM_MARKS = 40


def _skill_id_of(group: Mapping[str, Any]) -> Any:
    for k in ("SkillId", "skillId", "skill_id", "skillid"):
        if k in group:
            return group[k]
    return None


def _answers_of(group: Mapping[str, Any]) -> Any:
    for k in ("Answers", "answers"):
        if k in group:
            return group[k]
    return None


def parse_answer_groups(raw: Any) -> List[Dict[str, Any]]:
    """Decode a submitted answers payload into ``[{"SkillId", "Answers"}]``.

    Clients send a list of groups, the JSON text of that list, or that text
    JSON-encoded once more. Anything unreadable gives an empty list.
    """
    if raw is None:
        return []
    data = raw
    try:
        if isinstance(data, str):
            text = data.strip()
            if text.startswith('"'):
                text = json.loads(text)
            data = json.loads(text) if text else []
    except (TypeError, ValueError):
        logger.warning("Unreadable answers payload ignored")
        return []
    if isinstance(data, Mapping):
        data = [data]
    if not isinstance(data, list):
        return []

    groups: List[Dict[str, Any]] = []
    for item in data:
        if not isinstance(item, Mapping):
            continue
        try:
            skill_id = int(_skill_id_of(item))
        except (TypeError, ValueError):
            continue
        answers = _answers_of(item)
        groups.append({"SkillId": skill_id, "Answers": dict(answers) if isinstance(answers, Mapping) else {}})
    return groups


def normalize_answers(answers: Mapping[str, Any] | None) -> Dict[str, List[str]]:
    result: Dict[str, List[str]] = {}
    for key, val in (answers or {}).items():
        if val is None:
            values: List[str] = []
        elif isinstance(val, (list, tuple)):
            values = [str(v).strip() for v in val if v is not None and str(v).strip()]
        else:
            s = str(val).strip()
            values = [s] if s else []
        result[str(key).strip().lower()] = values
    return result


def parse_answer_key(raw: Any) -> Dict[str, List[str]]:
    """Stored answer key -> ``{question key: [expected answers]}``.

    The ``"_"`` placeholder marks a question without a gradable answer and
    contributes no marks.
    """
    data = raw
    if isinstance(raw, str):
        try:
            data = json.loads(raw or "{}")
        except ValueError:
            logger.warning("Stored answer key is not valid JSON")
            return {}
    if not isinstance(data, Mapping):
        return {}
    key: Dict[str, List[str]] = {}
    for q, val in data.items():
        vals = val if isinstance(val, (list, tuple)) else [val]
        cleaned = [str(v).strip() for v in vals if v is not None]
        key[str(q).strip().lower()] = [v for v in cleaned if v and v != MISSING]
    return key


def grade_section(answer_key: Any, user_answers: Mapping[str, Any] | None) -> Dict[str, Any]:
    key = parse_answer_key(answer_key)
    given_map = normalize_answers(user_answers)
    correct = 0
    total = 0
    questions: List[Dict[str, Any]] = []
    for q, expected in key.items():
        given = given_map.get(q, [])
        given_set = {v.lower() for v in given}
        earned = sum(1 for v in expected if v.lower() in given_set)
        correct += earned
        total += len(expected)
        questions.append({"key": q, "expected": expected, "given": given, "correct": earned, "total": len(expected)})
    return {"correct": correct, "total": total, "questions": questions}


def grade_exam(sections: Iterable[Tuple[int, Any]], groups: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Mark every ``(section_id, answer_key)`` against the matching answer group."""
    by_skill = {g["SkillId"]: g.get("Answers") or {} for g in groups}
    results: List[Dict[str, Any]] = []
    correct = 0
    total = 0
    for section_id, answer_key in sections:
        graded = grade_section(answer_key, by_skill.get(section_id, {}))
        correct += graded["correct"]
        total += graded["total"]
        results.append({"section_id": section_id, **graded})
    return {
        "correct": correct,
        "total": total,
        "full_exam": total == FULL_EXAM_MARKS,
        "sections": results,
    }
