"""
Exam markup renderer
====================

Reading and listening questions are authored as Markdown with a small set of
bracket tags that describe interactive form elements:

- ``[!num]``            starts a question; rendered as ``Q<n>.``
- ``[T]``               free text input (not marked)
- ``[T*answer]``        text input whose expected answer is ``answer``
- ``[D] ... [/D]``      dropdown, options written as ``[*] text`` / ``[ ] text``
- ``[*] text``          outside a dropdown: correct choice (radio, or checkbox
                        when a question has several correct choices)
- ``[ ] text``          outside a dropdown: wrong choice
- ``[H]..[/H]``         explanation, optionally ``[H*id]..[/H]``; only shown
                        on the review page

Every form element of question ``n`` in section ``s`` is named ``"{s}_q{n}"``
(``"X_q{n}"`` when the section has no id yet). The same string keys the answer
maps produced by :func:`extract_answer_key` and submitted by clients.

The renderer is a single regex pass per tag kind followed by a Markdown
conversion. Unmatched or malformed tags are left as literal text.
"""

from __future__ import annotations

import html
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import markdown as mdlib


NUM_TAG = "[!num]"

_TEXT_ANSWER_RE = re.compile(r"\[T\*([^\]]+)\]")
_TEXT_PLAIN_RE = re.compile(r"\[T\]")
_DROPDOWN_RE = re.compile(r"\[D\]([\s\S]*?)\[/D\]")
_CHOICE_RE = re.compile(r"\[([* ])\]\s*([^\n\[]+)")
_CORRECT_CHOICE_RE = re.compile(r"\[\*\]\s*([^\n\[]+)")
_EXPLANATION_RE = re.compile(r"\[H(?:\*([^\]]*))?\]([\s\S]*?)\[/H\]")
_EXPLANATION_TOKEN_RE = re.compile(r"@@EXPLAIN(\d+)@@([\s\S]*?)@@/EXPLAIN\1@@")

_MD_EXTENSIONS = ["nl2br", "tables", "fenced_code", "sane_lists"]

MISSING = "_"


def escape(value: Any) -> str:
    return html.escape(str(value), quote=True)


def markdown_to_html(text: str) -> str:
    """Markdown -> HTML with GitHub-style single newline line breaks."""
    return mdlib.markdown(text or "", extensions=_MD_EXTENSIONS, output_format="html")


def split_blocks(md: str) -> List[Dict[str, Any]]:
    """Split markup into ordered ``markdown`` and ``question`` blocks.

    A line containing ``[!num]`` opens a question block which runs until the
    next such line or the end of the text.
    """
    blocks: List[Dict[str, Any]] = []
    buffer: List[str] = []
    question: Optional[List[str]] = None

    for line in re.split(r"\r?\n", md or ""):
        if NUM_TAG in line:
            if buffer:
                blocks.append({"type": "markdown", "text": "\n".join(buffer)})
                buffer = []
            if question is not None:
                blocks.append({"type": "question", "lines": question})
            question = [line]
        elif question is not None:
            question.append(line)
        else:
            buffer.append(line)

    if question is not None:
        blocks.append({"type": "question", "lines": question})
    if buffer:
        blocks.append({"type": "markdown", "text": "\n".join(buffer)})
    return blocks


def count_questions(md: str) -> int:
    return (md or "").count(NUM_TAG)


def field_name(skill_id: Optional[int], index: int) -> str:
    safe_id = skill_id if skill_id and skill_id > 0 else "X"
    return f"{safe_id}_q{index}"


def _normalize_correct(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v).strip().lower() for v in value]
    return [str(value).strip().lower()]


def _normalize_user(raw: Any) -> Tuple[List[str], bool]:
    """Return (lower-cased answers, is_missing). Blank and ``_`` count as missing."""
    if raw is None:
        return [], True
    if isinstance(raw, (list, tuple)):
        cleaned = [str(v).strip() for v in raw]
        cleaned = [v for v in cleaned if v != ""]
        if not cleaned or cleaned == [MISSING]:
            return [], True
        return [v.lower() for v in cleaned], False
    s = str(raw).strip()
    if s in ("", MISSING):
        return [], True
    return [s.lower()], False


def _lookup(answers: Optional[Mapping[str, Any]], key: str) -> Any:
    if not answers:
        return None
    if key in answers:
        return answers[key]
    lowered = key.lower()
    for k, v in answers.items():
        if str(k).lower() == lowered:
            return v
    return None


def _answers_for(groups: Any, skill_id: Optional[int]) -> Dict[str, Any]:
    """Pick the ``Answers`` map of the group whose ``SkillId`` matches."""
    if isinstance(groups, Mapping):
        return dict(groups)
    for group in groups or []:
        if not isinstance(group, Mapping):
            continue
        gid = group.get("SkillId", group.get("skillId", group.get("skill_id")))
        try:
            matches = int(gid) == int(skill_id or 0)
        except (TypeError, ValueError):
            matches = False
        if matches:
            answers = group.get("Answers", group.get("answers"))
            return dict(answers) if isinstance(answers, Mapping) else {}
    return {}


def _render_explanations(html_text: str, ids: List[str], show_answers: bool) -> str:
    if not show_answers:
        return _EXPLANATION_TOKEN_RE.sub("", html_text)

    def _details(match: re.Match) -> str:
        hid = ids[int(match.group(1))]
        attr = f' data-hid="{escape(hid)}"' if hid else ""
        label = f"Explanation #{escape(hid)}" if hid else "Explanation"
        return (
            f'<details class="explainBlock"{attr}>'
            f'<summary class="explainBtn"{attr}>{label}</summary>'
            f'<div class="explainBody">{match.group(2)}</div>'
            "</details>"
        )

    return _EXPLANATION_TOKEN_RE.sub(_details, html_text)


def _protect_explanations(text: str) -> Tuple[str, List[str]]:
    # Markdown would otherwise read the "*" of [H*id] as emphasis
    ids: List[str] = []

    def _token(match: re.Match) -> str:
        n = len(ids)
        ids.append((match.group(1) or "").strip())
        return f"@@EXPLAIN{n}@@{match.group(2)}@@/EXPLAIN{n}@@"

    return _EXPLANATION_RE.sub(_token, text), ids


def render_question(
    lines: Iterable[str],
    index: int,
    show_answers: bool,
    skill_id: Optional[int] = 0,
    user_answers: Optional[Mapping[str, Any]] = None,
    correct_answers: Optional[Mapping[str, Any]] = None,
) -> str:
    """Render one question block to HTML.

    With ``show_answers`` false the block becomes an empty, fillable form.
    With ``show_answers`` true every element is disabled, the correct answers
    are filled in and elements carry ``qa-right`` / ``qa-wrong`` /
    ``qa-missing`` classes computed from ``user_answers``.
    """
    text = "\n".join(lines)
    name = field_name(skill_id, index)
    disabled = " disabled" if show_answers else ""

    user_raw = _lookup(user_answers, name)
    user_list, user_missing = _normalize_user(user_raw)
    user_set = set(user_list)
    correct_set = set(_normalize_correct(_lookup(correct_answers, name)))

    def _text_answer(match: re.Match) -> str:
        answer = match.group(1)
        width = min(max(len(answer) + 5, 10), 30)
        if not show_answers:
            return f'<input type="text" class="inlineTextbox" name="{name}" style="width:{width}ch;" />'
        if user_missing:
            status, title = "qa-missing", "Your answer: (blank)"
        else:
            status = "qa-right" if answer.strip().lower() in user_set else "qa-wrong"
            if isinstance(user_raw, (list, tuple)):
                shown = ", ".join(str(v).strip() for v in user_raw if str(v).strip())
            else:
                shown = str(user_raw).strip()
            title = f"Your answer: {escape(shown)}"
        return (
            f'<input type="text" value="{escape(answer)}" readonly '
            f'class="inlineTextbox answerFilled {status}" title="{title}" style="width:{width}ch;" />'
        )

    text = _TEXT_ANSWER_RE.sub(_text_answer, text)
    text = _TEXT_PLAIN_RE.sub(
        lambda _m: f'<input type="text" class="inlineTextbox" name="{name}" style="width:15ch;"{disabled} />',
        text,
    )

    def _dropdown(match: re.Match) -> str:
        options = [(m.group(1) == "*", m.group(2).strip()) for m in _CHOICE_RE.finditer(match.group(1))]
        correct_pick = next((label for ok, label in options if ok), "").lower()

        status = ""
        if show_answers:
            if user_missing:
                status = "qa-missing" if correct_pick else ""
            elif correct_pick and correct_pick in user_set:
                status = "qa-right"
            else:
                status = "qa-wrong"

        longest = max((len(label) for _ok, label in options), default=5)
        width = min(longest + 5, 30)
        placeholder_selected = "" if show_answers and correct_pick else " selected"
        css = f"dropdownInline {status}".strip()
        parts = [
            f'<select name="{name}" class="{css}" style="width:{width}ch"{disabled}>',
            f'<option value="" disabled{placeholder_selected} hidden></option>',
        ]
        for ok, label in options:
            selected = " selected" if show_answers and ok else ""
            parts.append(f'<option value="{escape(label)}"{selected}>{escape(label)}</option>')
        parts.append("</select>")
        return "".join(parts)

    text = _DROPDOWN_RE.sub(_dropdown, text)

    # Whatever [*]/[ ] remains lives outside a dropdown
    correct_count = len(_CORRECT_CHOICE_RE.findall(text))
    is_multi = correct_count > 1
    input_type = "checkbox" if is_multi else "radio"
    has_choices = _CHOICE_RE.search(text) is not None
    group_missing = show_answers and has_choices and user_missing
    limit_attr = f' data-limit="{correct_count}" data-group="{name}"' if is_multi else ""

    def _choice(match: re.Match) -> str:
        mark, value = match.group(1), match.group(2).strip()
        key = value.lower()
        highlight = ""
        if show_answers:
            if group_missing:
                highlight = "qa-missing"
            elif key in correct_set:
                highlight = "qa-right"
            elif key in user_set:
                highlight = "qa-wrong"
        checked = " checked" if show_answers and mark == "*" else ""
        css = f"choiceItem {highlight}".strip()
        return (
            f'<label class="{css}"><input type="{input_type}" name="{name}" value="{escape(value)}"'
            f"{limit_attr}{checked}{disabled} /> {escape(value)}</label>"
        )

    text = _CHOICE_RE.sub(_choice, text)
    text = text.replace(NUM_TAG, f'<span class="numberIndex">Q{index}.</span>')

    text, explanation_ids = _protect_explanations(text)
    return _render_explanations(markdown_to_html(text), explanation_ids, show_answers)


def render_exam(
    md: str,
    show_answers: bool = False,
    user_answers: Any = None,
    correct_answers: Any = None,
    skill_id: Optional[int] = 0,
) -> str:
    """Render a whole section; questions are numbered 1..n in order.

    ``user_answers`` / ``correct_answers`` are lists of ``{"SkillId", "Answers"}``
    groups (or an already selected answers map).
    """
    user_map = _answers_for(user_answers, skill_id)
    correct_map = _answers_for(correct_answers, skill_id)
    out: List[str] = []
    number = 0
    for block in split_blocks(md):
        if block["type"] == "markdown":
            out.append(markdown_to_html(block["text"]))
        else:
            number += 1
            out.append(render_question(block["lines"], number, show_answers, skill_id, user_map, correct_map))
    return "\n".join(out)


def render_passage(md: str) -> str:
    # Passages keep the text of explanation markers but drop the tags
    cleaned = _EXPLANATION_RE.sub(lambda m: m.group(2), md or "")
    return markdown_to_html(cleaned)


def extract_answer_key(md: str, skill_id: Optional[int] = 0) -> Tuple[str, Dict[str, Any]]:
    """Derive the answer key of a section and its exam-mode preview.

    For each question the key holds, in order, the ``[T*..]`` answers, the
    correct option of every dropdown and the correct choices; one answer is
    stored as a string, several as a list, none as ``"_"``.
    """
    answers: Dict[str, Any] = {}
    number = 0
    for block in split_blocks(md):
        if block["type"] != "question":
            continue
        number += 1
        full = "\n".join(block["lines"])
        found = [m.group(1).strip() for m in _TEXT_ANSWER_RE.finditer(full)]
        for dropdown in _DROPDOWN_RE.finditer(full):
            found.extend(m.group(1).strip() for m in _CORRECT_CHOICE_RE.finditer(dropdown.group(1)))
        outside = _DROPDOWN_RE.sub("", full)
        found.extend(m.group(1).strip() for m in _CORRECT_CHOICE_RE.finditer(outside))
        if len(found) > 1:
            answers[field_name(skill_id, number)] = found
        else:
            answers[field_name(skill_id, number)] = found[0] if found else MISSING
    return render_exam(md, skill_id=skill_id), answers
