"""
AI feedback for writing and speaking answers.

Essays and speaking transcripts are graded by an LLM that returns IELTS-style
JSON feedback. Grading runs in the background: the API stores one ``pending``
:class:`~ielts_prep.models.AiFeedback` row per answer, :func:`run_feedback_jobs`
fills each row in (``ready`` or ``failed``) and clients poll until no row is
pending any more.
"""

from __future__ import annotations

import json
import logging
import math
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from .db import SessionLocal
from .models import AiFeedback, FEEDBACK_FAILED, FEEDBACK_PENDING, FEEDBACK_READY
from .openai_client import OpenAIClient


logger = logging.getLogger(__name__)

WRITING_CRITERIA = ("task_achievement", "organization_logic", "lexical_resource", "grammar_accuracy")
SPEAKING_CRITERIA = ("pronunciation", "fluency", "lexical_resource", "grammar_accuracy")

WRITING_SYSTEM = "You are a certified IELTS Writing examiner. Always return valid JSON following the schema exactly."
SPEAKING_SYSTEM = "You are a certified IELTS Speaking examiner. Always return strictly valid JSON following the schema."
SUGGESTION_SYSTEM = "You are a certified IELTS Speaking coach. Always return valid JSON following the schema."


def build_writing_prompt(question: str, answer: str) -> str:
    return f"""
You are an IELTS Writing examiner with years of experience in scoring IELTS essays.
Evaluate the following essay in detail based on the official IELTS Writing descriptors.

Provide feedback focusing on:
- Grammar and vocabulary issues (detailed correction + explanation)
- Logic, coherence, and cohesion
- Overall impression and improvement advice
- Refined word/phrase suggestions (before -> after + explanation)

Return STRICT JSON ONLY, matching this structure exactly:
{{
  "grammar_vocab": {{
    "overview": "2-4 sentences summarizing grammar and vocabulary quality.",
    "errors": [
      {{
        "type": "Grammar" | "Vocabulary",
        "category": "e.g. Tense",
        "incorrect": "original sentence or phrase",
        "suggestion": "corrected version",
        "explanation": "why it is wrong and how to fix"
      }}
    ]
  }},
  "overall_feedback": {{
    "overview": "3-5 sentences summarizing coherence, logic, idea development, and task achievement.",
    "refinements": [
      {{
        "original": "weak or overused word/phrase",
        "improved": "more natural academic alternative",
        "explanation": "why the new choice is better"
      }}
    ]
  }},
  "band_estimate": {{
    "task_achievement": 0-9,
    "organization_logic": 0-9,
    "lexical_resource": 0-9,
    "grammar_accuracy": 0-9,
    "overall": 0-9
  }}
}}

Essay Question:
{question}

Essay Answer:
{answer}
""".strip()


def build_speaking_prompt(question: str, transcript: str) -> str:
    return f"""
You are an IELTS Speaking examiner.
Evaluate the candidate's speaking based on the transcript below.
Use ONLY the four official IELTS Speaking criteria:
1. Fluency & Coherence
2. Lexical Resource
3. Grammatical Range & Accuracy
4. Pronunciation

Do NOT generate an overall score. Scores must be whole or half bands (e.g. 5, 5.5, 6).

Return STRICT JSON ONLY, following this schema exactly:
{{
  "band_estimate": {{
    "pronunciation": 0-9,
    "fluency": 0-9,
    "lexical_resource": 0-9,
    "grammar_accuracy": 0-9
  }},
  "ai_analysis": {{
    "overview": "3-5 sentence summary of performance.",
    "strengths": ["list strengths"],
    "weaknesses": ["list weaknesses"],
    "advice": "1-2 sentences of actionable improvement tips.",
    "vocabulary_suggestions": [
      {{
        "original_word": "word or phrase used by the candidate",
        "suggested_alternative": "better alternative",
        "explanation": "why it is better"
      }}
    ]
  }}
}}

Question:
{question}

Transcript:
{transcript}
""".strip()


def build_suggestion_prompt(question: str) -> str:
    return f"""
You are an IELTS Speaking coach and linguist.
Given an IELTS Speaking question, return STRICT JSON ONLY using this exact schema:
{{
  "question": "original question",
  "sample_answer": "2-4 sentences model answer in natural IELTS English.",
  "vocabulary_by_level": {{
    "basic": [{{"term": "word", "meaning": "short English definition"}}],
    "intermediate": [{{"term": "word", "meaning": "short English definition"}}],
    "advanced": [{{"term": "word", "meaning": "short English definition"}}]
  }}
}}

Rules:
- Do not change key names.
- Return 5-10 items for each level.
- No comments or markdown.

IELTS Speaking Question:
{question}
""".strip()


def extract_json_object(text: str) -> Dict[str, Any]:
    try:
        data = json.loads(text)
        if isinstance(data, dict):
            return data
    except Exception:
        pass
    code_block = re.search(r"```json\s*([\s\S]*?)\s*```", text or "")
    if code_block:
        try:
            data = json.loads(code_block.group(1))
            if isinstance(data, dict):
                return data
        except Exception:
            pass
    first = (text or "").find("{")
    last = (text or "").rfind("}")
    if first != -1 and last != -1 and last > first:
        try:
            data = json.loads(text[first : last + 1])
            if isinstance(data, dict):
                return data
        except Exception:
            pass
    raise ValueError("LLM did not return valid JSON")


def round_half_band(value: float) -> float:
    # Quarter bands round up: 6.25 -> 6.5, 6.75 -> 7.0
    return math.floor(value * 2 + 0.5) / 2


def overall_band(kind: str, feedback: Dict[str, Any]) -> Optional[float]:
    """Overall band of a feedback document, to the nearest half band."""
    band = feedback.get("band_estimate")
    if not isinstance(band, dict):
        return None
    try:
        if kind == "writing":
            if band.get("overall") is not None:
                return round_half_band(float(band["overall"]))
            scores = [float(band[c]) for c in WRITING_CRITERIA if band.get(c) is not None]
        else:
            scores = [float(band[c]) for c in SPEAKING_CRITERIA if band.get(c) is not None]
    except (TypeError, ValueError):
        return None
    if not scores:
        return None
    return round_half_band(sum(scores) / len(scores))


def average_overall(values: List[Optional[float]]) -> Optional[float]:
    present = [v for v in values if v is not None]
    if not present:
        return None
    return round_half_band(sum(present) / len(present))


def clean_transcript(text: str) -> str:
    """Collapse repeated 1-3 word phrases and extra whitespace in a transcript.

    Speech recognition often repeats phrases where interim and final results
    overlap.
    """
    s = re.sub(r"\s+", " ", text or "").strip()
    if not s:
        return s
    patterns = [
        (r"\b(\w+\s+\w+\s+\w+)(?:\s+\1\b)+", r"\1"),
        (r"\b(\w+\s+\w+)(?:\s+\1\b)+", r"\1"),
        (r"\b(\w+)(?:\s+\1\b)+", r"\1"),
    ]
    for pat, rep in patterns:
        s = re.sub(pat, rep, s, flags=re.IGNORECASE)
    return re.sub(r"\s+", " ", s).strip()


async def grade_answer(client: OpenAIClient, kind: str, question: str, answer: str) -> Dict[str, Any]:
    if kind == "writing":
        raw = await client.chat(build_writing_prompt(question, answer), system=WRITING_SYSTEM, temperature=0.3, max_tokens=2500)
    else:
        raw = await client.chat(build_speaking_prompt(question, answer), system=SPEAKING_SYSTEM, temperature=0.4, max_tokens=1800)
    return extract_json_object(raw)


async def speaking_suggestion(question: str) -> Dict[str, Any]:
    client = OpenAIClient()
    try:
        raw = await client.chat(build_suggestion_prompt(question), system=SUGGESTION_SYSTEM, temperature=0.7, max_tokens=1000)
    finally:
        await client.aclose()
    return extract_json_object(raw)


def _finish(db, feedback_ids: List[int], **values: Any) -> int:
    """Settle rows that are still pending; rows deleted or settled meanwhile are left alone."""
    if "error" in values and values["error"]:
        values["error"] = values["error"][:2000]
    res = db.execute(
        update(AiFeedback)
        .where(AiFeedback.id.in_(feedback_ids), AiFeedback.status == FEEDBACK_PENDING)
        .values(updated_at=datetime.utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return res.rowcount or 0


async def _grade_one(db, client: OpenAIClient, feedback_id: int) -> None:
    row = db.get(AiFeedback, feedback_id)
    if row is None or row.status != FEEDBACK_PENDING:
        return
    kind, answer = row.kind, row.answer_text
    section = row.section
    question = (section.question_markup or section.content or "Unknown question") if section else None
    # End the read before the LLM round trip; the row may be replaced meanwhile
    db.commit()

    if question is None:
        _finish(db, [feedback_id], status=FEEDBACK_FAILED, error="Section no longer exists")
        return
    try:
        data = await grade_answer(client, kind, question, answer)
    except Exception as exc:
        logger.exception("%s grading failed for feedback %s", kind, feedback_id)
        _finish(db, [feedback_id], status=FEEDBACK_FAILED, error=str(exc))
        return
    overall = overall_band(kind, data)
    if _finish(db, [feedback_id], status=FEEDBACK_READY, feedback_json=json.dumps(data), overall=overall, error=None):
        logger.info("%s feedback %s ready (overall=%s)", kind, feedback_id, overall)
    else:
        logger.info("%s feedback %s was replaced before grading finished", kind, feedback_id)


async def run_feedback_jobs(feedback_ids: List[int]) -> None:
    """Grade pending feedback rows; each row ends up ``ready`` or ``failed``.

    Rows are graded one at a time and independently: a row that fails,
    disappears or whose section was deleted does not hold up the others.
    """
    db = SessionLocal()
    try:
        try:
            client = OpenAIClient()
        except ValueError as exc:
            logger.error("AI grading unavailable: %s", exc)
            _finish(db, feedback_ids, status=FEEDBACK_FAILED, error=str(exc))
            return
        try:
            for feedback_id in sorted(set(feedback_ids)):
                try:
                    await _grade_one(db, client, feedback_id)
                except SQLAlchemyError:
                    db.rollback()
                    logger.exception("Could not store feedback %s", feedback_id)
        finally:
            await client.aclose()
    finally:
        db.close()


def queue_feedback(db, kind: str, exam_id: int, username: str, items: List[Dict[str, Any]]) -> List[int]:
    """Store one pending row per ``{section_id, answer_text, display_order}``.

    Earlier feedback for the same exam, section and user is replaced. Items
    must target distinct sections.
    """
    section_ids = [item["section_id"] for item in items]
    if len(set(section_ids)) != len(section_ids):
        raise ValueError("each section may be answered only once per request")
    db.query(AiFeedback).filter(
        AiFeedback.kind == kind,
        AiFeedback.exam_id == exam_id,
        AiFeedback.section_id.in_(section_ids),
        AiFeedback.username == username,
    ).delete(synchronize_session=False)

    rows: List[AiFeedback] = []
    for item in items:
        row = AiFeedback(
            exam_id=exam_id,
            section_id=item["section_id"],
            username=username,
            kind=kind,
            display_order=item.get("display_order") or 1,
            answer_text=item["answer_text"],
        )
        db.add(row)
        rows.append(row)
    db.flush()
    ids = [row.id for row in rows]
    db.commit()
    return ids


def summarize_feedback(rows: List[AiFeedback]) -> Dict[str, Any]:
    ready = [r for r in rows if r.status == FEEDBACK_READY]
    failed = [r for r in rows if r.status == FEEDBACK_FAILED]
    pending = len(rows) - len(ready) - len(failed)
    return {
        "status": "pending" if pending else ("failed" if failed and not ready else "ready"),
        "pending": pending,
        "feedbacks": [
            {
                "feedback_id": r.id,
                "section_id": r.section_id,
                "display_order": r.display_order,
                "answer_text": r.answer_text,
                "overall": r.overall,
                "feedback": json.loads(r.feedback_json) if r.feedback_json else None,
            }
            for r in ready
        ],
        "failed": [{"feedback_id": r.id, "section_id": r.section_id, "error": r.error} for r in failed],
        "average_overall": average_overall([r.overall for r in ready]),
    }
