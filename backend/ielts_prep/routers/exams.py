from __future__ import annotations
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..db import get_db
from ..grading import grade_exam, parse_answer_groups
from ..markup import count_questions, extract_answer_key, render_exam, render_passage
from ..models import Exam, ExamAttempt, ExamSection, OBJECTIVE_SKILLS, SKILLS


router = APIRouter(tags=["exams"])

logger = logging.getLogger(__name__)


class CreateExamRequest(BaseModel):
    name: str = Field(min_length=1, max_length=256)
    exam_type: str = Field(default="Academic", max_length=64)


class CreateSectionRequest(BaseModel):
    skill: str
    content: Optional[str] = Field(default=None, description="Passage, listening notes or task prompt")
    question_markup: Optional[str] = Field(default=None, description="Bracket-tag question markup")
    display_order: int = 1
    media_url: Optional[str] = None


class SubmitAttemptRequest(BaseModel):
    username: str = Field(min_length=1, max_length=128)
    skill: str
    # List of {SkillId, Answers} groups, or its JSON text
    answers: Any = None
    started_at: Optional[datetime] = None


def _validate_skill(skill: Optional[str], allowed=SKILLS) -> str:
    value = (skill or "").strip().lower()
    if value not in allowed:
        raise HTTPException(status_code=400, detail=f"skill must be one of {list(allowed)}")
    return value


def _get_exam(db: Session, exam_id: int) -> Exam:
    exam = db.get(Exam, exam_id)
    if not exam:
        raise HTTPException(status_code=404, detail="Exam not found")
    return exam


def _get_section(db: Session, section_id: int) -> ExamSection:
    section = db.get(ExamSection, section_id)
    if not section:
        raise HTTPException(status_code=404, detail="Section not found")
    return section


def _exam_payload(exam: Exam) -> Dict[str, Any]:
    return {
        "id": exam.id,
        "name": exam.name,
        "exam_type": exam.exam_type,
        "created_at": exam.created_at,
    }


def _section_payload(section: ExamSection) -> Dict[str, Any]:
    return {
        "id": section.id,
        "exam_id": section.exam_id,
        "skill": section.skill,
        "display_order": section.display_order,
        "content": section.content,
        "media_url": section.media_url,
        "question_count": count_questions(section.question_markup or "") if section.skill in OBJECTIVE_SKILLS else 0,
    }


def _attempt_summary(attempt: ExamAttempt) -> Dict[str, Any]:
    return {
        "attempt_id": attempt.id,
        "exam_id": attempt.exam_id,
        "exam_name": attempt.exam.name if attempt.exam else "",
        "skill": attempt.skill,
        "username": attempt.username,
        "correct": attempt.correct_marks,
        "total": attempt.total_marks,
        "started_at": attempt.started_at,
        "submitted_at": attempt.submitted_at,
    }


@router.post("/exams", status_code=201)
def create_exam(req: CreateExamRequest, db: Session = Depends(get_db)):
    exam = Exam(name=req.name.strip(), exam_type=req.exam_type.strip() or "Academic")
    db.add(exam)
    db.commit()
    return _exam_payload(exam)


@router.get("/exams")
def list_exams(db: Session = Depends(get_db)):
    exams = db.query(Exam).order_by(Exam.id).all()
    out: List[Dict[str, Any]] = []
    for exam in exams:
        skills: Dict[str, int] = {}
        for s in exam.sections:
            skills[s.skill] = skills.get(s.skill, 0) + 1
        out.append({**_exam_payload(exam), "sections": skills})
    return out


@router.get("/exams/{exam_id}")
def get_exam(exam_id: int, db: Session = Depends(get_db)):
    exam = _get_exam(db, exam_id)
    return {**_exam_payload(exam), "sections": [_section_payload(s) for s in exam.sections]}


@router.delete("/exams/{exam_id}", status_code=204)
def delete_exam(exam_id: int, db: Session = Depends(get_db)):
    exam = _get_exam(db, exam_id)
    db.delete(exam)
    db.commit()
    return Response(status_code=204)


@router.post("/exams/{exam_id}/sections", status_code=201)
def create_section(exam_id: int, req: CreateSectionRequest, db: Session = Depends(get_db)):
    exam = _get_exam(db, exam_id)
    skill = _validate_skill(req.skill)
    markup = req.question_markup or ""
    if skill in OBJECTIVE_SKILLS and count_questions(markup) == 0:
        raise HTTPException(status_code=400, detail="question_markup must contain at least one [!num] question")
    if skill not in OBJECTIVE_SKILLS and not (markup.strip() or (req.content or "").strip()):
        raise HTTPException(status_code=400, detail="a task prompt is required")

    section = ExamSection(
        exam_id=exam.id,
        skill=skill,
        display_order=req.display_order,
        content=req.content,
        question_markup=req.question_markup,
        media_url=req.media_url,
    )
    db.add(section)
    # The generated id is baked into the form field names
    db.flush()
    payload: Dict[str, Any] = {}
    if skill in OBJECTIVE_SKILLS:
        preview_html, answers = extract_answer_key(markup, section.id)
        section.answer_key = json.dumps(answers)
        payload = {"answer_key": answers, "preview_html": preview_html}
    db.commit()
    logger.info("Created %s section %s for exam %s", skill, section.id, exam.id)
    return {**_section_payload(section), **payload}


@router.get("/sections/{section_id}")
def get_section(section_id: int, db: Session = Depends(get_db)):
    section = _get_section(db, section_id)
    out = _section_payload(section)
    if section.skill in OBJECTIVE_SKILLS:
        out["passage_html"] = render_passage(section.content or "")
        out["questions_html"] = render_exam(section.question_markup or "", skill_id=section.id)
    else:
        out["prompt_html"] = render_passage(section.question_markup or section.content or "")
    return out


@router.delete("/sections/{section_id}", status_code=204)
def delete_section(section_id: int, db: Session = Depends(get_db)):
    section = _get_section(db, section_id)
    db.delete(section)
    db.commit()
    return Response(status_code=204)


@router.post("/exams/{exam_id}/attempts", status_code=201)
def submit_attempt(exam_id: int, req: SubmitAttemptRequest, db: Session = Depends(get_db)):
    exam = _get_exam(db, exam_id)
    skill = _validate_skill(req.skill, OBJECTIVE_SKILLS)
    groups = parse_answer_groups(req.answers)
    if not groups:
        raise HTTPException(status_code=400, detail="answers are required")
    sections = [s for s in exam.sections if s.skill == skill]
    if not sections:
        raise HTTPException(status_code=400, detail=f"Exam has no {skill} sections")

    result = grade_exam([(s.id, s.answer_key) for s in sections], groups)
    attempt = ExamAttempt(
        exam_id=exam.id,
        username=req.username.strip(),
        skill=skill,
        answers_json=json.dumps(groups),
        correct_marks=result["correct"],
        total_marks=result["total"],
        started_at=req.started_at or datetime.utcnow(),
        submitted_at=datetime.utcnow(),
    )
    db.add(attempt)
    db.commit()
    logger.info("Attempt %s: %s/%s marks (%s, exam %s)", attempt.id, result["correct"], result["total"], skill, exam.id)
    return {**_attempt_summary(attempt), "full_exam": result["full_exam"], "sections": result["sections"]}


@router.get("/attempts")
def list_attempts(username: str, db: Session = Depends(get_db)):
    attempts = (
        db.query(ExamAttempt)
        .filter(ExamAttempt.username == username)
        .order_by(ExamAttempt.submitted_at.desc(), ExamAttempt.id.desc())
        .all()
    )
    return [_attempt_summary(a) for a in attempts]


@router.get("/attempts/{attempt_id}")
def review_attempt(attempt_id: int, db: Session = Depends(get_db)):
    attempt = db.get(ExamAttempt, attempt_id)
    if not attempt:
        raise HTTPException(status_code=404, detail="Attempt not found")
    groups = parse_answer_groups(attempt.answers_json)
    sections = [s for s in attempt.exam.sections if s.skill == attempt.skill] if attempt.exam else []
    graded = {r["section_id"]: r for r in grade_exam([(s.id, s.answer_key) for s in sections], groups)["sections"]}

    review: List[Dict[str, Any]] = []
    for s in sections:
        key = json.loads(s.answer_key or "{}")
        review.append(
            {
                **_section_payload(s),
                "passage_html": render_passage(s.content or ""),
                "review_html": render_exam(
                    s.question_markup or "",
                    show_answers=True,
                    user_answers=groups,
                    correct_answers=[{"SkillId": s.id, "Answers": key}],
                    skill_id=s.id,
                ),
                "correct": graded[s.id]["correct"],
                "total": graded[s.id]["total"],
                "questions": graded[s.id]["questions"],
            }
        )
    return {**_attempt_summary(attempt), "answers": groups, "sections": review}
