"""
Speaking Module
===============

IELTS speaking tasks are graded from transcripts of the candidate's answers.
Transcripts are cleaned of speech-recognition repetitions, stored as pending
feedback and graded in the background against the four IELTS speaking
criteria. Clients poll ``GET /speaking/feedback`` until grading finishes.

API Endpoints:
- POST /speaking/grade: queue transcripts for AI grading
- GET /speaking/feedback: poll graded feedback for an exam
- GET /speaking/{section_id}/suggestion: sample answer and vocabulary for a question
"""

from __future__ import annotations

import logging
from typing import List, Literal, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..db import get_db
from ..feedback import clean_transcript, queue_feedback, run_feedback_jobs, speaking_suggestion, summarize_feedback
from ..models import AiFeedback, ExamSection


router = APIRouter(prefix="/speaking", tags=["speaking"])

logger = logging.getLogger(__name__)


class SpeakingAnswer(BaseModel):
	"""
	One answered speaking question.

	Attributes:
		section_id: Speaking section the transcript answers
		transcript: Speech-to-text output of the recorded answer
		audio_url: Where the recording lives, kept for reference only
	"""
	section_id: int
	transcript: str
	audio_url: Optional[str] = None
	display_order: int = 1


class GradeRequest(BaseModel):
	exam_id: int
	username: str = Field(min_length=1, max_length=128)
	mode: Literal["single", "full"] = "full"
	answers: List[SpeakingAnswer]


def _speaking_section(db: Session, section_id: int) -> ExamSection:
	section = db.get(ExamSection, section_id)
	if not section:
		raise HTTPException(status_code=404, detail=f"Speaking question {section_id} not found")
	if section.skill != "speaking":
		raise HTTPException(status_code=400, detail=f"Section {section_id} is not a speaking question")
	return section


@router.post("/grade", status_code=202)
async def grade_speaking(req: GradeRequest, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
	"""
	Queue speaking transcripts for grading.

	Mode ``single`` grades only the first answer; ``full`` grades every answer
	of the exam. Responds immediately with the pending feedback ids.
	"""
	answers = req.answers[:1] if req.mode == "single" else req.answers
	if not answers:
		raise HTTPException(status_code=400, detail="answers are required")
	if len({a.section_id for a in answers}) != len(answers):
		raise HTTPException(status_code=400, detail="each section may be answered only once")
	items = []
	for ans in answers:
		section = _speaking_section(db, ans.section_id)
		if section.exam_id != req.exam_id:
			raise HTTPException(status_code=404, detail=f"Speaking question {ans.section_id} not found in exam {req.exam_id}")
		transcript = clean_transcript(ans.transcript)
		if not transcript:
			raise HTTPException(status_code=400, detail="transcript is empty")
		items.append({"section_id": section.id, "answer_text": transcript, "display_order": ans.display_order})

	ids = queue_feedback(db, "speaking", req.exam_id, req.username.strip(), items)
	background_tasks.add_task(run_feedback_jobs, ids)
	return {"status": "pending", "exam_id": req.exam_id, "feedback_ids": ids}


@router.get("/feedback")
async def get_feedback(exam_id: int, username: str, db: Session = Depends(get_db)):
	rows = (
		db.query(AiFeedback)
		.filter(AiFeedback.kind == "speaking", AiFeedback.exam_id == exam_id, AiFeedback.username == username)
		.order_by(AiFeedback.display_order, AiFeedback.id)
		.all()
	)
	if not rows:
		raise HTTPException(status_code=404, detail="No speaking feedback for this exam")
	return {"exam_id": exam_id, **summarize_feedback(rows)}


@router.get("/{section_id}/suggestion")
async def get_suggestion(section_id: int, db: Session = Depends(get_db)):
	section = _speaking_section(db, section_id)
	question = (section.question_markup or section.content or "").strip()
	try:
		return await speaking_suggestion(question)
	except Exception as e:
		logger.error("Speaking suggestion failed for section %s: %s", section_id, e)
		raise HTTPException(status_code=502, detail=f"AI suggestion failed: {e}")
