from __future__ import annotations
from typing import List, Literal

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..db import get_db
from ..feedback import queue_feedback, run_feedback_jobs, summarize_feedback
from ..models import AiFeedback, ExamSection


router = APIRouter(prefix="/writing", tags=["writing"])

# Keep prompts bounded; a Task 2 essay is ~250-400 words
MAX_ESSAY_CHARS = 8000


class WritingAnswer(BaseModel):
	section_id: int
	answer_text: str
	display_order: int = 1


class GradeRequest(BaseModel):
	exam_id: int
	username: str = Field(min_length=1, max_length=128)
	# "single" grades only the first answer (practice on one task)
	mode: Literal["single", "full"] = "full"
	answers: List[WritingAnswer]


@router.post("/grade", status_code=202)
async def grade_writing(req: GradeRequest, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
	answers = req.answers[:1] if req.mode == "single" else req.answers
	if not answers:
		raise HTTPException(status_code=400, detail="answers are required")
	if len({a.section_id for a in answers}) != len(answers):
		raise HTTPException(status_code=400, detail="each section may be answered only once")
	items = []
	for ans in answers:
		section = db.get(ExamSection, ans.section_id)
		if not section or section.exam_id != req.exam_id:
			raise HTTPException(status_code=404, detail=f"Writing task {ans.section_id} not found in exam {req.exam_id}")
		if section.skill != "writing":
			raise HTTPException(status_code=400, detail=f"Section {ans.section_id} is not a writing task")
		text = (ans.answer_text or "").strip()
		if not text:
			raise HTTPException(status_code=400, detail="answer_text is required")
		items.append({"section_id": section.id, "answer_text": text[:MAX_ESSAY_CHARS], "display_order": ans.display_order})

	ids = queue_feedback(db, "writing", req.exam_id, req.username.strip(), items)
	background_tasks.add_task(run_feedback_jobs, ids)
	return {"status": "pending", "exam_id": req.exam_id, "feedback_ids": ids}


@router.get("/feedback")
async def get_feedback(exam_id: int, username: str, db: Session = Depends(get_db)):
	rows = (
		db.query(AiFeedback)
		.filter(AiFeedback.kind == "writing", AiFeedback.exam_id == exam_id, AiFeedback.username == username)
		.order_by(AiFeedback.display_order, AiFeedback.id)
		.all()
	)
	if not rows:
		raise HTTPException(status_code=404, detail="No writing feedback for this exam")
	return {"exam_id": exam_id, **summarize_feedback(rows)}
