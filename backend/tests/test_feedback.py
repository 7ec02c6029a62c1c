import asyncio
from datetime import datetime, timedelta

import pytest

from ielts_prep.cleanup import expire_stale_feedback
from ielts_prep import feedback
from ielts_prep.db import SessionLocal
from ielts_prep.feedback import (
    average_overall,
    build_speaking_prompt,
    build_writing_prompt,
    clean_transcript,
    extract_json_object,
    overall_band,
    queue_feedback,
    round_half_band,
    run_feedback_jobs,
)
from ielts_prep.models import AiFeedback, Exam, ExamSection, FEEDBACK_FAILED, FEEDBACK_PENDING, FEEDBACK_READY


def test_extract_json_object_variants():
    assert extract_json_object('{"a": 1}') == {"a": 1}
    assert extract_json_object('Sure!\n```json\n{"a": 2}\n```') == {"a": 2}
    assert extract_json_object('Result: {"a": {"b": 3}} hope this helps') == {"a": {"b": 3}}


def test_extract_json_object_rejects_non_objects():
    with pytest.raises(ValueError):
        extract_json_object("no json here")
    with pytest.raises(ValueError):
        extract_json_object("[1, 2, 3]")


def test_round_half_band():
    assert round_half_band(6.3) == 6.5
    assert round_half_band(6.1) == 6.0
    assert round_half_band(7.0) == 7.0
    # Quarter bands round up, never to even
    assert [round_half_band(x) for x in (5.25, 6.25, 6.75, 7.25)] == [5.5, 6.5, 7.0, 7.5]


def test_writing_overall_prefers_reported_overall():
    assert overall_band("writing", {"band_estimate": {"task_achievement": 5, "overall": 6.5}}) == 6.5


def test_writing_overall_from_criteria():
    band = {"task_achievement": 6, "organization_logic": 6.5, "lexical_resource": 7, "grammar_accuracy": 7}
    assert overall_band("writing", {"band_estimate": band}) == 6.5


def test_speaking_overall_is_criteria_mean():
    band = {"pronunciation": 6, "fluency": 6, "lexical_resource": 7, "grammar_accuracy": 7}
    assert overall_band("speaking", {"band_estimate": band}) == 6.5
    band = {"pronunciation": 6, "fluency": 6.5, "lexical_resource": 6, "grammar_accuracy": 6.5}
    assert overall_band("speaking", {"band_estimate": band}) == 6.5
    band = {"pronunciation": 7, "fluency": 7, "lexical_resource": 7, "grammar_accuracy": 6}
    assert overall_band("speaking", {"band_estimate": band}) == 7.0


def test_overall_band_missing_or_bad():
    assert overall_band("speaking", {}) is None
    assert overall_band("speaking", {"band_estimate": {}}) is None
    assert overall_band("writing", {"band_estimate": {"overall": "n/a"}}) is None


def test_average_overall_skips_missing():
    assert average_overall([6.0, None, 7.0]) == 6.5
    assert average_overall([6.0, 6.5]) == 6.5
    assert average_overall([None]) is None
    assert average_overall([]) is None


def test_clean_transcript_collapses_repeats():
    assert clean_transcript("I I think think that that is is good") == "I think that is good"
    assert clean_transcript("the cat sat the cat sat on the mat") == "the cat sat on the mat"
    assert clean_transcript("  hello \n  world  ") == "hello world"
    assert clean_transcript("") == ""


def test_prompts_embed_question_and_answer():
    prompt = build_writing_prompt("Discuss both views.", "Some people think...")
    assert "Discuss both views." in prompt
    assert "Some people think..." in prompt
    assert '"band_estimate"' in prompt
    speaking = build_speaking_prompt("Describe your hometown.", "My hometown is small.")
    assert "My hometown is small." in speaking
    assert "Do NOT generate an overall score" in speaking


def test_expire_stale_feedback(client):
    db = SessionLocal()
    try:
        exam = Exam(name="Mock", exam_type="Academic")
        db.add(exam)
        db.flush()
        section = ExamSection(exam_id=exam.id, skill="writing", content="Describe the chart.")
        db.add(section)
        db.flush()
        now = datetime.utcnow()
        old = AiFeedback(
            exam_id=exam.id,
            section_id=section.id,
            username="alice",
            kind="writing",
            answer_text="essay",
            created_at=now - timedelta(hours=2),
        )
        fresh = AiFeedback(exam_id=exam.id, section_id=section.id, username="bob", kind="writing", answer_text="essay")
        db.add_all([old, fresh])
        db.commit()

        assert expire_stale_feedback(db, now=now) == 1

        db.refresh(old)
        db.refresh(fresh)
        assert old.status == FEEDBACK_FAILED
        assert old.error == "Grading timed out"
        assert fresh.status == FEEDBACK_PENDING
        assert expire_stale_feedback(db, now=now) == 0
    finally:
        db.close()


def _writing_exam(db, prompts):
    exam = Exam(name="Mock", exam_type="Academic")
    db.add(exam)
    db.flush()
    sections = [ExamSection(exam_id=exam.id, skill="writing", content=p) for p in prompts]
    db.add_all(sections)
    db.commit()
    return exam.id, [s.id for s in sections]


def _statuses():
    db = SessionLocal()
    try:
        return {(r.section_id, r.answer_text): r.status for r in db.query(AiFeedback).all()}
    finally:
        db.close()


def test_queue_feedback_rejects_repeated_section(client):
    db = SessionLocal()
    try:
        exam_id, (task1,) = _writing_exam(db, ["Task 1"])
        items = [{"section_id": task1, "answer_text": "one"}, {"section_id": task1, "answer_text": "two"}]
        with pytest.raises(ValueError):
            queue_feedback(db, "writing", exam_id, "alice", items)
        assert db.query(AiFeedback).count() == 0
    finally:
        db.close()


def test_queue_feedback_replaces_only_resubmitted_sections(client):
    db = SessionLocal()
    try:
        exam_id, (task1, task2) = _writing_exam(db, ["Task 1", "Task 2"])
        queue_feedback(db, "writing", exam_id, "alice", [{"section_id": task1, "answer_text": "a"}, {"section_id": task2, "answer_text": "b"}])
        ids = queue_feedback(db, "writing", exam_id, "alice", [{"section_id": task1, "answer_text": "a2"}])
        assert len(ids) == 1
    finally:
        db.close()
    assert set(_statuses()) == {(task1, "a2"), (task2, "b")}


def test_feedback_job_grades_rows_independently(client, fake_llm, writing_reply, monkeypatch):
    db = SessionLocal()
    try:
        exam_id, (task1, task2) = _writing_exam(db, ["Task 1", "Task 2"])
        ids = queue_feedback(
            db, "writing", exam_id, "alice", [{"section_id": task1, "answer_text": "first"}, {"section_id": task2, "answer_text": "second"}]
        )
    finally:
        db.close()

    class FlakyLLM(fake_llm):
        async def chat(self, prompt, **kwargs):
            if "first" in prompt:
                raise RuntimeError("rate limited")
            return writing_reply

    monkeypatch.setattr(feedback, "OpenAIClient", FlakyLLM)
    # Unknown ids are skipped
    asyncio.run(run_feedback_jobs(ids + [9999]))
    assert _statuses() == {(task1, "first"): FEEDBACK_FAILED, (task2, "second"): FEEDBACK_READY}


def test_feedback_job_survives_resubmission_mid_run(client, fake_llm, writing_reply, monkeypatch):
    fake_llm.reply = writing_reply
    db = SessionLocal()
    try:
        exam_id, (task1, task2) = _writing_exam(db, ["Task 1", "Task 2"])
        ids = queue_feedback(
            db, "writing", exam_id, "alice", [{"section_id": task1, "answer_text": "first"}, {"section_id": task2, "answer_text": "second"}]
        )
    finally:
        db.close()

    class ResubmittingLLM(fake_llm):
        async def chat(self, prompt, **kwargs):
            if not fake_llm.prompts:
                # The user resubmits task 1 while its first answer is being graded
                other = SessionLocal()
                try:
                    queue_feedback(other, "writing", exam_id, "alice", [{"section_id": task1, "answer_text": "first again"}])
                finally:
                    other.close()
            return await super().chat(prompt, **kwargs)

    monkeypatch.setattr(feedback, "OpenAIClient", ResubmittingLLM)
    asyncio.run(run_feedback_jobs(ids))
    assert _statuses() == {(task1, "first again"): FEEDBACK_PENDING, (task2, "second"): FEEDBACK_READY}
