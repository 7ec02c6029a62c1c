import os
import tempfile

_tmp_dir = tempfile.mkdtemp(prefix="ielts-prep-tests-")
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(_tmp_dir, "test.db")

import json

import pytest
from fastapi.testclient import TestClient

from ielts_prep import dictionary, feedback
from ielts_prep.db import Base, engine
from ielts_prep.main import app


@pytest.fixture
def client():
    Base.metadata.drop_all(bind=engine)
    # Startup recreates the schema
    with TestClient(app) as c:
        yield c


class FakeLLM:
    """Stands in for OpenAIClient; replies with whatever the test queues."""

    reply = "{}"
    error = None
    prompts = []

    def __init__(self, *args, **kwargs):
        pass

    async def chat(self, prompt, *, system=None, temperature=0.3, max_tokens=1500):
        FakeLLM.prompts.append(prompt)
        if FakeLLM.error is not None:
            raise FakeLLM.error
        return FakeLLM.reply

    async def aclose(self):
        pass


@pytest.fixture
def fake_llm(monkeypatch):
    FakeLLM.reply = "{}"
    FakeLLM.error = None
    FakeLLM.prompts = []
    monkeypatch.setattr(feedback, "OpenAIClient", FakeLLM)
    monkeypatch.setattr(dictionary, "OpenAIClient", FakeLLM)
    return FakeLLM


WRITING_FEEDBACK = {
    "grammar_vocab": {
        "overview": "Mostly accurate.",
        "errors": [
            {
                "type": "Grammar",
                "category": "Tense",
                "incorrect": "I goes",
                "suggestion": "I go",
                "explanation": "Subject-verb agreement.",
            }
        ],
    },
    "overall_feedback": {"overview": "Clear position.", "refinements": []},
    "band_estimate": {
        "task_achievement": 6.5,
        "organization_logic": 6,
        "lexical_resource": 6.5,
        "grammar_accuracy": 6,
        "overall": 6.5,
    },
}

SPEAKING_FEEDBACK = {
    "band_estimate": {"pronunciation": 6, "fluency": 6, "lexical_resource": 7, "grammar_accuracy": 7},
    "ai_analysis": {
        "overview": "Good range.",
        "strengths": ["vocabulary"],
        "weaknesses": ["hesitation"],
        "advice": "Practise linking ideas.",
        "vocabulary_suggestions": [],
    },
}


@pytest.fixture
def writing_reply():
    return "Here is the evaluation:\n```json\n" + json.dumps(WRITING_FEEDBACK) + "\n```"


@pytest.fixture
def speaking_reply():
    return json.dumps(SPEAKING_FEEDBACK)
