from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, Field
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..db import get_db
from ..dictionary import DictionaryClient, lookup_word_ai
from ..models import Word


router = APIRouter(prefix="/words", tags=["vocabulary"])

logger = logging.getLogger(__name__)


class WordRequest(BaseModel):
    term: str = Field(min_length=1, max_length=128)
    meaning: Optional[str] = None
    example: Optional[str] = None
    audio: Optional[str] = Field(default=None, max_length=1024)


class AiLookupRequest(BaseModel):
    word: str = Field(max_length=128)


def _word_payload(word: Word) -> Dict[str, Any]:
    return {
        "id": word.id,
        "term": word.term,
        "meaning": word.meaning,
        "example": word.example,
        "audio": word.audio,
    }


def _find_term(db: Session, term: str) -> Optional[Word]:
    return db.query(Word).filter(func.lower(Word.term) == term.strip().lower()).first()


def _get_word(db: Session, word_id: int) -> Word:
    word = db.get(Word, word_id)
    if not word:
        raise HTTPException(status_code=404, detail="Word not found")
    return word


def _clean_term(term: str) -> str:
    value = (term or "").strip()
    if not value:
        raise HTTPException(status_code=400, detail="term is required")
    return value


@router.get("")
def get_by_term(term: Optional[str] = None, db: Session = Depends(get_db)):
    word = _find_term(db, _clean_term(term))
    if not word:
        raise HTTPException(status_code=404, detail="Word not found")
    return _word_payload(word)


@router.get("/search")
def search(keyword: str = "", limit: int = 50, db: Session = Depends(get_db)):
    query = db.query(Word)
    keyword = keyword.strip()
    if keyword:
        pattern = f"%{keyword}%"
        query = query.filter(or_(Word.term.ilike(pattern), Word.meaning.ilike(pattern)))
    words = query.order_by(Word.term).limit(max(1, min(limit, 200))).all()
    return [_word_payload(w) for w in words]


@router.get("/{word_id:int}")
def get_word(word_id: int, db: Session = Depends(get_db)):
    return _word_payload(_get_word(db, word_id))


@router.post("", status_code=201)
def add_word(req: WordRequest, db: Session = Depends(get_db)):
    term = _clean_term(req.term)
    if _find_term(db, term):
        raise HTTPException(status_code=409, detail=f"'{term}' already exists")
    word = Word(term=term, meaning=req.meaning, example=req.example, audio=req.audio)
    db.add(word)
    db.commit()
    return _word_payload(word)


@router.put("/{word_id:int}", status_code=204)
def update_word(word_id: int, req: WordRequest, db: Session = Depends(get_db)):
    word = _get_word(db, word_id)
    term = _clean_term(req.term)
    clash = _find_term(db, term)
    if clash and clash.id != word.id:
        raise HTTPException(status_code=409, detail=f"'{term}' already exists")
    word.term = term
    word.meaning = req.meaning
    word.example = req.example
    word.audio = req.audio
    db.commit()
    return Response(status_code=204)


@router.delete("/{word_id:int}", status_code=204)
def delete_word(word_id: int, db: Session = Depends(get_db)):
    db.delete(_get_word(db, word_id))
    db.commit()
    return Response(status_code=204)


@router.get("/{term}/lookup")
async def lookup(term: str, db: Session = Depends(get_db)):
    """Stored word, or its dictionary definition fetched and stored for next time."""
    term = _clean_term(term)
    word = _find_term(db, term)
    if word:
        return _word_payload(word)
    try:
        client = DictionaryClient()
    except ValueError as e:
        raise HTTPException(status_code=503, detail=str(e))
    try:
        meaning = await client.define(term)
    finally:
        await client.aclose()
    if not meaning:
        raise HTTPException(status_code=404, detail=f"No definition found for '{term}'")
    word = Word(term=term, meaning=meaning)
    db.add(word)
    db.commit()
    logger.info("Stored dictionary definition for %r", term)
    return _word_payload(word)


@router.post("/lookup-ai")
async def lookup_ai(req: AiLookupRequest):
    term = (req.word or "").strip()
    if not term:
        raise HTTPException(status_code=400, detail="word is required")
    try:
        return await lookup_word_ai(term)
    except Exception as e:
        logger.error("AI lookup failed for %r: %s", term, e)
        raise HTTPException(status_code=502, detail=f"AI lookup failed: {e}")
