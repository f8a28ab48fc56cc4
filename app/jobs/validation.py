"""Structural checks applied to generated content before a job may complete."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

from app.jobs.errors import InvalidContent

logger = logging.getLogger(__name__)

_HEADING_RE = re.compile(r"^#{1,6}\s+\S", re.MULTILINE)

MAX_BANNED_SOURCES = 5
MIN_REFERENCE_SECTION_CHARS = 50

# Low-quality sites; more than MAX_BANNED_SOURCES of these rejects the material.
BANNED_SOURCE_DOMAINS: tuple[str, ...] = (
  "brasilescola.uol.com.br",
  "mundoeducacao.uol.com.br",
  "todamateria.com.br",
  "wikipedia.org",
  "infoescola.com",
  "soescola.com",
  "escolakids.uol.com.br",
  "educacao.uol.com.br",
  "blogspot.com",
  "wordpress.com",
  "uol.com.br/educacao",
  "youtube.com",
  "youtu.be",
  "facebook.com",
  "instagram.com",
  "quora.com",
  "answers.yahoo.com",
  "brainly.com.br",
  "passeiweb.com",
  "coladaweb.com",
  "suapesquisa.com",
)

ACADEMIC_SOURCE_MARKERS: tuple[str, ...] = (
  ".edu",
  ".ac.uk",
  ".ac.br",
  ".gov",
  "scielo.org",
  "scielo.br",
  "journals.",
  "journal.",
  "pubmed",
  "ncbi.nlm.nih.gov",
  "springer.com",
  "springerlink.com",
  "elsevier.com",
  "sciencedirect.com",
  "wiley.com",
  "nature.com",
  "science.org",
  "researchgate.net",
  "academia.edu",
  "ieee.org",
  "acm.org",
  "doi.org",
)

_REFERENCE_SECTION_RE = re.compile(
  r"^##\s*(?:\d+\.)?\s*(?:(?:Fontes e |Sources and )?Refer(?:[eê]ncias|ences)|Bibliograf[ií]a|Bibliography)[^\n]*\n\s*\n(.+)",
  re.DOTALL | re.MULTILINE | re.IGNORECASE,
)
_REFERENCE_ENTRY_RE = re.compile(r"\[\d+\].+")


@dataclass(frozen=True)
class ReferenceReport:
  total: int
  banned: int
  academic: int

  @property
  def academic_percentage(self) -> float:
    return (self.academic / self.total) * 100 if self.total else 0.0


def check_references(markdown: str) -> ReferenceReport | None:
  """Classify numbered entries of the references section.

  Returns None when there is no recognizable section or no ``[n]`` entries; such material is
  approved since the model may format its sources differently.
  """
  match = _REFERENCE_SECTION_RE.search(markdown)
  if match is None or len(match.group(1).strip()) < MIN_REFERENCE_SECTION_CHARS:
    return None
  entries = _REFERENCE_ENTRY_RE.findall(match.group(1))
  if not entries:
    return None
  banned = sum(1 for entry in entries if any(domain in entry for domain in BANNED_SOURCE_DOMAINS))
  academic = sum(1 for entry in entries if any(marker in entry for marker in ACADEMIC_SOURCE_MARKERS))
  return ReferenceReport(total=len(entries), banned=banned, academic=academic)


def validate_quiz(payload: Any) -> dict[str, Any]:
  """Require a non-empty list of questions, each with question text."""
  if not isinstance(payload, dict):
    raise InvalidContent("Quiz data is not a JSON object.")
  questions = payload.get("questions")
  if not isinstance(questions, list) or not questions:
    raise InvalidContent("Quiz data is invalid or empty.")
  for position, item in enumerate(questions, start=1):
    if not isinstance(item, dict) or not str(item.get("question") or "").strip():
      raise InvalidContent(f"Quiz question {position} has no question text.")
  return payload


def validate_flashcards(payload: Any) -> dict[str, Any]:
  """Require a non-empty list of cards, each with a front and a back."""
  if not isinstance(payload, dict):
    raise InvalidContent("Flashcards data is not a JSON object.")
  cards = payload.get("cards")
  if not isinstance(cards, list) or not cards:
    raise InvalidContent("Flashcards data is invalid or empty.")
  for position, card in enumerate(cards, start=1):
    if not isinstance(card, dict) or not str(card.get("front") or "").strip() or not str(card.get("back") or "").strip():
      raise InvalidContent(f"Flashcard {position} is missing its front or back.")
  return payload


def validate_material(markdown: str, *, min_chars: int) -> str:
  """Reject hollow, truncated or poorly sourced material."""
  text = (markdown or "").strip()
  if not text:
    raise InvalidContent("Generated material is empty.")
  if len(text) < min_chars:
    raise InvalidContent(f"Generated material is too short ({len(text)} characters, minimum {min_chars}).")
  if not _HEADING_RE.search(text):
    raise InvalidContent("Generated material has no section headings.")
  references = check_references(text)
  if references is not None:
    logger.info("References: %d/%d academic (%.0f%%), %d banned", references.academic, references.total, references.academic_percentage, references.banned)
    if references.banned > MAX_BANNED_SOURCES:
      raise InvalidContent(f"Material rejected: {references.banned} untrustworthy sources (max {MAX_BANNED_SOURCES}).")
  return text
