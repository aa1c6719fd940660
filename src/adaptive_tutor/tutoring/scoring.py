from __future__ import annotations

import logging
import os
import re
from typing import List, Optional, Protocol, Sequence, Set

from openai import AsyncOpenAI, OpenAIError

from adaptive_tutor.config.schema import ScorerConfig
from adaptive_tutor.errors import ScorerFailure

logger = logging.getLogger(__name__)

_TOKEN = re.compile(r"[a-z0-9']+")
_NUMBER = re.compile(r"-?\d*\.?\d+")

STOPWORDS: Set[str] = {
    "about", "after", "also", "because", "been", "before", "being", "between", "both",
    "could", "does", "each", "from", "have", "into", "just", "know", "like", "make",
    "more", "most", "much", "only", "other", "over", "same", "some", "such", "than",
    "that", "their", "them", "then", "there", "these", "they", "think", "this", "those",
    "very", "what", "when", "where", "which", "while", "will", "with", "would", "your",
}


def tokenize(text: str) -> List[str]:
    return _TOKEN.findall(text.lower())


def keywords(texts: Sequence[str]) -> Set[str]:
    """Content words of length four or more, minus common stopwords."""
    found: Set[str] = set()
    for text in texts:
        found.update(token for token in tokenize(text) if len(token) >= 4 and token not in STOPWORDS)
    return found


class ResponseScorer(Protocol):
    """External grading capability: maps a question and an answer onto [0, 1]."""

    async def score(self, question_text: str, response_text: str, reference: Sequence[str] = ()) -> float:
        """Return a success indicator, or raise `ScorerFailure`."""


class KeywordOverlapScorer:
    """
    Rule-based grader.

    Counts how many content words of the answer also appear in the question or the
    reference material (analogies, examples, misconceptions) and saturates at
    `target_overlap` shared words. Answers shorter than `min_words` are scaled down
    proportionally, so a bare keyword never earns a full score.
    """

    def __init__(self, target_overlap: int = 3, min_words: int = 5):
        self.target_overlap = target_overlap
        self.min_words = min_words

    def score_sync(self, question_text: str, response_text: str, reference: Sequence[str] = ()) -> float:
        words = tokenize(response_text)
        if not words:
            return 0.0
        vocabulary = keywords([question_text, *reference])
        overlap = len(keywords([response_text]) & vocabulary)
        base = min(1.0, overlap / self.target_overlap)
        length_factor = min(1.0, len(words) / self.min_words)
        return round(base * length_factor, 4)

    async def score(self, question_text: str, response_text: str, reference: Sequence[str] = ()) -> float:
        return self.score_sync(question_text, response_text, reference)


def parse_score(raw: str) -> float:
    """First number in a model reply, accepted only when it lies within [0, 1]."""
    match = _NUMBER.search(raw or "")
    if match is None:
        raise ScorerFailure(f"No score found in scorer reply: {raw!r}")
    value = float(match.group())
    if not 0.0 <= value <= 1.0:
        raise ScorerFailure(f"Scorer reply out of range: {value}")
    return value


class LLMResponseScorer:
    """Chat-completion grader; every API or parse error surfaces as `ScorerFailure`."""

    SYSTEM_PROMPT = (
        "You grade a learner's answer to a tutoring question. "
        "Reply with a single number between 0 and 1, where 0 means no understanding "
        "and 1 means full understanding. Reply with the number only."
    )

    def __init__(
        self,
        config: ScorerConfig,
        api_key: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.config = config
        key = api_key or os.getenv("OPENAI_API_KEY")
        if not key and client is None:
            raise RuntimeError("OPENAI_API_KEY must be set or an OpenAI client provided.")
        self.client = client or AsyncOpenAI(api_key=key)

    async def score(self, question_text: str, response_text: str, reference: Sequence[str] = ()) -> float:
        context = "\n".join(f"- {item}" for item in reference)
        user_prompt = f"Question: {question_text}\nAnswer: {response_text}"
        if context:
            user_prompt = f"{user_prompt}\nReference material:\n{context}"
        try:
            response = await self.client.chat.completions.create(
                model=self.config.model,
                temperature=self.config.temperature,
                max_tokens=8,
                messages=[
                    {"role": "system", "content": self.SYSTEM_PROMPT},
                    {"role": "user", "content": user_prompt},
                ],
            )
        except OpenAIError as exc:
            logger.warning("LLM scorer request failed: %s", exc)
            raise ScorerFailure(str(exc)) from exc
        if not response.choices:
            raise ScorerFailure("Scorer returned no choices")
        return parse_score(response.choices[0].message.content or "")


def build_scorer(config: ScorerConfig, api_key: Optional[str] = None) -> ResponseScorer:
    """Scorer named by `config.provider`."""
    if config.provider == "openai":
        return LLMResponseScorer(config, api_key=api_key)
    return KeywordOverlapScorer()
