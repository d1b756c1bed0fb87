"""
Question generation providers.

Every provider exposes ``generate(topic, content, difficulty, question_type,
count, context)`` and returns a list of raw question dicts, each carrying a
``_metadata`` entry with the provider name, model and a confidence score.
"""

from __future__ import annotations

import json
import logging
import os
import re
from typing import Any, Dict, List, Optional

import openai

from ai.prompts import (
    DEFAULT_MARKS,
    DEFAULT_NEGATIVE_MARKS,
    DEFAULT_RECOMMENDED_TIME,
    PROMPT_VERSION,
    build_question_prompt,
)
from ai.validation import fill_correct_answer

logger = logging.getLogger("tutorhub.ai")


class ProviderError(Exception):
    pass


class QuestionProvider:
    name = "base"
    version = "1.0.0"
    model = ""

    def is_available(self) -> bool:
        return False

    def describe(self) -> dict:
        return {
            "name": self.name,
            "version": self.version,
            "model": self.model,
            "available": self.is_available(),
        }

    def generate(
        self,
        topic: str,
        content: str,
        difficulty: str,
        question_type: str,
        count: int,
        context: Optional[dict] = None,
    ) -> List[dict]:
        raise NotImplementedError


def _unwrap_questions(raw: str) -> List[dict]:
    """
    Accept ``{"questions": [...]}``, a bare list, or a single question
    object, and always hand back a list.
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ProviderError(f"Provider returned invalid JSON: {e}") from e

    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        if isinstance(data.get("questions"), list):
            return data["questions"]
        if "text" in data:
            return [data]
        if len(data) == 1:
            only = next(iter(data.values()))
            if isinstance(only, list):
                return only
    raise ProviderError("Provider response did not contain a questions list")


class OpenAIProvider(QuestionProvider):
    name = "openai"

    TEMPERATURE = {"easy": 0.3, "medium": 0.5, "hard": 0.7}
    MAX_TOKENS = {
        "mcq-single": 800,
        "mcq-multiple": 1000,
        "true-false": 500,
        "numerical": 600,
        "short-answer": 700,
        "long-answer": 1200,
        "case-based": 1500,
    }
    CONFIDENCE = 0.8

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, client=None):
        self.api_key = api_key if api_key is not None else os.getenv("OPENAI_API_KEY", "")
        self.model = model or os.getenv("OPENAI_MODEL", "gpt-4.1-nano")
        self._client = client

    def is_available(self) -> bool:
        return self._client is not None or bool(self.api_key)

    @property
    def client(self):
        if self._client is None:
            self._client = openai.OpenAI(api_key=self.api_key)
        return self._client

    def generate(self, topic, content, difficulty, question_type, count, context=None):
        if not self.is_available():
            raise ProviderError("OpenAI API key not configured")

        system_prompt, user_prompt = build_question_prompt(
            topic, content, difficulty, question_type, count, context
        )
        temperature = self.TEMPERATURE.get(difficulty, 0.5)
        try:
            resp = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=temperature,
                max_tokens=self.MAX_TOKENS.get(question_type, 800) * count,
                response_format={"type": "json_object"},
            )
        except openai.OpenAIError as e:
            logger.error("OpenAI question generation failed: %s", e)
            raise ProviderError(str(e)) from e

        content_out = (resp.choices[0].message.content or "").strip()
        if not content_out:
            raise ProviderError("Empty response from OpenAI")

        questions = []
        for q in _unwrap_questions(content_out):
            if not isinstance(q, dict):
                continue
            fill_correct_answer(q)
            q["_metadata"] = {
                "provider": self.name,
                "model": self.model,
                "version": self.version,
                "temperature": temperature,
                "prompt_version": PROMPT_VERSION,
                "confidence": self.CONFIDENCE,
            }
            questions.append(q)
        return questions


_STOP_WORDS = {
    "the", "a", "an", "is", "are", "was", "were", "be", "been", "being", "have", "has",
    "had", "do", "does", "did", "will", "would", "could", "should", "may", "might",
    "must", "of", "in", "to", "for", "with", "on", "at", "by", "from", "as", "into",
    "through", "during", "before", "after", "above", "below", "between", "under",
    "again", "further", "then", "once", "and", "but", "or", "nor", "so", "yet", "both",
    "either", "neither", "not", "only", "own", "same", "than", "too", "very", "just",
    "also", "now", "here", "there", "when", "where", "why", "how", "all", "each",
    "every", "few", "more", "most", "other", "some", "such", "no", "this", "that",
    "these", "those", "which", "their", "they", "them", "its",
}  # fmt: skip


def extract_key_terms(text: str, limit: int = 10) -> List[str]:
    terms: List[str] = []
    for word in re.split(r"[\s,.:;!?()\"']+", text or ""):
        if len(word) <= 3 or word.lower() in _STOP_WORDS or word.isdigit():
            continue
        if word not in terms:
            terms.append(word)
        if len(terms) >= limit:
            break
    return terms


class RuleBasedProvider(QuestionProvider):
    """
    Template-based fallback. Always available; output is deliberately
    plain and carries a lower confidence so reviewers look at it twice.
    """

    name = "rule-based"
    model = "template-based"
    CONFIDENCE = 0.5

    TEMPLATES = {
        "mcq-single": [
            "What is {concept}?",
            "Which of the following best describes {concept}?",
            "What is the main purpose of {concept}?",
            "Which statement about {concept} is correct?",
            "How does {concept} work?",
        ],
        "mcq-multiple": [
            "Which of the following statements about {concept} are correct?",
            "Select all the characteristics that apply to {concept}.",
        ],
        "true-false": [
            "{concept} is an important idea in the study of {topic}.",
            "Understanding {concept} helps explain problems in {topic}.",
        ],
        "numerical": [
            "Calculate the value of {a} multiplied by {b} in a problem about {concept}.",
            "A problem on {concept} requires the sum of {a} and {b}. What is the result?",
        ],
        "short-answer": [
            "Define {concept} in your own words.",
            "Briefly explain the significance of {concept}.",
            "List the key characteristics of {concept}.",
        ],
        "long-answer": [
            "Explain {concept} in detail, covering its definition, importance and applications.",
            "Discuss the role of {concept} within {topic} with suitable examples.",
        ],
        "case-based": [
            "Based on the scenario, which statement about {concept} is most accurate?",
        ],
    }

    def is_available(self) -> bool:
        return True

    def generate(self, topic, content, difficulty, question_type, count, context=None):
        logger.info(
            "Rule-based provider generating %d %s question(s) for topic %s",
            count,
            question_type,
            topic,
        )
        terms = extract_key_terms(content or topic) or [topic]
        templates = self.TEMPLATES.get(question_type) or self.TEMPLATES["mcq-single"]
        out = []
        for i in range(count):
            term = terms[i % len(terms)]
            q = self._from_template(templates[i % len(templates)], term, topic, difficulty, question_type, i)
            q["_metadata"] = {
                "provider": self.name,
                "model": self.model,
                "version": self.version,
                "prompt_version": PROMPT_VERSION,
                "confidence": self.CONFIDENCE,
            }
            out.append(q)
        return out

    def _from_template(
        self, pattern: str, term: str, topic: str, difficulty: str, question_type: str, i: int
    ) -> Dict[str, Any]:
        a, b = 3 + i * 2, 4 + i * 3
        q: Dict[str, Any] = {
            "text": pattern.format(concept=term, topic=topic, a=a, b=b),
            "difficulty": difficulty,
            "type": question_type,
            "topic": topic,
            "explanation": f"This question tests understanding of {term} in the context of {topic}.",
            "marks": DEFAULT_MARKS.get(difficulty, 1),
            "negative_marks": DEFAULT_NEGATIVE_MARKS.get(difficulty, 0),
            "recommended_time": DEFAULT_RECOMMENDED_TIME.get(difficulty, 60),
            "tags": [topic, term, difficulty],
        }

        if question_type in ("mcq-single", "mcq-multiple", "case-based"):
            q["options"] = self._options(term, topic, question_type == "mcq-multiple")
            q["correct_answer"] = next(o["text"] for o in q["options"] if o["is_correct"])
            if question_type == "case-based":
                q["case_study"] = (
                    f"A class studying {topic} is asked to apply what they know about {term} "
                    f"to a real situation and explain the outcome they observe."
                )
        elif question_type == "true-false":
            q["options"] = [
                {"text": "True", "is_correct": True, "explanation": "The statement is accurate."},
                {"text": "False", "is_correct": False, "explanation": "The statement is accurate, so False is wrong."},
            ]
            q["correct_answer"] = "True"
        elif question_type == "numerical":
            value = a * b if "multiplied" in pattern else a + b
            q["numerical_answer"] = {"value": value, "tolerance": 0.01, "unit": ""}
            q["correct_answer"] = str(value)
        elif question_type == "short-answer":
            q["expected_answer"] = f"{term} is a key concept in {topic}."
            q["correct_answer"] = q["expected_answer"]
            q["keywords"] = [term, topic]
        else:
            q["expected_answer"] = (
                f"A complete answer defines {term}, explains why it matters in {topic} "
                f"and gives at least one application."
            )
            q["correct_answer"] = q["expected_answer"]
            q["keywords"] = [term, topic, "definition", "importance", "application"]
        return q

    @staticmethod
    def _options(term: str, topic: str, multiple: bool) -> List[dict]:
        options = [
            {"text": f"An accurate statement about {term}", "is_correct": True,
             "explanation": "This correctly describes the concept."},
            {"text": f"A statement only loosely related to {topic}", "is_correct": False,
             "explanation": "This misrepresents the concept."},
            {"text": "A common misconception", "is_correct": False,
             "explanation": "This is a frequent misunderstanding of the topic."},
            {"text": "An unrelated but plausible claim", "is_correct": False,
             "explanation": "This does not apply in this context."},
        ]  # fmt: skip
        if multiple:
            options[1] = {
                "text": f"Another accurate aspect of {term}",
                "is_correct": True,
                "explanation": "This is also correct.",
            }
        return options


# --- Registry -----------------------------------------------------------------------

DEFAULT_PROVIDER = "openai"
FALLBACK_PROVIDER = "rule-based"

_PROVIDERS: Dict[str, QuestionProvider] = {}


def register_provider(provider: QuestionProvider) -> None:
    _PROVIDERS[provider.name] = provider


def reset_providers() -> None:
    _PROVIDERS.clear()
    register_provider(OpenAIProvider())
    register_provider(RuleBasedProvider())


def get_provider(name: str) -> QuestionProvider:
    provider = _PROVIDERS.get(name)
    if provider is None:
        raise ProviderError(f"AI provider not found: {name}")
    return provider


def best_available() -> QuestionProvider:
    preferred = _PROVIDERS.get(DEFAULT_PROVIDER)
    if preferred is not None and preferred.is_available():
        return preferred
    logger.warning("Provider %s not available, using fallback", DEFAULT_PROVIDER)
    for name, provider in _PROVIDERS.items():
        if name not in (DEFAULT_PROVIDER, FALLBACK_PROVIDER) and provider.is_available():
            return provider
    return _PROVIDERS[FALLBACK_PROVIDER]


def resolve_provider(name: Optional[str] = None) -> QuestionProvider:
    """Named provider if it can run, else the best available one."""
    if name:
        provider = get_provider(name)
        if provider.is_available():
            return provider
        logger.warning("Requested provider %s is not available", name)
    return best_available()


def provider_status() -> List[dict]:
    return [p.describe() for p in _PROVIDERS.values()]


reset_providers()
