"""AI Arbiter service for answer analysis using Gemini."""

import json
import logging
from typing import Awaitable, Callable, Optional

import google.generativeai as genai

from civicstake.config import Settings, get_settings
from civicstake.models.answer import AIAnalysis

logger = logging.getLogger(__name__)

# (question_title, question_body, answer_content) -> analysis, or None when absent
DirectnessScorer = Callable[[str, str, str], Awaitable[Optional[AIAnalysis]]]

PROMPT = """You are an AI assistant analyzing political accountability.

Analyze how directly the following answer addresses the citizen's question.

QUESTION TITLE: {title}

QUESTION BODY: {body}

POLITICIAN'S ANSWER: {answer}

Evaluate the answer and respond in this exact JSON format:
{{
    "directness_score": <0-100 number, where 100 is perfectly direct and 0 is completely evasive>,
    "summary": "<one sentence summary of your analysis>",
    "flags": [<list of any concerning patterns, e.g. "political_fluff", "off_topic", "vague_promises", "blame_shifting">]
}}

Scoring guidelines:
- 80-100: Answer directly addresses the specific issue with concrete details
- 60-79: Answer is somewhat relevant but lacks specifics
- 40-59: Answer is vague or only tangentially related
- 20-39: Answer is mostly political platitudes with minimal relevance
- 0-19: Answer completely ignores the question

Return ONLY the JSON, no other text."""


def parse_analysis(text: str) -> AIAnalysis:
    """Parse the model's JSON reply, tolerating a markdown code fence."""
    text = text.strip()
    if text.startswith("```"):
        text = text.split("```")[1]
        if text.startswith("json"):
            text = text[4:]

    data = json.loads(text)
    score = float(data["directness_score"])
    return AIAnalysis(
        directness_score=min(max(score, 0.0), 100.0),
        summary=data.get("summary", "Analysis completed"),
        flags=data.get("flags", []),
    )


async def analyze_answer_directness(
    question_title: str,
    question_body: str,
    answer_content: str,
    settings: Optional[Settings] = None,
) -> Optional[AIAnalysis]:
    """
    Analyze how directly an answer addresses the question.

    Uses Gemini to detect "political fluff" and evasive responses.
    Returns a directness score from 0-100, or None when the scorer is not
    configured or fails (the satisfaction signal then uses votes only).
    """
    settings = settings or get_settings()

    if not settings.gemini_api_key:
        logger.debug("Gemini not configured; directness score absent")
        return None

    genai.configure(api_key=settings.gemini_api_key)
    model = genai.GenerativeModel(settings.gemini_model)
    prompt = PROMPT.format(title=question_title, body=question_body, answer=answer_content)

    try:
        response = await model.generate_content_async(prompt)
        return parse_analysis(response.text)
    except Exception:
        logger.warning("Directness analysis failed", exc_info=True)
        return None
