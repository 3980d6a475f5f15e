"""
Query complexity classification.

Scores the latest user message with additive heuristics:

    greeting / acknowledgment          -2
    length < 30 chars                  -1
    length > 500 chars                 +2
    length > 200 chars                 +1
    more than 5 user turns             +1
    code keywords                      +2
    technical-task keywords            +2
    "write/create/generate <noun>"     +1
    more than one "?"                  +1

score <= -1 is simple, score >= 2 is complex, anything else is medium.
Image parts and fenced code blocks are complex outright; a message that is
nothing but a greeting is simple outright.
"""
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Sequence

from aicore.models import ConversationMessage, MessageRole, last_user_message


class QueryComplexity(str, Enum):
    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"


TARGET_TIER = {
    QueryComplexity.SIMPLE: 1,
    QueryComplexity.MEDIUM: 2,
    QueryComplexity.COMPLEX: 3,
}

GREETING_PATTERN = re.compile(
    r"^(hi|hello|hey|salom|привет|здравствуй|assalomu|good\s*(morning|afternoon|evening)"
    r"|thanks|thank you|bye|goodbye|see you|rahmat|спасибо|пока"
    r"|yes|no|ok|okay|sure|yep|nope|ha|yo'q|да|нет)[\s!?.]*$",
    re.IGNORECASE,
)

CODE_FENCE_PATTERN = re.compile(r"```[\s\S]*?```")

CODE_KEYWORD_PATTERN = re.compile(
    r"\b(?:function|class)\b|\b(?:const|let|var|def|import|export|async|await|return) "
)

TECHNICAL_PATTERN = re.compile(
    r"\b(implement|debug|analyze|compare|explain how|architecture|algorithm|refactor"
    r"|optimize|investigate|comprehensive|detailed|step.?by.?step)\b",
    re.IGNORECASE,
)

CONTENT_GENERATION_PATTERN = re.compile(
    r"\b(write|create|generate)\s+(an?\s+)?(article|essay|report|document|paper|code|function|script)\b",
    re.IGNORECASE,
)

SHORT_MESSAGE_CHARS = 30
LONG_MESSAGE_CHARS = 200
VERY_LONG_MESSAGE_CHARS = 500
DEEP_CONVERSATION_TURNS = 5


@dataclass
class ComplexityAssessment:
    complexity: QueryComplexity
    score: int
    factors: List[str] = field(default_factory=list)


def _bucket(score: int) -> QueryComplexity:
    if score <= -1:
        return QueryComplexity.SIMPLE
    if score >= 2:
        return QueryComplexity.COMPLEX
    return QueryComplexity.MEDIUM


def assess_complexity(messages: Sequence[ConversationMessage]) -> ComplexityAssessment:
    """Classify a conversation and report which signals contributed."""
    message = last_user_message(list(messages))
    if message is None:
        return ComplexityAssessment(QueryComplexity.MEDIUM, 0, ["no_user_message"])

    if message.has_images:
        return ComplexityAssessment(QueryComplexity.COMPLEX, 0, ["image_attached"])

    text = message.text
    stripped = text.strip()

    if CODE_FENCE_PATTERN.search(text):
        return ComplexityAssessment(QueryComplexity.COMPLEX, 0, ["code_block"])

    if GREETING_PATTERN.match(stripped):
        return ComplexityAssessment(QueryComplexity.SIMPLE, -2, ["greeting"])

    score = 0
    factors: List[str] = []

    length = len(stripped)
    if length < SHORT_MESSAGE_CHARS:
        score -= 1
        factors.append("short")
    elif length > VERY_LONG_MESSAGE_CHARS:
        score += 2
        factors.append("very_long")
    elif length > LONG_MESSAGE_CHARS:
        score += 1
        factors.append("long")

    user_turns = sum(1 for m in messages if m.role == MessageRole.USER)
    if user_turns > DEEP_CONVERSATION_TURNS:
        score += 1
        factors.append("deep_conversation")

    if CODE_KEYWORD_PATTERN.search(text):
        score += 2
        factors.append("code")

    if TECHNICAL_PATTERN.search(text):
        score += 2
        factors.append("technical")

    if CONTENT_GENERATION_PATTERN.search(text):
        score += 1
        factors.append("content_generation")

    if text.count("?") > 1:
        score += 1
        factors.append("multiple_questions")

    return ComplexityAssessment(_bucket(score), score, factors)


def classify_complexity(messages: Sequence[ConversationMessage]) -> QueryComplexity:
    return assess_complexity(messages).complexity
