"""Lexicon-based reading of the human player's table talk.

Nothing here is meant to be clever: a handful of weighted cue words produce a
sentiment score in [-1, 1] and a probability that the message is covering a
bluff (overclaiming, protesting too much, deflecting).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

__all__ = ["NEUTRAL_CHAT", "BluffIndicators", "ChatAnalysis", "Sentiment", "analyze_chat"]

_TOKEN = re.compile(r"[a-z']+")

_POSITIVE = {
    "good": 0.5,
    "great": 0.7,
    "nice": 0.5,
    "easy": 0.6,
    "win": 0.6,
    "winning": 0.6,
    "lucky": 0.4,
    "haha": 0.4,
    "lol": 0.3,
    "confident": 0.6,
}
_NEGATIVE = {
    "bad": -0.5,
    "ugh": -0.6,
    "terrible": -0.8,
    "lose": -0.6,
    "losing": -0.6,
    "damn": -0.6,
    "unlucky": -0.5,
    "hate": -0.8,
    "worried": -0.6,
    "nervous": -0.7,
}
_EMOTIONS = {
    "confident": {"easy", "confident", "win", "winning", "great"},
    "anxious": {"nervous", "worried", "hmm", "uh", "um"},
    "frustrated": {"ugh", "damn", "hate", "terrible", "bad"},
    "playful": {"haha", "lol", "lucky", "nice"},
}
# Phrases that tend to accompany an overclaim.
_BLUFF_CUES = {
    "trust me": 0.35,
    "honestly": 0.3,
    "i swear": 0.35,
    "for real": 0.25,
    "totally": 0.2,
    "definitely": 0.2,
    "obviously": 0.2,
    "no way": 0.15,
    "believe me": 0.35,
    "don't challenge": 0.4,
    "wouldn't lie": 0.4,
}


@dataclass(frozen=True)
class Sentiment:
    score: float = 0.0
    confidence: float = 0.0
    dominant_emotion: str = "neutral"


@dataclass(frozen=True)
class BluffIndicators:
    probability: float = 0.0
    confidence: float = 0.0


@dataclass(frozen=True)
class ChatAnalysis:
    sentiment: Sentiment = field(default_factory=Sentiment)
    bluff_indicators: BluffIndicators = field(default_factory=BluffIndicators)
    key_phrases: tuple[str, ...] = ()


NEUTRAL_CHAT = ChatAnalysis()


def analyze_chat(text: str | None) -> ChatAnalysis:
    if not text or not text.strip():
        return NEUTRAL_CHAT
    lowered = text.lower()
    tokens = _TOKEN.findall(lowered)
    if not tokens:
        return NEUTRAL_CHAT

    weights = [_POSITIVE.get(tok, 0.0) + _NEGATIVE.get(tok, 0.0) for tok in tokens]
    hits = [w for w in weights if w]
    score = max(-1.0, min(1.0, sum(hits))) if hits else 0.0
    sentiment_conf = min(1.0, len(hits) / max(3, len(tokens)) * 2)

    token_set = set(tokens)
    emotion_hits = {name: len(words & token_set) for name, words in _EMOTIONS.items()}
    dominant = max(emotion_hits, key=lambda name: emotion_hits[name])
    if emotion_hits[dominant] == 0:
        dominant = "neutral"

    phrases = tuple(phrase for phrase in _BLUFF_CUES if phrase in lowered)
    bluff = sum(_BLUFF_CUES[phrase] for phrase in phrases)
    if "!" in text:
        bluff += 0.05 * min(3, text.count("!"))
    if dominant == "anxious":
        bluff += 0.15
    probability = max(0.0, min(1.0, bluff))
    bluff_conf = min(1.0, 0.25 * len(phrases) + (0.2 if dominant != "neutral" else 0.0))

    return ChatAnalysis(
        sentiment=Sentiment(score=score, confidence=sentiment_conf, dominant_emotion=dominant),
        bluff_indicators=BluffIndicators(probability=probability, confidence=bluff_conf),
        key_phrases=phrases,
    )
