"""
Completion heuristic for recognized speech.

Estimates whether accumulated text is a finished thought. Pure: the result
depends only on the text passed in. Rules are checked in order, first match wins.
"""

import re

from talkturn.models import CompletionReason, CompletionResult

# Full-width forms included for recognizers that emit CJK punctuation
TERMINAL_PUNCTUATION = (".", "!", "?", "。", "！", "？")

CLOSING_PHRASES = [
    "you know",
    "i think",
    "i guess",
    "i mean",
    "right",
    "okay",
    "you see",
    "i suppose",
    "isn't it",
    "aren't they",
    "don't you think",
    "what do you think",
    "that's all",
    "i'm done",
    "i'm finished",
    "that's it",
    "thank you",
    "thanks",
    "please",
    "yes",
    "no",
    "maybe",
    "i agree",
    "i disagree",
    "exactly",
    "absolutely",
    "definitely",
    "of course",
    "sure",
]

INTERROGATIVES = {
    "what", "where", "when", "who", "why", "how", "which", "whose", "whom",
}

TRAILING_CONJUNCTIONS = {
    "and", "but", "or", "so", "because", "if", "when", "while",
}

# Auxiliaries, articles, prepositions and the infinitive marker
DANGLING_WORDS = {
    "is", "are", "was", "were", "have", "has", "had", "will", "would",
    "should", "could", "might", "may",
    "the", "a", "an",
    "to", "of", "in", "on", "at", "for", "with", "from",
}

_CLOSING_PATTERN = re.compile(
    r"(?:^|\s)(?:" + "|".join(re.escape(p) for p in CLOSING_PHRASES) + r")$"
)


class CompletionHeuristic:
    """Rule-based end-of-utterance estimate."""

    def evaluate(self, text: str) -> CompletionResult:
        """
        Estimate whether text is a complete utterance.

        Args:
            text: Accumulated recognized text

        Returns:
            CompletionResult with completion flag, confidence and the rule that fired
        """
        stripped = (text or "").strip()
        if not stripped:
            return CompletionResult(is_complete=False, confidence=0.0, reason=CompletionReason.EMPTY)

        if stripped.endswith(TERMINAL_PUNCTUATION):
            return CompletionResult(is_complete=True, confidence=0.95, reason=CompletionReason.PUNCTUATION)

        lowered = stripped.lower()
        if _CLOSING_PATTERN.search(lowered):
            return CompletionResult(is_complete=True, confidence=0.8, reason=CompletionReason.PHRASE_ENDING)

        words = lowered.split()
        word_count = len(words)

        if word_count < 3:
            return CompletionResult(is_complete=True, confidence=0.7, reason=CompletionReason.SHORT_UTTERANCE)

        if words[0] in INTERROGATIVES and word_count < 5:
            return CompletionResult(
                is_complete=False, confidence=0.7, reason=CompletionReason.INCOMPLETE_QUESTION
            )

        last_word = words[-1]
        if last_word in TRAILING_CONJUNCTIONS:
            return CompletionResult(
                is_complete=False, confidence=0.8, reason=CompletionReason.TRAILING_CONJUNCTION
            )

        if last_word in DANGLING_WORDS:
            return CompletionResult(
                is_complete=False, confidence=0.75, reason=CompletionReason.INCOMPLETE_PHRASE
            )

        if word_count > 10:
            return CompletionResult(is_complete=True, confidence=0.6, reason=CompletionReason.LONG_UTTERANCE)

        return CompletionResult(is_complete=False, confidence=0.5, reason=CompletionReason.UNCERTAIN)

    def is_likely_complete(self, text: str) -> bool:
        return self.evaluate(text).is_complete


def word_count(text: str) -> int:
    """Whitespace word count used by the timing policy."""
    return len((text or "").split())
