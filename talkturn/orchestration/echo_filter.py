"""
Echo filter for the system's own synthesized speech.

The microphone re-captures whatever the speakers play. A transcript that matches
a recent system utterance, a known system phrase, or a canonical system speech
pattern is treated as echo and must never reach the response service.

False positives drop one real user utterance; false negatives start a
self-conversation loop. Ambiguous cases therefore resolve to "echo".
"""

import logging
import re
from collections import deque
from typing import Deque, List

logger = logging.getLogger(__name__)

MAX_RECENT_UTTERANCES = 10
MIN_CANDIDATE_LENGTH = 3
PREFIX_MATCH_LENGTH = 20
MIN_FRAGMENT_LENGTH = 10


def _static_signatures(assistant_name: str) -> List[str]:
    name = assistant_name.lower()
    return [
        # Greetings and introductions
        f"hello i'm {name}",
        f"hello i am {name}",
        f"hi i'm {name}",
        f"hi i am {name}",
        "friendly english conversation partner",
        "english conversation partner",
        "conversation partner",
        # Filler acknowledgements
        "what would you like to talk about",
        "what do you want to talk about",
        "how can i help you",
        "i'm here to help",
        "i am here to help",
        "let's practice english",
        "feel free to ask",
        "please feel free",
        "that's a great question",
        "that's interesting",
        "let me help you",
        "i understand",
        "i see",
        # Error apologies
        "i'm sorry",
        "i am sorry",
        "sorry i didn't",
        "sorry i did not",
        "sorry, i encountered an error",
        "could you please repeat",
        "please try again",
        "let me try again",
        # Transitions
        "speaking of",
        "by the way",
        "that reminds me",
        "furthermore",
        "additionally",
        "in other words",
        # Closings
        "is there anything else",
        "anything else i can help",
        "do you have any other questions",
        "feel free to ask more",
    ]


_SYSTEM_SPEECH_PATTERNS = [
    re.compile(r"^(hello|hi|hey) (i'm|i am|my name is)"),
    re.compile(r"^(sure|certainly|of course|absolutely)[,.]? (i'd|i would|let me)"),
    re.compile(r"^i (can help|understand|see|appreciate|hear)"),
    re.compile(r"^that's (a great|an excellent|interesting|a good)"),
    re.compile(r"^thank you for (sharing|asking|telling)"),
]


class EchoFilter:
    """
    Classifies recognized text as system echo or human speech.

    Keeps a ring buffer of the last MAX_RECENT_UTTERANCES system utterances,
    most recent first.
    """

    def __init__(self, assistant_name: str = "talktime", capacity: int = MAX_RECENT_UTTERANCES):
        self._recent: Deque[str] = deque(maxlen=capacity)
        self._signatures = _static_signatures(assistant_name)

    @property
    def recent_utterances(self) -> List[str]:
        """Recorded system utterances, most recent first."""
        return list(self._recent)

    def record_system_utterance(self, text: str) -> None:
        """
        Remember a system utterance so its echo can be recognized.

        Args:
            text: Reply text about to be synthesized
        """
        normalized = (text or "").lower().strip()
        if not normalized:
            return
        # appendleft on a bounded deque evicts the oldest entry from the right
        self._recent.appendleft(normalized)
        logger.debug(f"Recorded system utterance ({len(self._recent)} buffered): {normalized[:40]}")

    def is_echo(self, candidate: str) -> bool:
        """
        Check whether a candidate transcript is the system's own voice.

        Args:
            candidate: Resolved transcript of a listening window

        Returns:
            True if the transcript should be discarded as echo
        """
        text = (candidate or "").lower().strip()

        if len(text) < MIN_CANDIDATE_LENGTH:
            logger.debug("Echo check: candidate too short")
            return True

        for phrase in self._signatures:
            if phrase in text:
                logger.info(f"Echo check: matched system phrase '{phrase}'")
                return True

        for recent in self._recent:
            if text == recent:
                logger.info("Echo check: exact match with a recent system utterance")
                return True
            if len(recent) > PREFIX_MATCH_LENGTH and recent[:PREFIX_MATCH_LENGTH] in text:
                logger.info("Echo check: transcript contains the opening of a recent system utterance")
                return True
            if len(text) > MIN_FRAGMENT_LENGTH and text in recent:
                logger.info("Echo check: transcript is a fragment of a recent system utterance")
                return True

        for pattern in _SYSTEM_SPEECH_PATTERNS:
            if pattern.search(text):
                logger.info(f"Echo check: matched system speech pattern {pattern.pattern}")
                return True

        return False

    def clear(self) -> None:
        """Forget recorded system utterances (static signatures stay)."""
        self._recent.clear()

    @staticmethod
    def similarity(text1: str, text2: str) -> float:
        """
        Word-overlap similarity between two texts.

        Returns:
            1.0 for identical text, 0.8 when one contains the other, Jaccard index otherwise
        """
        s1 = (text1 or "").lower().strip()
        s2 = (text2 or "").lower().strip()

        if s1 == s2:
            return 1.0
        if s1 in s2 or s2 in s1:
            return 0.8

        words1 = set(s1.split())
        words2 = set(s2.split())
        union = words1 | words2
        if not union:
            return 0.0
        return len(words1 & words2) / len(union)

    def __repr__(self) -> str:
        return f"EchoFilter(recent={len(self._recent)}, signatures={len(self._signatures)})"
