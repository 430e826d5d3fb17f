"""
Status-Text Interpreter

Classifies free-text firmware notices into the intents the state machine
understands. Matching is case-insensitive against the configurable phrase
table (``status_phrases`` in config.yaml), checked in this order:

1. success phrases (unless a success negation such as "unsuccessful" is present)
2. failure phrases (unless a negation phrase is present)
3. position requests ("place" + ordered position patterns)
4. progress percentage
5. anything else is unrelated
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .config_loader import StatusPhrasesConfig

logger = logging.getLogger(__name__)


class IntentKind(Enum):
    POSITION_REQUEST = "position_request"
    CALIBRATION_SUCCESS = "calibration_success"
    CALIBRATION_FAILURE = "calibration_failure"
    PROGRESS = "progress"
    UNRELATED = "unrelated"


@dataclass(frozen=True)
class NoticeIntent:
    """Structured meaning of one status-text notice."""
    kind: IntentKind
    position: Optional[int] = None
    percent: Optional[int] = None

    def describe(self) -> str:
        if self.kind == IntentKind.POSITION_REQUEST:
            return f"{self.kind.value}({self.position})"
        if self.kind == IntentKind.PROGRESS:
            return f"{self.kind.value}({self.percent}%)"
        return self.kind.value


UNRELATED = NoticeIntent(IntentKind.UNRELATED)


class StatusTextInterpreter:
    """Phrase-table classifier for firmware status-text."""

    def __init__(self, phrases: Optional[StatusPhrasesConfig] = None):
        self.phrases = phrases or StatusPhrasesConfig()
        self._success = [p.lower() for p in self.phrases.success]
        self._success_negations = [p.lower() for p in self.phrases.success_negations]
        self._failure = [p.lower() for p in self.phrases.failure]
        self._negations = [p.lower() for p in self.phrases.negations]
        self._keyword = self.phrases.request_keyword.lower()
        self._progress = re.compile(self.phrases.progress_pattern)

    def classify(self, severity: int, text: str) -> NoticeIntent:
        """
        Classify one notice.

        Severity is carried for diagnostics only; firmware sends the same
        wording at different severities across releases.
        """
        lowered = (text or "").lower().strip()
        if not lowered:
            return UNRELATED

        if any(phrase in lowered for phrase in self._success):
            if not any(neg in lowered for neg in self._success_negations):
                return NoticeIntent(IntentKind.CALIBRATION_SUCCESS)

        if any(phrase in lowered for phrase in self._failure):
            if not any(neg in lowered for neg in self._negations):
                return NoticeIntent(IntentKind.CALIBRATION_FAILURE)

        position = self._match_position(lowered)
        if position is not None:
            return NoticeIntent(IntentKind.POSITION_REQUEST, position=position)

        match = self._progress.search(lowered)
        if match:
            percent = int(match.group(1))
            if 0 <= percent <= 100:
                return NoticeIntent(IntentKind.PROGRESS, percent=percent)
            logger.debug(f"Ignoring out-of-range progress {percent}% in {text!r}")

        return UNRELATED

    def _match_position(self, lowered: str) -> Optional[int]:
        if self._keyword not in lowered:
            return None
        for pattern in self.phrases.positions:
            if all(word.lower() in lowered for word in pattern.all_of) and not any(
                word.lower() in lowered for word in pattern.none_of
            ):
                return pattern.position
        return None
