"""Heuristic classification of sports events from free-text summaries."""
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from bs4 import BeautifulSoup

from processor.models import Classification

logger = logging.getLogger(__name__)

GAME = 'Game'
PRACTICE = 'Practice'
TOURNAMENT = 'Tournament'
SCRIMMAGE = 'Scrimmage'
EVENT = 'Event'


@dataclass(frozen=True)
class ClassificationRule:
    """Summary pattern mapped to an event kind.

    ``opponent_group`` names the capture group holding the opponent, or
    None when the rule only decides the kind.
    """
    name: str
    pattern: re.Pattern
    kind: str
    opponent_group: Optional[int] = None

    def apply(self, summary: str) -> Optional[Tuple[str, Optional[str]]]:
        match = self.pattern.search(summary)
        if not match:
            return None
        opponent = None
        if self.opponent_group is not None:
            opponent = match.group(self.opponent_group).strip() or None
        return self.kind, opponent


# Evaluated in order; the first matching rule wins.
DEFAULT_RULES: List[ClassificationRule] = [
    ClassificationRule(
        'versus',
        re.compile(r'\b(vs\.?|versus)\s+([^,]+)', re.IGNORECASE),
        GAME,
        opponent_group=2
    ),
    ClassificationRule(
        'at',
        re.compile(r'\b([^@]+?)\s+at\s+([^,]+)', re.IGNORECASE),
        GAME,
        opponent_group=2
    ),
    ClassificationRule(
        'home_away',
        re.compile(r'\((?:home|away)\)\s*(?:vs\.?|versus)\s+([^,]+)', re.IGNORECASE),
        GAME,
        opponent_group=1
    ),
    ClassificationRule('game_keyword', re.compile(r'game|match', re.IGNORECASE), GAME),
    ClassificationRule('practice', re.compile(r'practice', re.IGNORECASE), PRACTICE),
    ClassificationRule('tournament', re.compile(r'tournament', re.IGNORECASE), TOURNAMENT),
    ClassificationRule('scrimmage', re.compile(r'scrimmage', re.IGNORECASE), SCRIMMAGE),
]


class EventClassifier:
    """Derives event kind, opponent, title and description for an event."""

    def __init__(self, rules: Optional[List[ClassificationRule]] = None):
        self.rules = list(rules) if rules is not None else list(DEFAULT_RULES)

    def classify(self, summary: str, description: str = '') -> Classification:
        """
        Classify an event from its summary and description.

        Never raises; summaries no rule understands become a generic Event.

        Args:
            summary: SUMMARY text
            description: DESCRIPTION text (may contain HTML)

        Returns:
            Classification
        """
        summary = (summary or '').strip()
        kind, opponent, rule_name = EVENT, None, None

        for rule in self.rules:
            result = rule.apply(summary)
            if result is not None:
                kind, opponent = result
                rule_name = rule.name
                break
        else:
            logger.debug(f"No classification rule matched '{summary}', using {EVENT}")

        title = f"{GAME} vs {opponent}" if kind == GAME and opponent else kind

        return Classification(
            kind=kind,
            opponent=opponent,
            title=title,
            description=self.build_description(summary, description, opponent),
            rule=rule_name
        )

    def build_description(
        self,
        summary: str,
        description: str,
        opponent: Optional[str]
    ) -> str:
        """
        Combine the source description with the summary and opponent.

        The summary is prepended unless already contained; an
        ``Opponent:`` line is appended unless the opponent is already
        mentioned.
        """
        text = html_to_text(description)

        if summary and summary not in text:
            text = f"{summary}\n\n{text}" if text else summary

        if opponent and 'opponent' not in text.lower() and opponent not in text:
            text = f"{text}\n\nOpponent: {opponent}" if text else f"Opponent: {opponent}"

        return text


def html_to_text(value: str) -> str:
    """Flatten HTML markup some feeds put in DESCRIPTION to plain text."""
    if not value:
        return ''
    if '<' not in value or '>' not in value:
        return value.strip()
    soup = BeautifulSoup(value, 'html.parser')
    return soup.get_text('\n', strip=True)
