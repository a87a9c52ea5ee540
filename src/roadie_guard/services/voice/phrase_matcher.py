"""
Trigger Phrase Matching

Recognizes emergency utterances from the speech recognition feed:
- Exact lookup against the multilingual phrase catalog
- Normalized Levenshtein fallback to absorb recognition noise and
  transliteration variants
- Atomic catalog replacement so matching never sees a partial update
"""

import logging
import unicodedata
from typing import Dict, Iterable, Optional, Tuple

from roadie_guard.core.exceptions import ConfigurationError
from roadie_guard.models import DEFAULT_TRIGGER_PHRASES, PhraseMatch, TriggerPhrase


DEFAULT_MATCH_THRESHOLD = 0.2


def normalize_utterance(text: str) -> str:
    """Lowercase, trim and collapse whitespace"""
    if not text:
        return ""
    text = unicodedata.normalize('NFC', text)
    return " ".join(text.lower().split())


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance with unit cost insert/delete/substitute"""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    # Keep the shorter string in the inner loop
    if len(a) < len(b):
        a, b = b, a

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(
                previous[j] + 1,         # deletion
                current[j - 1] + 1,      # insertion
                previous[j - 1] + cost   # substitution
            ))
        previous = current
    return previous[-1]


class PhraseCatalog:
    """Immutable snapshot of the configured trigger phrases"""

    def __init__(self, phrases: Iterable[TriggerPhrase]):
        entries = []
        exact: Dict[str, TriggerPhrase] = {}

        for phrase in phrases:
            if not isinstance(phrase, TriggerPhrase):
                raise ConfigurationError(f"Not a trigger phrase: {phrase!r}")
            normalized = normalize_utterance(phrase.phrase)
            if not normalized:
                raise ConfigurationError("Trigger phrase must not be empty")
            entries.append((normalized, phrase))
            # First inserted wins for duplicate spellings
            exact.setdefault(normalized, phrase)

        self._entries: Tuple[Tuple[str, TriggerPhrase], ...] = tuple(entries)
        self._exact = exact

    @property
    def phrases(self) -> Tuple[TriggerPhrase, ...]:
        return tuple(phrase for _, phrase in self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def lookup(self, normalized: str) -> Optional[TriggerPhrase]:
        return self._exact.get(normalized)

    def entries(self) -> Tuple[Tuple[str, TriggerPhrase], ...]:
        return self._entries


class PhraseMatcher:
    """Fuzzy matcher for multilingual emergency phrases"""

    def __init__(self, phrases: Optional[Iterable[TriggerPhrase]] = None,
                 threshold: float = DEFAULT_MATCH_THRESHOLD):
        if not 0 < threshold <= 1:
            raise ConfigurationError(f"Match threshold must be within (0, 1], got {threshold}")
        self.logger = logging.getLogger(__name__)
        self.threshold = threshold
        self._catalog = PhraseCatalog(DEFAULT_TRIGGER_PHRASES if phrases is None else phrases)

    @property
    def catalog(self) -> PhraseCatalog:
        return self._catalog

    def replace_catalog(self, phrases: Iterable[TriggerPhrase]) -> None:
        """
        Swap in a new phrase catalog

        Args:
            phrases: Complete replacement catalog

        Raises:
            ConfigurationError: If any entry is malformed; the current
                catalog stays in place
        """
        new_catalog = PhraseCatalog(list(phrases))
        self._catalog = new_catalog
        self.logger.info(f"Installed phrase catalog with {len(new_catalog)} phrases")

    def match(self, utterance: str) -> Optional[TriggerPhrase]:
        """
        Match an utterance against the catalog

        Args:
            utterance: Candidate phrase from speech recognition

        Returns:
            The matched TriggerPhrase, or None
        """
        result = self.match_with_score(utterance)
        return result.phrase if result else None

    def match_with_score(self, utterance: str) -> Optional[PhraseMatch]:
        """Match an utterance and report how close the match was"""
        if not isinstance(utterance, str):
            return None
        normalized = normalize_utterance(utterance)
        if not normalized:
            return None

        # Read the catalog once so a concurrent replacement can't split the scan
        catalog = self._catalog

        exact = catalog.lookup(normalized)
        if exact is not None:
            return PhraseMatch(phrase=exact, distance=0, normalized_distance=0.0)

        best: Optional[PhraseMatch] = None
        for candidate, phrase in catalog.entries():
            distance = levenshtein_distance(normalized, candidate)
            normalized_distance = distance / max(len(normalized), len(candidate))
            # Strict comparison keeps the earliest entry on ties
            if best is None or normalized_distance < best.normalized_distance:
                best = PhraseMatch(phrase=phrase, distance=distance,
                                   normalized_distance=normalized_distance)

        if best is not None and best.normalized_distance < self.threshold:
            self.logger.debug(
                f"Fuzzy phrase match '{normalized}' -> '{best.phrase.phrase}' "
                f"(distance={best.distance}, normalized={best.normalized_distance:.3f})"
            )
            return best
        return None
