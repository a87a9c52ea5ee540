"""
Voice trigger services
"""

from .phrase_matcher import PhraseMatcher, PhraseCatalog, levenshtein_distance, normalize_utterance

__all__ = [
    'PhraseMatcher',
    'PhraseCatalog',
    'levenshtein_distance',
    'normalize_utterance'
]
