"""
Trigger phrase data models

Defines the catalog entries the phrase matcher recognizes.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict


class Language(Enum):
    """Languages the default catalog ships phrases for"""
    ENGLISH = "english"
    SPANISH = "spanish"
    ARABIC = "arabic"
    FRENCH = "french"
    GERMAN = "german"
    OTHER = "other"


class Protocol(Enum):
    """Response protocol a phrase starts"""
    SOS = "sos"                        # Full alert with countdown
    SILENT = "silent"                  # Stealth alert, no countdown
    LOCATION_ONLY = "location_only"    # Share location with contacts

    @classmethod
    def parse(cls, value: str) -> 'Protocol':
        """Parse a protocol name, accepting the hyphenated spelling"""
        return cls(value.strip().lower().replace('-', '_'))


@dataclass(frozen=True)
class TriggerPhrase:
    """Immutable catalog entry"""
    phrase: str
    language: Language = Language.ENGLISH
    protocol: Protocol = Protocol.SOS

    def to_dict(self) -> Dict[str, Any]:
        """Convert phrase to dictionary"""
        return {
            'phrase': self.phrase,
            'language': self.language.value,
            'protocol': self.protocol.value
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TriggerPhrase':
        """Create phrase from dictionary"""
        language = data.get('language', Language.ENGLISH.value)
        try:
            parsed_language = Language(language)
        except ValueError:
            parsed_language = Language.OTHER
        return cls(
            phrase=data['phrase'],
            language=parsed_language,
            protocol=Protocol.parse(data.get('protocol', Protocol.SOS.value))
        )


@dataclass(frozen=True)
class PhraseMatch:
    """Result of a successful phrase match"""
    phrase: TriggerPhrase
    distance: int
    normalized_distance: float

    @property
    def exact(self) -> bool:
        return self.distance == 0


# Multilingual phrases the application ships with
DEFAULT_TRIGGER_PHRASES = (
    TriggerPhrase('roadie help me', Language.ENGLISH, Protocol.SOS),
    TriggerPhrase('please stop', Language.ENGLISH, Protocol.SILENT),
    TriggerPhrase('what are you doing', Language.ENGLISH, Protocol.LOCATION_ONLY),
    TriggerPhrase('rodie ayudame', Language.SPANISH, Protocol.SOS),
    TriggerPhrase('por favor para', Language.SPANISH, Protocol.SILENT),
    TriggerPhrase('que haces', Language.SPANISH, Protocol.LOCATION_ONLY),
    TriggerPhrase('rudy saedni', Language.ARABIC, Protocol.SOS),
    TriggerPhrase('rajaan tawqaf', Language.ARABIC, Protocol.SILENT),
    TriggerPhrase('madha tafal', Language.ARABIC, Protocol.LOCATION_ONLY),
    TriggerPhrase('رودي ساعدني', Language.ARABIC, Protocol.SOS),
    TriggerPhrase('رجاءً توقف', Language.ARABIC, Protocol.SILENT),
    TriggerPhrase('ماذا تفعل', Language.ARABIC, Protocol.LOCATION_ONLY),
    TriggerPhrase('roadie aide moi', Language.FRENCH, Protocol.SOS),
    TriggerPhrase("s il vous plaît arrêtez", Language.FRENCH, Protocol.SILENT),
    TriggerPhrase('que faites-vous', Language.FRENCH, Protocol.LOCATION_ONLY),
    TriggerPhrase('roadie hilf mir', Language.GERMAN, Protocol.SOS),
    TriggerPhrase('bitte aufhören', Language.GERMAN, Protocol.SILENT),
    TriggerPhrase('was machst du', Language.GERMAN, Protocol.LOCATION_ONLY),
)
