"""Query enhancement with domain synonyms."""

from typing import Mapping, Optional

DEFAULT_SYNONYMS: dict[str, list[str]] = {
    "emergency stop": ["e-stop", "estop"],
    "push button": ["pushbutton", "button"],
    "color": ["colour"],
    "ce marking": ["ce mark"],
    "risk assessment": ["hazard analysis"],
}


class QueryEnhancer:
    """Append domain synonyms to a query before it is embedded.

    The enhanced query is only used for the query embedding; the user's
    question is passed to the language model unchanged. Enhancing an
    already enhanced query appends the synonyms again.
    """

    def __init__(
        self,
        synonyms: Optional[Mapping[str, list[str]]] = None,
        max_synonyms: int = 2,
    ):
        """Initialize the enhancer.

        Args:
            synonyms: Phrase to alternates mapping (lowercase phrases)
            max_synonyms: Maximum alternates appended per matched phrase
        """
        self.synonyms = dict(DEFAULT_SYNONYMS if synonyms is None else synonyms)
        self.max_synonyms = max_synonyms

    def enhance(self, query: str) -> str:
        enhanced = query.lower()

        for phrase, alternates in self.synonyms.items():
            if phrase in enhanced:
                enhanced += " " + " ".join(alternates[:self.max_synonyms])

        return enhanced
