"""Topic lexicon: keyword rules that name and tag clusters."""

from functools import lru_cache
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

DEFAULT_LEXICON_PATH = Path(__file__).parent.parent / "data" / "lexicon.yaml"


class Topic(BaseModel):
    key: str
    title: str
    titles: dict[str, str] = Field(default_factory=dict)
    keywords: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)

    def title_for(self, language: str | None) -> str:
        """Localized title, falling back to the base language tag then ``title``."""
        if language:
            lang = language.lower()
            if lang in self.titles:
                return self.titles[lang]
            base = lang.split("-")[0]
            if base in self.titles:
                return self.titles[base]
        return self.title

    def hits(self, text: str) -> int:
        lowered = text.lower()
        return sum(1 for kw in self.keywords if kw.lower() in lowered)


class TopicLexicon:
    """Ordered topic rules; the first listed topic wins ties."""

    def __init__(self, topics: list[Topic] | None = None) -> None:
        self.topics = topics or []

    def match(self, text: str) -> Topic | None:
        """Return the topic with the most keyword hits in ``text``, if any."""
        best: Topic | None = None
        best_hits = 0
        for topic in self.topics:
            hits = topic.hits(text)
            if hits > best_hits:
                best, best_hits = topic, hits
        return best

    def __len__(self) -> int:
        return len(self.topics)


@lru_cache(maxsize=8)
def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_lexicon(path: Path | None = None) -> TopicLexicon:
    """Load a topic lexicon from YAML (the bundled one by default)."""
    data = _load_yaml(Path(path) if path else DEFAULT_LEXICON_PATH)
    return TopicLexicon([Topic(**entry) for entry in data.get("topics", [])])
