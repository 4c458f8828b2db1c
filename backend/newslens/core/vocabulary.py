"""
Seed vocabulary of canonical topics.

Structure:
- Family (top level): broad category such as "politics" or "technology"
- Canonical topic: a controlled-vocabulary name belonging to one family
- Aliases: surface forms that should resolve to the canonical name
- Prompt keywords: substrings that suggest the topic in free-text interests

The canonicalizer grows the vocabulary on its own; this table only gives a
fresh install sensible families and lets profile extraction work offline.
"""

from dataclasses import dataclass
from typing import Iterator

from newslens.models.domain import InterestTopic


@dataclass(frozen=True)
class SeedTopic:
    """One canonical topic of the seed vocabulary."""

    canonical: str
    family: str | None = None
    aliases: tuple[str, ...] = ()
    prompt_keywords: tuple[str, ...] = ()
    prompt_weight: float = 0.6

    @property
    def parent(self) -> str:
        return self.family or self.canonical

    def matches_prompt(self, text: str) -> bool:
        """True if any prompt keyword occurs in lowercased `text`."""
        return any(kw in text for kw in self.prompt_keywords)


SEED_TOPICS: tuple[SeedTopic, ...] = (
    # Politics
    SeedTopic("politics", aliases=("политика", "government"), prompt_keywords=("politic", "политик")),
    SeedTopic("elections", "politics", aliases=("выборы", "election", "voting"), prompt_keywords=("election", "выбор")),
    SeedTopic(
        "vladimir putin",
        "politics",
        aliases=("путин", "putin", "владимир путин"),
        prompt_keywords=("putin", "путин", "кремл", "kremlin"),
        prompt_weight=0.7,
    ),
    SeedTopic("diplomacy", "politics", aliases=("дипломатия", "foreign policy"), prompt_keywords=("diplomac", "диплом")),
    SeedTopic("geopolitics", "politics", aliases=("геополитика",), prompt_keywords=("geopolit", "геополит")),
    # Economy & finance
    SeedTopic("economy", aliases=("экономика", "economics"), prompt_keywords=("econom", "эконом")),
    SeedTopic("finance", "economy", aliases=("финансы",), prompt_keywords=("financ", "финанс")),
    SeedTopic("markets", "economy", aliases=("stock market", "рынки", "биржа"), prompt_keywords=("stock", "бирж", "market")),
    SeedTopic("inflation", "economy", aliases=("инфляция", "prices"), prompt_keywords=("inflation", "инфляц")),
    SeedTopic("cryptocurrency", "economy", aliases=("crypto", "bitcoin", "криптовалюта"), prompt_keywords=("crypto", "крипт", "bitcoin")),
    SeedTopic("energy", "economy", aliases=("энергетика", "oil", "gas"), prompt_keywords=("energy", "энергет", "нефт")),
    # Technology
    SeedTopic("technology", aliases=("технологии", "tech", "it"), prompt_keywords=("tech", "тех", "айти")),
    SeedTopic(
        "artificial intelligence",
        "technology",
        aliases=("ai", "ии", "искусственный интеллект", "machine learning"),
        prompt_keywords=("artificial intelligence", "нейросет", "machine learning", "искусственн"),
        prompt_weight=0.7,
    ),
    SeedTopic("cybersecurity", "technology", aliases=("кибербезопасность", "hacking"), prompt_keywords=("security", "кибербез", "hack")),
    SeedTopic("smartphones", "technology", aliases=("смартфоны", "mobile phones"), prompt_keywords=("smartphone", "смартфон", "iphone")),
    SeedTopic("space", "science", aliases=("космос", "space exploration"), prompt_keywords=("space", "космос", "nasa")),
    # Science & health
    SeedTopic("science", aliases=("наука",), prompt_keywords=("scien", "наук"), prompt_weight=0.55),
    SeedTopic("climate", "science", aliases=("климат", "climate change", "global warming"), prompt_keywords=("climat", "климат")),
    SeedTopic("health", aliases=("здоровье", "medicine", "медицина"), prompt_keywords=("health", "здоров", "медицин")),
    SeedTopic("pandemics", "health", aliases=("pandemic", "эпидемия", "covid"), prompt_keywords=("pandemic", "эпидем", "covid")),
    # Games & esports
    SeedTopic("games", aliases=("игры", "video games", "gaming", "видеоигры"), prompt_keywords=("game", "игр", "гейминг"), prompt_weight=0.7),
    SeedTopic("esports", "games", aliases=("киберспорт", "e-sports"), prompt_keywords=("esports", "e-sports", "киберспорт"), prompt_weight=0.7),
    # Sport
    SeedTopic("sport", aliases=("спорт", "sports"), prompt_keywords=("sport", "спорт")),
    SeedTopic("football", "sport", aliases=("футбол", "soccer"), prompt_keywords=("football", "футбол", "soccer")),
    SeedTopic("hockey", "sport", aliases=("хоккей",), prompt_keywords=("hockey", "хоккей")),
    SeedTopic("tennis", "sport", aliases=("теннис",), prompt_keywords=("tennis", "теннис")),
    # Culture
    SeedTopic("culture", aliases=("культура",), prompt_keywords=("culture", "культур")),
    SeedTopic("cinema", "culture", aliases=("кино", "movies", "film", "фильмы"), prompt_keywords=("movie", "film", "кино", "фильм", "сериал"), prompt_weight=0.55),
    SeedTopic("music", "culture", aliases=("музыка",), prompt_keywords=("music", "музык"), prompt_weight=0.55),
    SeedTopic("books", "culture", aliases=("книги", "literature", "литература"), prompt_keywords=("book", "книг", "литератур")),
    # Society
    SeedTopic("society", aliases=("общество",), prompt_keywords=("society", "обществ")),
    SeedTopic("education", "society", aliases=("образование", "schools"), prompt_keywords=("educat", "образован")),
    SeedTopic("crime", "society", aliases=("преступность", "криминал"), prompt_keywords=("crime", "криминал", "преступ")),
    SeedTopic("transport", "society", aliases=("транспорт",), prompt_keywords=("transport", "транспорт")),
    # World
    SeedTopic("war", "world", aliases=("война", "armed conflict", "military"), prompt_keywords=("warfare", "войн", "military")),
    SeedTopic("world", aliases=("мир", "international", "world news"), prompt_keywords=("world news", "международ")),
)


def iter_seed_topics() -> Iterator[SeedTopic]:
    """Yield families before their children."""
    families = {t.family for t in SEED_TOPICS if t.family}
    yield from (t for t in SEED_TOPICS if t.canonical in families or t.family is None)
    yield from (t for t in SEED_TOPICS if not (t.canonical in families or t.family is None))


def heuristic_topics_from_prompt(text: str | None, max_topics: int = 8) -> list[InterestTopic]:
    """
    Keyword-based interest topics for a free-text prompt.

    Used when the LLM is unavailable or returns no topics. Order follows the
    seed table; each canonical appears at most once.
    """
    s = (text or "").lower()
    if not s.strip():
        return []

    topics: list[InterestTopic] = []
    seen: set[str] = set()

    def push(tag: str, weight: float, family: str) -> None:
        if tag not in seen:
            seen.add(tag)
            topics.append(InterestTopic(tag=tag, weight=weight, family=family))

    for seed in SEED_TOPICS:
        if seed.matches_prompt(s):
            push(seed.canonical, seed.prompt_weight, seed.parent)
            if seed.family:
                push(seed.family, min(seed.prompt_weight, 0.6), seed.family)
        if len(topics) >= max_topics:
            break
    return topics[:max_topics]
