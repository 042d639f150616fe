"""Built-in dilemma catalog and dilemma selection strategies."""

import random
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field

from .errors import InvalidDilemmaIndex


class DilemmaOption(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    impact: dict[str, int]
    consequences: list[str] = Field(default_factory=list)


class Dilemma(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    text: str
    category: str
    option_a: DilemmaOption
    option_b: DilemmaOption

    def option(self, label: str) -> DilemmaOption:
        if label == "A":
            return self.option_a
        if label == "B":
            return self.option_b
        raise ValueError(f"Unknown option label: {label!r}")

    def to_payload(self) -> dict[str, Any]:
        payload = self.model_dump()
        payload["category_info"] = category_info(self.category)
        return payload


CATEGORIES: dict[str, dict[str, str]] = {
    "privacy": {"name": "Privacy", "color": "#2196F3", "icon": "🔒"},
    "social": {"name": "Social", "color": "#4CAF50", "icon": "🤝"},
    "ethics": {"name": "Ethics", "color": "#9C27B0", "icon": "⚖️"},
    "transparency": {"name": "Transparency", "color": "#FF9800", "icon": "🔍"},
}
GENERAL_CATEGORY = {"name": "General", "color": "#607D8B", "icon": "❓"}


def category_info(category: str) -> dict[str, str]:
    return dict(CATEGORIES.get(category, GENERAL_CATEGORY))


DILEMMA_LIBRARY: tuple[Dilemma, ...] = (
    Dilemma(
        id=1,
        text=(
            "A proposed AI feature would boost platform efficiency by 300% but requires "
            "extensive user data collection."
        ),
        category="privacy",
        option_a=DilemmaOption(
            text="Deploy AI for maximum efficiency",
            impact={"eco": -1, "pollution": 0, "inclusivity": -2, "transparency": -3, "innovation": 4},
            consequences=["Data vulnerability increases", "Short-term profits rise", "Public trust declines"],
        ),
        option_b=DilemmaOption(
            text="Prioritize privacy with limited AI",
            impact={"eco": 1, "pollution": -1, "inclusivity": 2, "transparency": 3, "innovation": 1},
            consequences=["User trust strengthens", "Sustainable growth", "Competitive disadvantage"],
        ),
    ),
    Dilemma(
        id=2,
        text="A breakthrough renewable energy source is available but would displace a traditional community.",
        category="social",
        option_a=DilemmaOption(
            text="Adopt new energy immediately",
            impact={"eco": 3, "pollution": -2, "inclusivity": -3, "transparency": 0, "innovation": 3},
            consequences=["Carbon emissions plummet", "Community disruption", "Economic polarization"],
        ),
        option_b=DilemmaOption(
            text="Develop gradual transition plan",
            impact={"eco": 1, "pollution": -1, "inclusivity": 2, "transparency": 2, "innovation": 1},
            consequences=["Social harmony maintained", "Slower climate progress", "Inclusive development"],
        ),
    ),
    Dilemma(
        id=3,
        text=(
            "A supplier offers components at half price, but audits suggest poor labor "
            "conditions in its factories."
        ),
        category="ethics",
        option_a=DilemmaOption(
            text="Take the cheaper supplier",
            impact={"eco": -1, "pollution": 1, "inclusivity": -3, "transparency": -1, "innovation": 2},
            consequences=["Margins improve", "Reputational risk grows", "Workers remain exposed"],
        ),
        option_b=DilemmaOption(
            text="Pay more for a certified supplier",
            impact={"eco": 1, "pollution": -1, "inclusivity": 3, "transparency": 1, "innovation": -1},
            consequences=["Supply chain becomes traceable", "Prices rise for customers", "Fair labor supported"],
        ),
    ),
    Dilemma(
        id=4,
        text="An internal report shows your product's carbon footprint is twice what was publicly announced.",
        category="transparency",
        option_a=DilemmaOption(
            text="Publish the corrected figures",
            impact={"eco": 1, "pollution": -1, "inclusivity": 1, "transparency": 4, "innovation": 0},
            consequences=["Stakeholders regain confidence", "Short-term media backlash", "Pressure to decarbonize"],
        ),
        option_b=DilemmaOption(
            text="Quietly fix it before the next report",
            impact={"eco": 0, "pollution": 1, "inclusivity": 0, "transparency": -4, "innovation": 1},
            consequences=["No immediate scandal", "Trust eroded if leaked", "Slower accountability"],
        ),
    ),
    Dilemma(
        id=5,
        text="A city asks to deploy facial recognition in public transport to reduce fare evasion.",
        category="privacy",
        option_a=DilemmaOption(
            text="Accept the contract",
            impact={"eco": 0, "pollution": 0, "inclusivity": -3, "transparency": -2, "innovation": 3},
            consequences=["Revenue secured", "Civil liberties concerns", "Bias risk for minorities"],
        ),
        option_b=DilemmaOption(
            text="Propose anonymous ticketing instead",
            impact={"eco": 1, "pollution": 0, "inclusivity": 2, "transparency": 2, "innovation": 1},
            consequences=["Privacy preserved", "Smaller contract", "Public debate encouraged"],
        ),
    ),
    Dilemma(
        id=6,
        text="Remote work cuts commuting emissions, but some employees report isolation and unequal career growth.",
        category="social",
        option_a=DilemmaOption(
            text="Go fully remote",
            impact={"eco": 2, "pollution": -2, "inclusivity": -1, "transparency": 0, "innovation": 1},
            consequences=["Office energy use drops", "Mentoring becomes harder", "Wider hiring pool"],
        ),
        option_b=DilemmaOption(
            text="Adopt a hybrid model with shared hubs",
            impact={"eco": 1, "pollution": -1, "inclusivity": 2, "transparency": 1, "innovation": 0},
            consequences=["Team cohesion improves", "Moderate emission savings", "Hub costs to fund"],
        ),
    ),
)


def get_dilemma(index: int, catalog: tuple[Dilemma, ...] = DILEMMA_LIBRARY) -> Dilemma:
    if not 0 <= index < len(catalog):
        raise InvalidDilemmaIndex(f"dilemma index {index} outside 0..{len(catalog) - 1}")
    return catalog[index]


class DilemmaSelector(Protocol):
    name: str

    def next_index(self, sequence: int, catalog_size: int) -> int: ...


class SequentialSelector:
    """Cycle through the catalog in order; every writer agrees on the next index."""

    name = "sequential"

    def next_index(self, sequence: int, catalog_size: int) -> int:
        return (max(1, sequence) - 1) % catalog_size


class RandomSelector:
    name = "random"

    def __init__(self, seed: int | None = None) -> None:
        self._rng = random.Random(seed)

    def next_index(self, sequence: int, catalog_size: int) -> int:
        return self._rng.randrange(catalog_size)


def build_selector(name: str, *, seed: int | None = None) -> DilemmaSelector:
    if name == "random":
        return RandomSelector(seed)
    if name == "sequential":
        return SequentialSelector()
    raise ValueError(f"Unknown dilemma selection strategy: {name!r}")
