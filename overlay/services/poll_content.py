"""Default content for auto-started polls."""

from __future__ import annotations

import random
from typing import List, Optional, Protocol, Sequence, Tuple

from overlay.schemas.poll import PollContent


MAX_OPTIONS = 5

MOOD_QUESTIONS = ("Stream mood?", "Vibe check?", "Chat mood?")
MOOD_POSITIVE = ["Good", "Hyped", "Chill", "Blessed", "Pumped", "Relaxed", "Vibing", "Cozy"]
MOOD_NEUTRAL = ["Hungry", "Focused", "Bored", "Grinding", "Tired", "Sleepy"]
MOOD_NEGATIVE = ["Stressed", "Anxious", "Chaotic", "Struggling", "Surviving"]

# (questions, options) per category
POLL_CATEGORIES: List[Tuple[Sequence[str], Sequence[str]]] = [
    (("Stream energy?", "Chat vibe?", "Energy level?"), ["High", "Medium", "Low", "Chaotic", "Chill"]),
    (("Best stream snack?", "What to munch?", "Snack vote?"), ["Chips", "Candy", "Fruit", "Pizza", "Nothing"]),
    (("Music vibe?", "Background music?", "Genre tonight?"), ["Chill", "Hype", "Lo-fi", "Metal", "Silence"]),
    (("What to drink?", "Drink vote?", "Beverage of choice?"), ["Water", "Coffee", "Energy drink", "Soda", "Tea"]),
    (("Best pet?", "Favorite pet?", "Pet of choice?"), ["Dog", "Cat", "Fish", "Bird", "Hamster", "Rabbit"]),
    (("Best season?", "Favorite season?", "Season vibe?"), ["Spring", "Summer", "Fall", "Winter"]),
    (
        ("Best gaming console?", "Favorite console?", "Console of choice?"),
        ["PlayStation", "Xbox", "Nintendo Switch", "PC", "Steam Deck"],
    ),
    (
        ("Best movie genre?", "Movie night genre?", "Favorite film genre?"),
        ["Action", "Comedy", "Horror", "Sci-fi", "Romance", "Thriller", "Animation"],
    ),
    (
        ("Best breakfast food?", "Breakfast vote?", "Favorite morning food?"),
        ["Eggs", "Pancakes", "Waffles", "Bacon", "Cereal", "Toast", "Bagel"],
    ),
    (
        ("Best sport?", "Favorite sport to watch?", "Sport of choice?"),
        ["Soccer", "Basketball", "Football", "Baseball", "Hockey", "Tennis", "Esports"],
    ),
]


class ContentProvider(Protocol):
    async def generate_poll_content(self) -> Optional[PollContent]:
        ...


class RandomPollContentProvider:
    """Picks a random category and up to five shuffled options from it."""

    def __init__(self, rng: Optional[random.Random] = None, mood_weight: float = 0.2):
        self._rng = rng or random.Random()
        self._mood_weight = mood_weight

    def _mood_poll(self) -> PollContent:
        # at least one word from each mood group, then fill up
        picked = [self._rng.choice(group) for group in (MOOD_POSITIVE, MOOD_NEUTRAL, MOOD_NEGATIVE)]
        remaining = [w for w in MOOD_POSITIVE + MOOD_NEUTRAL + MOOD_NEGATIVE if w not in picked]
        self._rng.shuffle(remaining)
        picked.extend(remaining[: MAX_OPTIONS - len(picked)])
        self._rng.shuffle(picked)
        return PollContent(question=self._rng.choice(MOOD_QUESTIONS), options=picked)

    def _category_poll(self) -> PollContent:
        questions, options = self._rng.choice(POLL_CATEGORIES)
        picked = list(options)
        self._rng.shuffle(picked)
        return PollContent(question=self._rng.choice(questions), options=picked[:MAX_OPTIONS])

    async def generate_poll_content(self) -> Optional[PollContent]:
        if self._rng.random() < self._mood_weight:
            return self._mood_poll()
        return self._category_poll()


class StaticContentProvider:
    """Always offers the same poll. Returns None once ``content`` is None."""

    def __init__(self, content: Optional[PollContent]):
        self.content = content

    async def generate_poll_content(self) -> Optional[PollContent]:
        return self.content
