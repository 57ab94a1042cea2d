"""
Scroll catalog.

Every castable scroll, its element, level, flags, and the stone patterns
that must surround the caster. Orientations are generated once at import
time; pattern checks only ever walk the precomputed list.
"""

from dataclasses import dataclass

from server.godaigo.hexgrid import add, rotate_pattern

ELEMENTS = ("earth", "water", "fire", "wind", "void")
SCROLL_ELEMENTS = ELEMENTS + ("catacomb",)

CATACOMB_LEVEL = 2


@dataclass(frozen=True)
class ScrollDefinition:
    id: str
    name: str
    element: str
    level: int
    patterns: tuple
    is_counter: bool = False
    # May be cast into an open window without cancelling the original
    is_response: bool = False
    # Only ever castable into an open window
    is_response_only: bool = False

    @property
    def castable_in_main_phase(self):
        return not (self.is_counter or self.is_response_only)

    @property
    def can_respond(self):
        return self.is_counter or self.is_response

    @property
    def is_catacomb(self):
        return self.element == "catacomb"

    @property
    def pattern_elements(self):
        """Distinct elements the pattern asks for, in first-seen order."""
        seen = []
        for _, _, element in self.patterns[0]:
            if element not in seen:
                seen.append(element)
        return tuple(seen)

    @property
    def activation_elements(self):
        """Elements credited to the caster when this scroll resolves."""
        if self.is_catacomb:
            return self.pattern_elements
        return (self.element,)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "element": self.element,
            "level": self.level,
            "is_counter": self.is_counter,
            "is_response": self.is_response,
        }


# ── Base Shapes ───────────────────────────────────────────────────────

LEVEL_SHAPES = {
    1: ((0, -1), (0, 1)),
    2: ((-1, -1), (1, 1)),
    3: ((1, -1), (-1, 0), (0, 1)),
    4: ((1, -2), (-2, 1), (1, 1)),
    5: ((0, -1), (0, 1), (2, -1), (-2, 1)),
}

CATACOMB_PAIRS = {
    1: ("water", "earth"),
    2: ("earth", "fire"),
    3: ("wind", "earth"),
    4: ("void", "earth"),
    5: ("water", "fire"),
    6: ("wind", "water"),
    7: ("void", "water"),
    8: ("fire", "wind"),
    9: ("void", "wind"),
    10: ("fire", "void"),
}

SCROLL_NAMES = {
    "earth": ("Iron Stance", "Shifting Sands", "Mason's Savvy", "Heavy Stomp", "Avalanche"),
    "water": ("Reflect", "Refreshing Thought", "Inspiring Draught", "Wandering River",
              "Control the Current"),
    "fire": ("Unbidden Lamplight", "Burning Motivation", "Sacrificial Pyre", "Transmute",
             "Arson"),
    "wind": ("Sigh of Recollection", "Respirate", "Freedom", "Take Flight", "Breath of Power"),
    "void": ("Psychic", "Scholar's Insight", "Telekinesis", "Simplify", "Create"),
    "catacomb": ("Mudslide", "Mine", "Call to Adventure", "Excavate", "Steam Vents",
                 "Seed the Skies", "Reflecting Pool", "Plunder", "Quick Reflexes", "Combust"),
}

COUNTERS = {"EARTH_SCROLL_1", "VOID_SCROLL_1"}
RESPONSES = {"WATER_SCROLL_1", "FIRE_SCROLL_1", "WIND_SCROLL_1"}
RESPONSE_ONLY = {"FIRE_SCROLL_1"}

# Element credited when a stored counter/mirror replays, keyed by the
# countering scroll. Never the replayed scroll's own element.
DEFERRED_MARKERS = {"WATER_SCROLL_1": "water", "VOID_SCROLL_1": "void"}


def scroll_id(element, number):
    return f"{element.upper()}_SCROLL_{number}"


def all_rotations(pattern):
    """All six rotations with duplicates removed, original first."""
    variants = []
    seen = set()
    for steps in range(6):
        rotated = rotate_pattern(pattern, steps)
        signature = frozenset(rotated)
        if signature in seen:
            continue
        seen.add(signature)
        variants.append(rotated)
    return tuple(variants)


def catacomb_rotations(pattern):
    """Catacomb shapes have three-fold symmetry: 0, 120 and 240 degrees."""
    return tuple(rotate_pattern(pattern, steps) for steps in (0, 2, 4))


def catacomb_shape(first, second):
    return (
        (-1, -1, first), (1, 1, first),
        (1, -2, second), (-1, 2, second),
    )


def _build_catalog():
    catalog = {}
    for element in ELEMENTS:
        for level, shape in LEVEL_SHAPES.items():
            sid = scroll_id(element, level)
            base = tuple((dq, dr, element) for dq, dr in shape)
            catalog[sid] = ScrollDefinition(
                id=sid,
                name=SCROLL_NAMES[element][level - 1],
                element=element,
                level=level,
                patterns=all_rotations(base),
                is_counter=sid in COUNTERS,
                is_response=sid in RESPONSES,
                is_response_only=sid in RESPONSE_ONLY,
            )
    for number, (first, second) in CATACOMB_PAIRS.items():
        sid = scroll_id("catacomb", number)
        catalog[sid] = ScrollDefinition(
            id=sid,
            name=SCROLL_NAMES["catacomb"][number - 1],
            element="catacomb",
            level=CATACOMB_LEVEL,
            patterns=catacomb_rotations(catacomb_shape(first, second)),
        )
    return catalog


SCROLLS = _build_catalog()

# One draw deck per scroll element, in catalog order (shuffled at game start).
SCROLL_DECKS = {
    element: [sid for sid, d in SCROLLS.items() if d.element == element]
    for element in SCROLL_ELEMENTS
}


def get_scroll(sid):
    definition = SCROLLS.get(sid)
    if definition is None:
        raise ValueError(f"Unknown scroll: {sid}")
    return definition


# ── Pattern Matching ──────────────────────────────────────────────────

def matches_pattern(stones, anchor, orientation):
    """
    True iff every (offset, element) in one orientation has a stone of that
    element at anchor + offset. `stones` maps (q, r) -> element. Stones not
    named by the orientation are ignored.
    """
    for dq, dr, element in orientation:
        if stones.get(add(anchor, (dq, dr))) != element:
            return False
    return True


def find_matching_orientation(definition, stones, anchor):
    """Return the first precomputed orientation that matches, or None."""
    if anchor is None:
        return None
    for orientation in definition.patterns:
        if matches_pattern(stones, anchor, orientation):
            return orientation
    return None


def scroll_matches(definition, stones, anchor):
    return find_matching_orientation(definition, stones, anchor) is not None
