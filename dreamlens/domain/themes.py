"""Catalogue fixe des thèmes oniriques et vocabulaires de détection.

Les codes de thème sont stables : ils servent de clé aux associations fragment/thème précalculées
dans le magasin de connaissances.
"""

from __future__ import annotations

from dreamlens.domain.entities import Theme

UNIVERSAL_THEMES: list[Theme] = [
    Theme(
        code="shadow_figure",
        label="Shadow figure",
        keywords=["dark figure", "stranger", "mysterious person", "hooded", "faceless", "intruder"],
    ),
    Theme(
        code="wise_guide",
        label="Wise guide",
        keywords=["old man", "old woman", "guide", "sage", "wizard", "grandmother", "grandfather"],
    ),
    Theme(
        code="water",
        label="Water bodies",
        keywords=["ocean", "river", "lake", "pool", "rain", "flood", "wave", "sea"],
    ),
    Theme(
        code="heights",
        label="Heights",
        keywords=["mountain", "cliff", "tower", "rooftop", "ladder", "skyscraper"],
    ),
    Theme(
        code="falling",
        label="Falling",
        keywords=["fall", "drop", "plunge", "slip", "tumble"],
    ),
    Theme(
        code="flying",
        label="Flying",
        keywords=["fly", "float", "soar", "levitate", "wing", "glide"],
    ),
    Theme(
        code="chase",
        label="Being chased",
        keywords=["chase", "pursue", "hunt", "follow", "run after", "attacker"],
    ),
    Theme(
        code="enclosure",
        label="Enclosure and entrapment",
        keywords=["maze", "labyrinth", "closet", "trapped", "locked", "cage", "corridor", "tunnel"],
    ),
    Theme(
        code="escape",
        label="Escape and exit",
        keywords=["exit", "escape", "way out", "flee", "break free", "get out"],
    ),
    Theme(
        code="house",
        label="Houses and rooms",
        keywords=["house", "home", "room", "basement", "attic", "hallway"],
    ),
    Theme(
        code="doors",
        label="Doors and thresholds",
        keywords=["door", "gate", "threshold", "key", "window"],
    ),
    Theme(
        code="vehicles",
        label="Vehicles",
        keywords=["car", "train", "boat", "airplane", "bicycle", "bus"],
    ),
    Theme(
        code="death",
        label="Death and endings",
        keywords=["death", "die", "dead", "funeral", "grave", "coffin"],
    ),
    Theme(
        code="teeth",
        label="Losing teeth",
        keywords=["teeth", "tooth", "dentist", "crumble"],
    ),
    Theme(
        code="exam",
        label="Examination and unpreparedness",
        keywords=["exam", "test", "unprepared", "late", "classroom"],
    ),
    Theme(
        code="lost",
        label="Being lost",
        keywords=["lost", "wander", "missing", "search", "never found"],
    ),
    Theme(
        code="animals",
        label="Animals",
        keywords=["animal", "dog", "cat", "snake", "wolf", "bird", "spider", "horse"],
    ),
    Theme(
        code="fire",
        label="Fire",
        keywords=["fire", "flame", "burn", "smoke", "ash"],
    ),
    Theme(
        code="nakedness",
        label="Nakedness and exposure",
        keywords=["naked", "nude", "undressed", "exposed"],
    ),
    Theme(
        code="birth",
        label="Birth and new beginnings",
        keywords=["baby", "pregnant", "birth", "newborn", "infant"],
    ),
]

THEMES_BY_CODE: dict[str, Theme] = {t.code: t for t in UNIVERSAL_THEMES}

COMMON_SYMBOLS = [
    "water",
    "fire",
    "light",
    "darkness",
    "door",
    "key",
    "mirror",
    "bridge",
    "tree",
    "animal",
]

SETTINGS_VOCABULARY = [
    "house",
    "forest",
    "ocean",
    "city",
    "school",
    "work",
    "hospital",
    "church",
    "mountain",
    "beach",
    "maze",
    "street",
]

CHARACTERS_VOCABULARY = [
    "mother",
    "father",
    "friend",
    "stranger",
    "child",
    "old man",
    "woman",
    "professor",
    "doctor",
    "animal",
    "sister",
    "brother",
]

ACTIONS_VOCABULARY = [
    "fly",
    "run",
    "chase",
    "fall",
    "swim",
    "drive",
    "walk",
    "climb",
    "fight",
    "dance",
    "hide",
    "search",
]

# Lexiques pondérés de tonalité émotionnelle
POSITIVE_WORDS: dict[str, int] = {
    "happy": 1,
    "joy": 2,
    "love": 2,
    "peace": 1,
    "beautiful": 1,
    "wonderful": 1,
    "amazing": 1,
    "free": 1,
    "light": 1,
    "calm": 1,
}

NEGATIVE_WORDS: dict[str, int] = {
    "fear": 2,
    "scared": 2,
    "dark": 1,
    "death": 1,
    "angry": 1,
    "sad": 1,
    "terrified": 2,
    "nightmare": 2,
    "evil": 1,
    "panic": 2,
    "anxious": 1,
}

# Déclencheurs du type de rêve, par ordre de priorité
LUCID_TRIGGERS = [
    "lucid",
    "realized i was dreaming",
    "knew i was dreaming",
    "aware i was dreaming",
]
NIGHTMARE_TRIGGERS = ["nightmare", "terrifying", "terrified", "horror", "horrifying"]
RECURRING_TRIGGERS = ["recurring", "same dream", "again and again", "keep having", "every night"]
