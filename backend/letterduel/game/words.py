from __future__ import annotations

import random
from dataclasses import dataclass


@dataclass(frozen=True)
class Category:
    id: str
    label: str
    prompt: str


CATEGORIES: tuple[Category, ...] = (
    Category("boyName", "اسم ولد", "اسم ولد (ذكر)"),
    Category("girlName", "اسم بنت", "اسم بنت (أنثى)"),
    Category("vegetable", "خضار", "نوع خضار"),
    Category("fruit", "فواكه", "نوع فاكهة"),
    Category("object", "جماد", "جماد (شيء غير حي)"),
    Category("animal", "حيوان", "اسم حيوان"),
    Category("country", "بلاد", "اسم دولة/بلد"),
    Category("city", "مدينة", "اسم مدينة"),
    Category("job", "مهنة", "اسم مهنة/وظيفة"),
)

CATEGORY_IDS: tuple[str, ...] = tuple(c.id for c in CATEGORIES)

ARABIC_LETTERS: tuple[str, ...] = (
    "ا", "ب", "ت", "ث", "ج", "ح", "خ", "د", "ذ", "ر", "ز", "س", "ش", "ص",
    "ض", "ط", "ظ", "ع", "غ", "ف", "ق", "ك", "ل", "م", "ن", "ه", "و", "ي",
)

MEMORY_WORDS: tuple[str, ...] = (
    "أسد", "نمر", "فيل", "زرافة", "قرد", "حصان", "جمل", "غزال", "ذئب", "ثعلب",
    "تفاح", "موز", "عنب", "رمان", "برتقال", "خيار", "جزر", "بصل", "ليمون", "تمر",
    "كرسي", "باب", "قلم", "كتاب", "مفتاح", "ساعة", "مصباح", "نافذة", "سرير", "طاولة",
)

# Letters common enough to make "contains"/"not contains" puzzles solvable.
COMMON_LETTERS: tuple[str, ...] = ("ا", "ب", "ر", "ل", "م", "ن", "و", "ي", "س", "ع")


def random_letter(rng: random.Random | None = None) -> str:
    return (rng or random).choice(ARABIC_LETTERS)


def random_category(rng: random.Random | None = None) -> Category:
    return (rng or random).choice(CATEGORIES)


def pick_words(words: list[str] | tuple[str, ...], count: int, rng: random.Random | None = None) -> list[str]:
    uniq = list(dict.fromkeys(w for w in words if w))
    if count >= len(uniq):
        out = list(uniq)
        (rng or random).shuffle(out)
        return out
    return (rng or random).sample(uniq, count)


def build_constraints(letter: str, rng: random.Random | None = None) -> list[dict]:
    """Puzzle for the objective mode, anchored on the round letter."""
    r = rng or random
    others = [c for c in COMMON_LETTERS if c != letter]
    contains, not_contains = r.sample(others, 2)

    constraints = [
        {"type": "startsWith", "value": letter, "label": f"يبدأ بحرف {letter}"},
        {"type": "contains", "value": contains, "label": f"يحتوي على حرف {contains}"},
        {"type": "notContains", "value": not_contains, "label": f"لا يحتوي على حرف {not_contains}"},
    ]
    roll = r.random()
    if roll < 0.4:
        length = r.choice((3, 4, 5))
        constraints.append({"type": "length", "value": length, "label": f"من {length} أحرف"})
    elif roll >= 0.8:
        ending = r.choice([c for c in COMMON_LETTERS if c != not_contains])
        constraints.append({"type": "endsWith", "value": ending, "label": f"ينتهي بحرف {ending}"})
    else:
        min_length = r.choice((4, 5))
        constraints.append({"type": "minLength", "value": min_length, "label": f"على الأقل {min_length} أحرف"})
    return constraints
