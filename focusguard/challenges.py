from __future__ import annotations

import random
from datetime import datetime
from typing import Callable

from .models import Challenge

MIN_DIFFICULTY = 1
MAX_DIFFICULTY = 5
PERCENTAGES = (10, 15, 20, 25, 30, 40, 50, 75)


class InvalidAnswerError(ValueError):
    pass


def clamp_difficulty(level: int) -> int:
    return max(MIN_DIFFICULTY, min(MAX_DIFFICULTY, int(level)))


def parse_answer(text: str) -> int:
    value = (text or "").strip()
    if not value:
        raise InvalidAnswerError("Answer is required.")
    try:
        return int(value)
    except ValueError:
        raise InvalidAnswerError(f"Answer must be a whole number: {value!r}") from None


class ChallengeGenerator:
    """Arithmetic problems in five difficulty bands.

    Every builder picks its operands once and derives both the question text
    and the expected answer from those same values.
    """

    def __init__(
        self,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._rng = rng or random.Random()
        self._clock = clock or (lambda: datetime.now().astimezone())
        self._bands: dict[int, tuple[Callable[[], tuple[str, int]], ...]] = {
            1: (self._add_easy, self._subtract_easy),
            2: (self._add_medium, self._subtract_medium, self._multiply_small),
            3: (self._add_hard, self._subtract_hard, self._multiply_medium, self._divide_exact),
            4: (self._multi_step, self._multiply_large, self._divide_floor),
            5: (self._compound, self._divide_large, self._percentage),
        }

    def generate(self, difficulty: int, app_id: str) -> Challenge:
        level = clamp_difficulty(difficulty)
        builder = self._rng.choice(self._bands[level])
        question, answer = builder()
        return Challenge(
            app_id=app_id,
            question_text=question,
            correct_answer=answer,
            difficulty_level=level,
            timestamp=self._clock(),
        )

    def _int(self, low: int, high: int) -> int:
        return self._rng.randint(low, high)

    # Level 1

    def _add_easy(self) -> tuple[str, int]:
        a = self._int(10, 50)
        b = self._int(10, 50)
        return f"{a} + {b} = ?", a + b

    def _subtract_easy(self) -> tuple[str, int]:
        a = self._int(11, 50)
        b = self._int(10, a - 1)
        return f"{a} - {b} = ?", a - b

    # Level 2

    def _add_medium(self) -> tuple[str, int]:
        a = self._int(50, 200)
        b = self._int(50, 200)
        return f"{a} + {b} = ?", a + b

    def _subtract_medium(self) -> tuple[str, int]:
        a = self._int(100, 500)
        b = self._int(50, a - 1)
        return f"{a} - {b} = ?", a - b

    def _multiply_small(self) -> tuple[str, int]:
        a = self._int(5, 15)
        b = self._int(5, 15)
        return f"{a} × {b} = ?", a * b

    # Level 3

    def _add_hard(self) -> tuple[str, int]:
        a = self._int(200, 1000)
        b = self._int(200, 1000)
        return f"{a} + {b} = ?", a + b

    def _subtract_hard(self) -> tuple[str, int]:
        a = self._int(500, 2000)
        b = self._int(100, a - 1)
        return f"{a} - {b} = ?", a - b

    def _multiply_medium(self) -> tuple[str, int]:
        a = self._int(10, 25)
        b = self._int(10, 25)
        return f"{a} × {b} = ?", a * b

    def _divide_exact(self) -> tuple[str, int]:
        divisor = self._int(5, 20)
        quotient = self._int(10, 50)
        return f"{divisor * quotient} ÷ {divisor} = ?", quotient

    # Level 4

    def _multi_step(self) -> tuple[str, int]:
        a = self._int(10, 50)
        b = self._int(10, 50)
        c = self._int(5, 20)
        return f"{a} + {b} × {c} = ?", a + b * c

    def _multiply_large(self) -> tuple[str, int]:
        a = self._int(25, 100)
        b = self._int(25, 100)
        return f"{a} × {b} = ?", a * b

    def _divide_floor(self) -> tuple[str, int]:
        divisor = self._int(15, 50)
        quotient = self._int(20, 100)
        dividend = divisor * quotient + self._int(1, divisor - 1)
        return f"{dividend} ÷ {divisor} = ? (whole number only)", dividend // divisor

    # Level 5

    def _compound(self) -> tuple[str, int]:
        a = self._int(15, 75)
        b = self._int(15, 75)
        c = self._int(10, 30)
        d = self._int(5, 15)
        return f"({a} + {b}) × {c} - {d} = ?", (a + b) * c - d

    def _divide_large(self) -> tuple[str, int]:
        divisor = self._int(25, 99)
        quotient = self._int(50, 200)
        return f"{divisor * quotient} ÷ {divisor} = ?", quotient

    def _percentage(self) -> tuple[str, int]:
        base = self._int(100, 1000)
        pct = self._rng.choice(PERCENTAGES)
        return f"{pct}% of {base} = ?", base * pct // 100
