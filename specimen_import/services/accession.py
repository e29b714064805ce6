from __future__ import annotations

import random
import string
from collections.abc import Callable

"""Accession id generator for records created by an import (participant groups).

Ids are PREFIX + random upper-case letters / digits. A candidate is rejected
when it exists in the store or was already handed out by this generator.
"""

__all__ = [
    "AccessionIdGenerator",
]

MAX_ATTEMPTS = 1000
_ALPHABET = string.ascii_uppercase + string.digits


class AccessionIdGenerator:
    def __init__(
        self,
        exists: Callable[[str], bool],
        *,
        prefix: str = "GRP-",
        length: int = 6,
        rng: random.Random | None = None,
    ) -> None:
        self._exists = exists
        self.prefix = prefix
        self.length = length
        self._rng = rng or random.SystemRandom()
        self._generated: set[str] = set()

    def generate(self) -> str:
        for _ in range(MAX_ATTEMPTS):
            candidate = self.prefix + "".join(self._rng.choice(_ALPHABET) for _ in range(self.length))
            if candidate in self._generated or self._exists(candidate):
                continue
            self._generated.add(candidate)
            return candidate
        raise RuntimeError(f"could not generate a unique accession id after {MAX_ATTEMPTS} attempts")
