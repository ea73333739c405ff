from __future__ import annotations

from dataclasses import dataclass
from typing import List, Tuple

COMMENT = "--"


@dataclass(frozen=True)
class TokenLine:
    tokens: Tuple[str, ...]
    line: int

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"TokenLine({' '.join(self.tokens)!r}, line={self.line})"


def tokenize(source: str) -> List[TokenLine]:
    """Split source into whitespace separated token lines.

    Blank lines and lines whose first token is ``--`` are dropped; the
    remaining lines keep their 1-based line number for error reporting.
    """
    lines: List[TokenLine] = []
    for number, raw in enumerate(source.split("\n"), start=1):
        tokens = tuple(raw.split())
        if not tokens or tokens[0] == COMMENT:
            continue
        lines.append(TokenLine(tokens, number))
    return lines


__all__ = ["TokenLine", "tokenize", "COMMENT"]
