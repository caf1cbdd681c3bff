"""
"Did you mean" field suggestions.

Used by the validator when an intent names a field the dataset does not have
(``revnue_amount``) and by the catalog's ``/suggest`` endpoint.  Each schema
field is scored against the term by edit distance, token overlap and a prefix
bonus; the field name and its display name are both tried and the better
score counts.

Display names are often Chinese, which has no spaces, so CJK runs are
tokenised into character bigrams (营收金额 -> 营收, 收金, 金额).
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from src.intent.model import SchemaDescriptor

_WORD_SPLIT_RE = re.compile(r"[\W_]+")
_CJK_RUN_RE = re.compile(r"[\u3400-\u9fff]+")

# Weights of the composite score; they sum to 1.0
_EDIT_WEIGHT = 0.60
_TOKEN_WEIGHT = 0.30
_PREFIX_WEIGHT = 0.10


@dataclass
class FieldSuggestion:
    """One schema field that looks like the term."""
    name: str
    display_name: str
    score: float  # 0.0 – 1.0

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "displayName": self.display_name, "score": round(self.score, 3)}


# ── Scoring ──────────────────────────────────────────────


def _edit_distance(a: str, b: str) -> int:
    """Levenshtein distance, one DP row at a time."""
    if a == b:
        return 0
    if not a or not b:
        return len(a) or len(b)
    row = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        diag, row[0] = row[0], i
        for j, cb in enumerate(b, start=1):
            above = row[j]
            row[j] = min(above + 1, row[j - 1] + 1, diag + (ca != cb))
            diag = above
    return row[-1]


def _tokens(text: str) -> set[str]:
    out: set[str] = set()
    for word in _WORD_SPLIT_RE.split(text.lower()):
        if not word:
            continue
        runs = _CJK_RUN_RE.findall(word)
        if not runs:
            out.add(word)
            continue
        for run in runs:
            if len(run) == 1:
                out.add(run)
            out.update(run[i:i + 2] for i in range(len(run) - 1))
        rest = _CJK_RUN_RE.sub(" ", word).split()
        out.update(rest)
    return out


def _score(term: str, candidate: str) -> float:
    t, c = term.strip().lower(), candidate.strip().lower()
    if not t or not c:
        return 0.0
    edit = 1.0 - _edit_distance(t, c) / max(len(t), len(c))
    t_tok, c_tok = _tokens(t), _tokens(c)
    overlap = len(t_tok & c_tok) / len(t_tok | c_tok) if t_tok | c_tok else 0.0
    prefix = 1.0 if c.startswith(t) or t.startswith(c) else 0.0
    return _EDIT_WEIGHT * edit + _TOKEN_WEIGHT * overlap + _PREFIX_WEIGHT * prefix


# ── Public API ───────────────────────────────────────────


def suggest_fields(
    term: str,
    schema: SchemaDescriptor,
    top_k: int = 3,
    min_score: float = 0.45,
) -> list[FieldSuggestion]:
    """Schema fields that look like *term*, best first (schema order on ties).

    Parameters
    ----------
    term : str
        Unknown field name or free text.
    schema : SchemaDescriptor
        Dataset whose fields are the candidates.
    top_k : int
        At most this many suggestions.
    min_score : float
        Drop candidates scoring below this.
    """
    scored = [
        FieldSuggestion(
            name=f.name,
            display_name=f.display_name,
            score=max(_score(term, f.name), _score(term, f.display_name)),
        )
        for f in schema.fields
    ]
    hits = [s for s in scored if s.score >= min_score]
    hits.sort(key=lambda s: s.score, reverse=True)
    return hits[:top_k]
