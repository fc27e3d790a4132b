from __future__ import annotations

import logging
import re

import jieba


jieba.setLogLevel(logging.WARNING)

# CJK unified ideographs (+ ext A), compatibility ideographs, kana, hangul
_CJK_RUN_RE = re.compile(
    r"[\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff\u3040-\u30ff\uac00-\ud7af]+"
)
_WORD_RE = re.compile(r"\w+", re.UNICODE)


def has_cjk(text: str) -> bool:
    return bool(_CJK_RUN_RE.search(text or ""))


def _split_runs(text: str) -> list[tuple[bool, str]]:
    """Split text into alternating (is_cjk, chunk) runs, order preserved."""

    runs: list[tuple[bool, str]] = []
    pos = 0
    for m in _CJK_RUN_RE.finditer(text):
        if m.start() > pos:
            runs.append((False, text[pos : m.start()]))
        runs.append((True, m.group(0)))
        pos = m.end()
    if pos < len(text):
        runs.append((False, text[pos:]))
    return runs


def _cjk_tokens(run: str, for_search: bool) -> list[str]:
    words = jieba.cut_for_search(run) if for_search else jieba.cut(run)
    return [w.strip() for w in words if w.strip()]


def segment_for_index(text: str) -> str:
    """Text with word boundaries inserted into CJK runs, ready for indexing.

    CJK runs are cut in search mode, so long compounds also yield their
    shorter constituent words. Everything else passes through unchanged.
    """

    if not text:
        return ""
    if not has_cjk(text):
        return text
    parts: list[str] = []
    for is_cjk, chunk in _split_runs(text):
        if is_cjk:
            parts.append(" " + " ".join(_cjk_tokens(chunk, for_search=True)) + " ")
        else:
            parts.append(chunk)
    return re.sub(r"[ \t]{2,}", " ", "".join(parts)).strip()


def query_tokens(query: str) -> list[str]:
    """Tokenize a user query the way indexed text was tokenized.

    Whitespace-delimited words are kept as typed (punctuation dropped); CJK
    runs are cut into words. Duplicates are removed, order preserved.
    """

    tokens: list[str] = []
    for is_cjk, chunk in _split_runs(query or ""):
        if is_cjk:
            tokens.extend(_cjk_tokens(chunk, for_search=False))
        else:
            tokens.extend(_WORD_RE.findall(chunk))

    seen: set[str] = set()
    out: list[str] = []
    for t in tokens:
        key = t.lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(t)
    return out
