from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass
from typing import Any, Optional, Tuple

from bs4 import BeautifulSoup

from .html_parser import attr_value, is_text_node, parse_html


SHORT_TEXT_THRESHOLD = 5
DEFAULT_MIN_RATIO = 0.3
DEFAULT_MAX_RATIO = 5.0
CJK_MIN_RATIO = 0.1
CJK_MAX_RATIO = 8.0

# Attributes that must survive translation byte for byte.
CRITICAL_ATTRIBUTES = ("href", "src", "class", "id")

_CJK_RE = re.compile(r"[\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff\uff66-\uff9f]")
_WHITESPACE_RE = re.compile(r"\s")


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    reason: Optional[str] = None
    ratio: Optional[float] = None
    source: Optional[str] = None
    target: Optional[str] = None

    def __bool__(self) -> bool:
        return self.valid


_OK = ValidationResult(valid=True)


def has_cjk(text: str) -> bool:
    return bool(_CJK_RE.search(text))


def check_length_ratio(
    source_text: str,
    target_text: str,
    min_ratio: float = DEFAULT_MIN_RATIO,
    max_ratio: float = DEFAULT_MAX_RATIO,
) -> ValidationResult:
    """
    Length plausibility of a translation.

    Short or single-token sources are not ratio tested. CJK on either side
    relaxes the bounds to [0.1, 8.0].
    """
    src = source_text.strip()
    tgt = target_text.strip()
    if len(src) <= SHORT_TEXT_THRESHOLD or not _WHITESPACE_RE.search(src):
        return _OK

    if has_cjk(src) or has_cjk(tgt):
        min_ratio, max_ratio = CJK_MIN_RATIO, CJK_MAX_RATIO

    ratio = len(tgt) / len(src)
    if ratio < min_ratio:
        return ValidationResult(False, f"Text too short (ratio: {ratio:.2f})", ratio, src, tgt)
    if ratio > max_ratio:
        return ValidationResult(False, f"Text too long (ratio: {ratio:.2f})", ratio, src, tgt)
    return ValidationResult(True, None, ratio)


def validate_text(source: str, target: Any) -> ValidationResult:
    """Safety check for plain text translations (no markup involved)."""
    if not isinstance(target, str):
        return ValidationResult(False, "Translation is not a string", source=source)
    if source.strip() and not target.strip():
        return ValidationResult(False, "Translation is empty", source=source, target=target)
    return check_length_ratio(source, target)


def _text_of(soup: BeautifulSoup) -> str:
    return "".join(str(s) for s in soup.descendants if is_text_node(s))


def _critical_attributes(soup: BeautifulSoup) -> Counter:
    triples: Counter = Counter()
    for tag in soup.find_all(True):
        for name in CRITICAL_ATTRIBUTES:
            if name in tag.attrs:
                triples[(tag.name, name, attr_value(tag, name))] += 1
    return triples


def _compare_tags(source: BeautifulSoup, target: BeautifulSoup) -> Optional[str]:
    src_tags = Counter(t.name for t in source.find_all(True))
    tgt_tags = Counter(t.name for t in target.find_all(True))

    for tag, count in tgt_tags.items():
        if tag not in src_tags:
            return f"Hallucinated tag <{tag}>: expected 0, got {count}"
    for tag, count in src_tags.items():
        if tgt_tags.get(tag, 0) != count:
            return f"Tag mismatch for <{tag}>: expected {count}, got {tgt_tags.get(tag, 0)}"
    return None


def _compare_attributes(source: BeautifulSoup, target: BeautifulSoup) -> Optional[str]:
    src_attrs = _critical_attributes(source)
    tgt_attrs = _critical_attributes(target)

    for (tag, attr, value), count in src_attrs.items():
        got = tgt_attrs.get((tag, attr, value), 0)
        if got != count:
            return f'Attribute mismatch: <{tag} {attr}="{value}"> expected {count}, got {got}'
    for (tag, attr, value) in tgt_attrs:
        if (tag, attr, value) not in src_attrs:
            return f'Hallucinated attribute: <{tag} {attr}="{value}">'
    return None


def _parse_pair(source_html: str, target_html: str) -> Tuple[BeautifulSoup, BeautifulSoup]:
    return parse_html(source_html), parse_html(target_html)


def validate_fragment(source_html: str, target_html: Any) -> ValidationResult:
    """
    Validate a translated HTML fragment against its source.

    Checks, in order: text length ratio, tag parity (hallucinated tags first)
    and href/src/class/id preservation. Never raises.
    """
    if not isinstance(target_html, str):
        return ValidationResult(False, "Translation is not a string", source=source_html)

    try:
        source, target = _parse_pair(source_html, target_html)
    except Exception as exc:  # noqa: BLE001 - any parser failure is a failed validation
        return ValidationResult(False, f"Failed to parse HTML: {exc}", source=source_html, target=target_html)

    result = validate_text(_text_of(source), _text_of(target))
    if not result.valid:
        return result

    reason = _compare_tags(source, target) or _compare_attributes(source, target)
    if reason:
        return ValidationResult(False, reason, result.ratio, source_html, target_html)
    return ValidationResult(True, None, result.ratio)
