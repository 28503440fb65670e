from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Sequence

from .utils import is_blank


_CHUNK_RE = re.compile(r'<chunk id="(\d+)">([\s\S]*?)</chunk>')


@dataclass(frozen=True)
class Payload:
    """
    One request body for a chunk of units.

    ``mapping`` maps the request-local index (position in the chunk) to the
    source fragment sent under that index. Blank fragments are absent from
    both the text and the mapping.
    """

    text: str
    mapping: Dict[int, str] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return bool(self.mapping)


def encode_payload(fragments: Sequence[str]) -> Payload:
    parts = []
    mapping: Dict[int, str] = {}
    for index, fragment in enumerate(fragments):
        if is_blank(fragment):
            continue
        parts.append(f'<chunk id="{index}">\n{fragment}\n</chunk>\n')
        mapping[index] = fragment
    return Payload(text="".join(parts), mapping=mapping)


def decode_payload(response: str) -> Dict[int, str]:
    """
    Pull every ``<chunk id="N">...</chunk>`` out of a model response.

    Order and surrounding commentary are ignored. Missing or extra ids are
    left for the caller to judge.
    """
    translations: Dict[int, str] = {}
    for m in _CHUNK_RE.finditer(response or ""):
        translations[int(m.group(1))] = m.group(2).strip()
    return translations
