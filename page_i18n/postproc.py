from __future__ import annotations

from typing import Sequence

from .html_parser import (
    DEFAULT_ATTRIBUTE_RULES,
    AttributeRule,
    allowed_attribute_names,
    parse_html,
    serialize,
)


def restore_attributes(
    source_html: str,
    translated_html: str,
    rules: Sequence[AttributeRule] = DEFAULT_ATTRIBUTE_RULES,
) -> str:
    """
    Put source attributes back onto a translated fragment.

    Tags are aligned by document order. Every translated tag gets a copy of
    its source tag's attributes; only allow-listed attributes present on the
    translated tag keep the translated value. If the tag sequences differ
    (count or name at any position) the fragment is returned unchanged.
    """
    if not translated_html:
        return translated_html

    try:
        source = parse_html(source_html)
        translated = parse_html(translated_html)
    except Exception:  # noqa: BLE001 - unparseable output is left for the validator
        return translated_html

    src_tags = source.find_all(True)
    tr_tags = translated.find_all(True)
    if len(src_tags) != len(tr_tags):
        return translated_html
    if any(s.name != t.name for s, t in zip(src_tags, tr_tags)):
        return translated_html

    for s_tag, t_tag in zip(src_tags, tr_tags):
        attrs = dict(s_tag.attrs)
        for name in allowed_attribute_names(s_tag, rules):
            if name in t_tag.attrs:
                attrs[name] = t_tag.attrs[name]
        t_tag.attrs = attrs

    return serialize(translated)
