from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.dammit import EntitySubstitution
from bs4.element import PreformattedString
from bs4.formatter import HTMLFormatter

from .utils import fingerprint


# Tags whose whole subtree is never translated.
SKIP_TAGS = frozenset(["script", "style", "svg", "noscript", "iframe", "template"])

# Units as soon as any descendant carries text. `code` and `pre` are deliberately here.
SEMANTIC_TAGS = frozenset(
    [
        "p",
        "h1",
        "h2",
        "h3",
        "h4",
        "h5",
        "h6",
        "li",
        "blockquote",
        "td",
        "th",
        "figcaption",
        "caption",
        "dt",
        "dd",
        "summary",
        "option",
        "legend",
        "code",
        "pre",
    ]
)

# Units only when they hold direct text; otherwise we look inside them.
CONTAINER_TAGS = frozenset(
    [
        "div",
        "span",
        "section",
        "article",
        "aside",
        "header",
        "footer",
        "main",
        "form",
        "nav",
        "figure",
        "details",
    ]
)

DEFAULT_TRANSLATABLE_ATTRIBUTES: Tuple[str, ...] = (
    "alt",
    "title",
    "placeholder",
    "label",
    "aria-label",
    "aria-description",
    "aria-valuetext",
    "aria-roledescription",
    "aria-placeholder",
    "abbr",
    "summary",
    "input[type=button]:value",
    "input[type=submit]:value",
    "input[type=reset]:value",
    "meta[description]",
    "meta[og:title]",
    "meta[og:description]",
    "meta[twitter:title]",
    "meta[twitter:description]",
)

# Emitted bare when empty: <input disabled>, not <input disabled="">.
BOOLEAN_ATTRIBUTES = frozenset(
    [
        "allowfullscreen",
        "async",
        "autofocus",
        "autoplay",
        "checked",
        "controls",
        "default",
        "defer",
        "disabled",
        "formnovalidate",
        "hidden",
        "inert",
        "ismap",
        "itemscope",
        "loop",
        "multiple",
        "muted",
        "nomodule",
        "novalidate",
        "open",
        "playsinline",
        "readonly",
        "required",
        "reversed",
        "selected",
    ]
)


class SourceOrderFormatter(HTMLFormatter):
    """Keeps attributes in source order (bs4 sorts them by default)."""

    def attributes(self, tag: Tag):
        if not tag.attrs:
            return []
        return [
            (key, None if key in BOOLEAN_ATTRIBUTES and value == "" else value) for key, value in tag.attrs.items()
        ]


# Void elements are emitted as <br>, never <br/>; text is escaped minimally (&, <, >).
HTML_FORMATTER = SourceOrderFormatter(
    entity_substitution=EntitySubstitution.substitute_xml,
    void_element_close_prefix=None,
)

_PLAIN_RULE_RE = re.compile(r"[A-Za-z_][\w:.-]*")
_QUALIFIED_RULE_RE = re.compile(
    r"(?P<tag>[A-Za-z][\w-]*)\[(?P<cond>[^\]=]+)(?:=(?P<value>[^\]]*))?\](?::(?P<attr>[A-Za-z_][\w:.-]*))?"
)


@dataclass(frozen=True)
class AttributeRule:
    """
    One allow-list entry.

      alt                        -> `alt` on any tag
      input[type=button]:value   -> `value` on <input type="button">
      meta[description]          -> `content` on <meta name="description"> (or property=)
    """

    attribute: str
    tag: Optional[str] = None
    match_attrs: Tuple[str, ...] = ()
    match_value: Optional[str] = None

    @classmethod
    def parse(cls, entry: str) -> "AttributeRule":
        entry = entry.strip()
        if _PLAIN_RULE_RE.fullmatch(entry):
            return cls(attribute=entry)
        m = _QUALIFIED_RULE_RE.fullmatch(entry)
        if not m:
            raise ValueError(f"Invalid translatable attribute entry: {entry!r}")
        tag = m.group("tag")
        cond = m.group("cond").strip()
        value = m.group("value")
        attr = m.group("attr")
        if value is None:
            # meta[description]: the bracket holds the name/property value
            return cls(
                attribute=attr or "content",
                tag=tag,
                match_attrs=("name", "property"),
                match_value=cond,
            )
        if not attr:
            raise ValueError(f"Attribute entry {entry!r} must name the attribute after ':'")
        return cls(attribute=attr, tag=tag, match_attrs=(cond,), match_value=value.strip().strip("\"'"))

    def applies_to(self, tag: Tag) -> bool:
        if self.tag is not None and tag.name != self.tag:
            return False
        if not self.match_attrs:
            return True
        expected = (self.match_value or "").lower()
        return any(attr_value(tag, a).lower() == expected for a in self.match_attrs)


def parse_attribute_rules(entries: Iterable[str]) -> Tuple[AttributeRule, ...]:
    return tuple(AttributeRule.parse(e) for e in entries)


DEFAULT_ATTRIBUTE_RULES: Tuple[AttributeRule, ...] = parse_attribute_rules(DEFAULT_TRANSLATABLE_ATTRIBUTES)


def parse_html(html_text: str) -> BeautifulSoup:
    """Parse a document or fragment. Attribute values are always plain strings (no class lists)."""
    return BeautifulSoup(html_text, "html.parser", multi_valued_attributes=None)


def serialize(node: Any) -> str:
    if isinstance(node, Tag):
        return node.decode(formatter=HTML_FORMATTER)
    if isinstance(node, NavigableString):
        return node.output_ready(formatter=HTML_FORMATTER)
    return ""


def _inner_html(tag: Tag) -> str:
    """Return inner HTML of a tag (children only), preserving inline tags."""
    return "".join(serialize(x) for x in tag.contents)


def attr_value(tag: Tag, name: str) -> str:
    value = tag.attrs.get(name)
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return " ".join(value)
    return str(value)


def is_text_node(node: Any) -> bool:
    # Comment, Doctype, CData... are PreformattedString subclasses
    return isinstance(node, NavigableString) and not isinstance(node, PreformattedString)


def has_text(tag: Tag) -> bool:
    """True if the tag or any descendant (outside skipped subtrees) has non-whitespace text."""
    for child in tag.contents:
        if is_text_node(child):
            if child.strip():
                return True
        elif isinstance(child, Tag) and child.name not in SKIP_TAGS and has_text(child):
            return True
    return False


def has_direct_text(tag: Tag) -> bool:
    return any(is_text_node(c) and c.strip() for c in tag.contents)


def translatable_attributes(tag: Tag, rules: Sequence[AttributeRule] = DEFAULT_ATTRIBUTE_RULES) -> List[str]:
    """Names of allow-listed attributes carried by ``tag`` with a non-blank value."""
    names: List[str] = []
    for rule in rules:
        if rule.attribute in names or not rule.applies_to(tag):
            continue
        if attr_value(tag, rule.attribute).strip():
            names.append(rule.attribute)
    return names


def allowed_attribute_names(tag: Tag, rules: Sequence[AttributeRule] = DEFAULT_ATTRIBUTE_RULES) -> Set[str]:
    return {rule.attribute for rule in rules if rule.applies_to(tag)}


def is_code_block(tag: Tag) -> bool:
    if tag.name == "code":
        return True
    if tag.name == "pre":
        return any(isinstance(c, Tag) and c.name == "code" for c in tag.contents)
    return False


@dataclass
class TranslationUnit:
    """An atomic translation target: a block's children, or the block itself when it carries attributes."""

    node: Tag
    outer_html: str
    outer: bool
    attributes: List[str] = field(default_factory=list)
    kind: str = "text"
    source_html: str = ""
    fingerprint: str = ""

    @classmethod
    def from_node(cls, node: Tag, rules: Sequence[AttributeRule] = DEFAULT_ATTRIBUTE_RULES) -> "TranslationUnit":
        attributes = translatable_attributes(node, rules)
        outer = serialize(node)
        source = outer if attributes else _inner_html(node)
        return cls(
            node=node,
            outer_html=outer,
            outer=bool(attributes),
            attributes=attributes,
            kind="code" if is_code_block(node) else "text",
            source_html=source,
            fingerprint=fingerprint(source),
        )

    @property
    def tag(self) -> str:
        return self.node.name


def _is_unit(tag: Tag, rules: Sequence[AttributeRule]) -> bool:
    # Attribute translation wins over content-only decomposition.
    if translatable_attributes(tag, rules):
        return True
    if tag.name in SEMANTIC_TAGS:
        return has_text(tag)
    if tag.name in CONTAINER_TAGS:
        return has_direct_text(tag)
    return False


def classify(root: Tag, rules: Sequence[AttributeRule] = DEFAULT_ATTRIBUTE_RULES) -> List[TranslationUnit]:
    """
    Walk the tree depth-first in document order and return its translation units.

    A selected node is taken whole: its descendants are never units themselves.
    """
    units: List[TranslationUnit] = []
    stack: List[Tag] = [root]
    while stack:
        node = stack.pop()
        if node.name in SKIP_TAGS:
            continue
        if not isinstance(node, BeautifulSoup) and _is_unit(node, rules):
            units.append(TranslationUnit.from_node(node, rules))
            continue
        children = [c for c in node.contents if isinstance(c, Tag)]
        stack.extend(reversed(children))
    return units


def apply_translation(
    unit: TranslationUnit,
    translated_html: str,
    rules: Sequence[AttributeRule] = DEFAULT_ATTRIBUTE_RULES,
) -> bool:
    """
    Replace the unit's content in the live tree with ``translated_html``.

    Outer units expect exactly one top-level tag of the same name; only its
    allow-listed attributes are copied onto the node. Returns False when the
    fragment cannot be aligned with the node (the tree is left untouched).
    """
    fragment = parse_html(translated_html)
    node = unit.node

    if unit.outer:
        tags = [c for c in fragment.contents if isinstance(c, Tag)]
        if len(tags) != 1 or tags[0].name != node.name:
            return False
        translated = tags[0]
        for name in allowed_attribute_names(node, rules):
            if name in translated.attrs:
                node[name] = attr_value(translated, name)
        new_children = list(translated.contents)
    else:
        new_children = list(fragment.contents)

    node.clear()
    for child in new_children:
        node.append(child.extract())
    return True


def unit_records(units: List[TranslationUnit]) -> List[Dict[str, Any]]:
    """Flat, JSON-friendly view of classified units."""
    return [
        {
            "id": f"unit_{i:04d}",
            "tag": unit.tag,
            "kind": unit.kind,
            "outer": unit.outer,
            "attributes": unit.attributes,
            "fingerprint": unit.fingerprint,
            "html": unit.source_html,
        }
        for i, unit in enumerate(units)
    ]
