import pytest

from page_i18n.html_parser import (
    AttributeRule,
    apply_translation,
    classify,
    parse_attribute_rules,
    parse_html,
    serialize,
    unit_records,
)


def test_classify_semantic_blocks_in_document_order():
    soup = parse_html("<body><h1>Title</h1><p>Hello <em>world</em>.</p><script>var x = 1;</script></body>")
    units = classify(soup)
    assert [u.tag for u in units] == ["h1", "p"]
    assert units[1].source_html == "Hello <em>world</em>."
    assert not units[1].outer
    assert units[1].kind == "text"


def test_classify_container_with_direct_text_is_taken_whole():
    units = classify(parse_html("<div>Loose text<p>Para</p></div>"))
    assert [u.tag for u in units] == ["div"]


def test_classify_container_text_claims_inline_children():
    units = classify(parse_html("<div>Text<span>more</span></div>"))
    assert [u.tag for u in units] == ["div"]
    assert units[0].source_html == "Text<span>more</span>"


def test_classify_descends_into_containers_without_direct_text():
    units = classify(parse_html("<section><div><p>A</p><p>B</p></div></section>"))
    assert [u.source_html for u in units] == ["A", "B"]


def test_classify_code_blocks():
    html = "<pre><code>x = 1  # set x</code></pre><code>y()</code><p>Use <code>z</code> here</p>"
    units = classify(parse_html(html))
    assert [u.tag for u in units] == ["pre", "code", "p"]
    assert [u.kind for u in units] == ["code", "code", "text"]


def test_classify_ignores_comments_whitespace_and_skipped_subtrees():
    html = "<p><!-- note --></p><p>   </p><noscript><p>Enable JS</p></noscript><style>p {}</style>"
    assert classify(parse_html(html)) == []


def test_classify_attribute_carrier_becomes_outer_unit():
    units = classify(parse_html('<a href="#" aria-label="Close"><svg><path d="M0 0"></path></svg></a>'))
    assert len(units) == 1
    unit = units[0]
    assert unit.tag == "a"
    assert unit.outer
    assert unit.attributes == ["aria-label"]
    assert unit.source_html == unit.outer_html


def test_void_element_serializes_without_slash_in_source_order():
    units = classify(parse_html('<img src="a.png" alt="A cat">'))
    assert units[0].source_html == '<img src="a.png" alt="A cat">'


def test_classify_qualified_and_meta_rules():
    html = (
        '<head><meta name="description" content="About us"><meta name="viewport" content="width=device-width"></head>'
        '<form><input type="submit" value="Send"><input type="text" value="keep"></form>'
    )
    units = classify(parse_html(html))
    assert [(u.tag, u.attributes) for u in units] == [("meta", ["content"]), ("input", ["value"])]


def test_attribute_rule_parse_forms():
    assert AttributeRule.parse("alt") == AttributeRule(attribute="alt")

    rule = AttributeRule.parse("input[type=button]:value")
    assert (rule.attribute, rule.tag, rule.match_attrs, rule.match_value) == ("value", "input", ("type",), "button")

    meta = AttributeRule.parse("meta[og:title]")
    assert (meta.attribute, meta.tag, meta.match_attrs, meta.match_value) == (
        "content",
        "meta",
        ("name", "property"),
        "og:title",
    )


@pytest.mark.parametrize("entry", ["input[type=button]", "[oops", "alt value"])
def test_attribute_rule_rejects_malformed_entries(entry):
    with pytest.raises(ValueError):
        AttributeRule.parse(entry)


def test_attribute_rule_applies_to():
    soup = parse_html('<input type="submit" value="Go"><meta property="og:title" content="Hi">')
    submit, meta = soup.find("input"), soup.find("meta")
    button_rule, submit_rule, og_rule = parse_attribute_rules(
        ["input[type=button]:value", "input[type=submit]:value", "meta[og:title]"]
    )
    assert not button_rule.applies_to(submit)
    assert submit_rule.applies_to(submit)
    assert og_rule.applies_to(meta)
    assert not og_rule.applies_to(submit)


def test_custom_rules_restrict_outer_units():
    rules = parse_attribute_rules(["alt"])
    units = classify(parse_html('<a href="/" title="Home"><img src="x.png"></a><img src="y.png" alt="Logo">'), rules)
    assert [u.tag for u in units] == ["img"]


def test_apply_translation_inner():
    soup = parse_html("<p>Hello <em>world</em>.</p>")
    unit = classify(soup)[0]
    assert apply_translation(unit, "Bonjour <em>monde</em>.")
    assert serialize(soup) == "<p>Bonjour <em>monde</em>.</p>"


def test_apply_translation_outer_copies_only_allowed_attributes():
    soup = parse_html('<img src="a.png" alt="A cat" class="pic">')
    unit = classify(soup)[0]
    assert apply_translation(unit, '<img src="evil.png" alt="Un chat" class="x">')
    assert serialize(soup) == '<img src="a.png" alt="Un chat" class="pic">'


def test_apply_translation_outer_with_content():
    soup = parse_html('<a href="/x" title="Go home">Home</a>')
    unit = classify(soup)[0]
    assert apply_translation(unit, '<a href="/x" title="Retour">Accueil</a>')
    assert serialize(soup) == '<a href="/x" title="Retour">Accueil</a>'


def test_apply_translation_outer_shape_mismatch_leaves_tree():
    soup = parse_html('<img src="a.png" alt="A cat">')
    unit = classify(soup)[0]
    assert not apply_translation(unit, "<span>Un chat</span>")
    assert serialize(soup) == '<img src="a.png" alt="A cat">'


def test_unit_records_and_fingerprints():
    units = classify(parse_html("<p>Same</p><p>Same</p><p>Other</p>"))
    records = unit_records(units)
    assert [r["id"] for r in records] == ["unit_0000", "unit_0001", "unit_0002"]
    assert records[0]["fingerprint"] == records[1]["fingerprint"]
    assert records[0]["fingerprint"] != records[2]["fingerprint"]
    assert records[2]["html"] == "Other"


def test_boolean_attributes_serialize_bare():
    html = '<input type="text" disabled><img src="a.png" alt=""><details open><summary>More</summary></details>'
    assert serialize(parse_html(html)) == html
