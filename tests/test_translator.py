import threading

import pytest

from page_i18n.html_parser import classify, parse_html
from page_i18n.payload import decode_payload, encode_payload
from page_i18n.scheduler import TranslationQueue
from page_i18n.translator import (
    AuditTrail,
    DummyTranslator,
    MissingApiKeyError,
    OpenAIChatClient,
    OpenAIConfig,
    TranslationRequestError,
    _strip_code_fences,
    build_chat_request,
    code_system_prompt,
    standard_system_prompt,
    translate_units,
)


class FakeClient:
    """Answers every chunk with ``respond(body)``; ``fail(call_no, request)`` may raise first."""

    def __init__(self, respond=lambda body: body, fail=None):
        self.respond = respond
        self.fail = fail
        self.requests = []
        self._lock = threading.Lock()

    @property
    def calls(self):
        return len(self.requests)

    def complete(self, request):
        with self._lock:
            self.requests.append(request)
            call_no = len(self.requests)
        if self.fail:
            self.fail(call_no, request)
        chunks = decode_payload(request["messages"][-1]["content"])
        return "\n".join(f'<chunk id="{i}">{self.respond(body)}</chunk>' for i, body in chunks.items())


def to_french(body):
    return body.replace("Hello", "Bonjour").replace("world", "monde").replace("See", "Voir")


def units_of(html):
    return classify(parse_html(html))


def run(units, client, cache=None, concurrency=2, **kwargs):
    kwargs.setdefault("retry_backoff", 0.0)
    with TranslationQueue(concurrency) as queue:
        return translate_units(units, "fr", client=client, cache=cache, queue=queue, **kwargs)


def test_translates_and_writes_cache(memory_cache):
    units = units_of("<p>Hello world</p><p>Hello there</p>")
    cache = memory_cache
    results = run(units, FakeClient(to_french), cache=cache)

    assert results == {units[0].fingerprint: "Bonjour monde", units[1].fingerprint: "Bonjour there"}
    assert cache.get(units[0].fingerprint, "fr") == "Bonjour monde"
    assert cache.get(units[1].fingerprint, "fr") == "Bonjour there"


def test_retry_then_success():
    def fail_first(call_no, request):
        if call_no == 1:
            raise TranslationRequestError("OpenAI API error: 503 overloaded", status_code=503)

    client = FakeClient(to_french, fail=fail_first)
    units = units_of("<p>Hello world</p>")
    results = run(units, client, max_retries=2)
    assert results == {units[0].fingerprint: "Bonjour monde"}
    assert client.calls == 2


def test_exhausted_retries_drop_chunk(memory_cache):
    def always(call_no, request):
        raise TranslationRequestError("OpenAI API error: 500 boom", status_code=500)

    client = FakeClient(fail=always)
    cache = memory_cache
    audit = AuditTrail()
    results = run(units_of("<p>Hello world</p>"), client, cache=cache, max_retries=2, audit=audit)

    assert results == {}
    assert client.calls == 3
    assert len(cache) == 0
    (record,) = audit.of_kind("translation_request")
    assert record["ok"] is False
    assert record["attempts"] == 3


def test_missing_chunk_fails_the_whole_chunk():
    class DropsSecond(FakeClient):
        def complete(self, request):
            super().complete(request)
            return '<chunk id="0">Bonjour monde</chunk>'

    client = DropsSecond()
    audit = AuditTrail()
    units = units_of("<p>Hello world</p><p>Second line</p>")
    results = run(units, client, max_retries=1, audit=audit)

    assert results == {}
    assert client.calls == 2
    assert "Missing chunk ID 1" in audit.of_kind("translation_request")[0]["error"]


def test_partial_failure_keeps_sibling_chunks():
    def fail_second(call_no, request):
        if "Second" in request["messages"][-1]["content"]:
            raise TranslationRequestError("OpenAI API error: 500 boom", status_code=500)

    units = units_of("<p>Hello world</p><p>Second line</p>")
    results = run(units, FakeClient(to_french, fail=fail_second), chunk_size=1, max_retries=1)
    assert results == {units[0].fingerprint: "Bonjour monde"}


def test_identical_fragments_are_sent_once():
    client = FakeClient()
    units = units_of("<p>Same</p><p>Same</p><p>Other</p>")
    results = run(units, client)

    assert client.calls == 1
    sent = encode_payload(["Same", "Other"]).text
    assert sent in client.requests[0]["messages"][-1]["content"]
    assert set(results) == {units[0].fingerprint, units[2].fingerprint}


def test_code_blocks_use_code_prompt():
    client = FakeClient()
    units = units_of("<pre><code>x = 1  # set x</code></pre><p>Hello there</p>")
    results = run(units, client)

    assert client.calls == 2
    prompts = {r["messages"][0]["content"] for r in client.requests}
    assert prompts == {standard_system_prompt("fr"), code_system_prompt("fr")}
    assert len(results) == 2


def test_validation_runs_before_restoration():
    units = units_of('<p>See <a href="/docs" data-track="nav">docs</a> now</p>')

    client = FakeClient(lambda body: 'Voir <a href="/docs">la doc</a> maintenant')
    results = run(units, client)
    assert results[units[0].fingerprint] == 'Voir <a href="/docs" data-track="nav">la doc</a> maintenant'

    bad = FakeClient(lambda body: 'Voir <a href="/doks" data-track="nav">la doc</a> maintenant')
    assert run(units, bad, max_retries=1) == {}
    assert bad.calls == 2


def test_validation_failure_is_retried():
    answers = iter(["Bonjour <b>monde</b>", "Bonjour monde"])
    client = FakeClient(lambda body: next(answers))
    units = units_of("<p>Hello world</p>")
    results = run(units, client, concurrency=1, max_retries=1)
    assert results == {units[0].fingerprint: "Bonjour monde"}
    assert client.calls == 2


def test_dummy_translator_echoes_sources():
    client = DummyTranslator()
    units = units_of("<p>Hello <em>world</em></p>")
    assert run(units, client) == {units[0].fingerprint: "Hello <em>world</em>"}
    assert client.calls == 1


def test_build_chat_request():
    cfg = OpenAIConfig(model="gpt-test", temperature=0.2, top_p=None, presence_penalty=0.5)
    payload = encode_payload(["Hello", "World"])
    body = build_chat_request(cfg, "ja", "system", payload)

    assert body["model"] == "gpt-test"
    assert body["max_tokens"] == 2000
    assert body["temperature"] == 0.2
    assert body["presence_penalty"] == 0.5
    assert "top_p" not in body
    assert body["messages"][0] == {"role": "system", "content": "system"}
    assert body["messages"][1]["content"].startswith('Translate to: JA\n\n<chunk id="0">')


def test_standard_prompt_lists_attributes():
    prompt = standard_system_prompt("fr")
    assert "`alt`" in prompt
    assert "`content`" in prompt
    assert "to fr." in prompt


def test_strip_code_fences():
    assert _strip_code_fences('```html\n<chunk id="0">x</chunk>\n```') == '<chunk id="0">x</chunk>'
    assert _strip_code_fences("plain") == "plain"


def test_openai_client_requires_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(MissingApiKeyError):
        OpenAIChatClient()


def test_default_retry_budget_is_four_attempts():
    def always(call_no, request):
        raise TranslationRequestError("OpenAI API error: 500 boom", status_code=500)

    client = FakeClient(fail=always)
    assert run(units_of("<p>Hello world</p>"), client) == {}
    assert client.calls == 4


def test_same_fragment_as_code_and_text_uses_both_prompts():
    client = FakeClient()
    units = units_of("<pre><code>foo bar baz</code></pre><p><code>foo bar baz</code></p>")
    assert units[0].fingerprint == units[1].fingerprint
    assert [u.kind for u in units] == ["code", "text"]

    results = run(units, client)

    assert client.calls == 2
    prompts = {r["messages"][0]["content"] for r in client.requests}
    assert prompts == {standard_system_prompt("fr"), code_system_prompt("fr")}
    assert results == {units[0].fingerprint: "<code>foo bar baz</code>"}


def test_options_after_queue_are_keyword_only():
    with TranslationQueue(1) as queue:
        with pytest.raises(TypeError):
            translate_units([], "fr", DummyTranslator(), None, queue, OpenAIConfig())
