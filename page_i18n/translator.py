from __future__ import annotations

import logging
import os
import re
import threading
import time
from dataclasses import dataclass
from functools import partial
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from openai import APIError, APIStatusError, OpenAI

from .cache import FragmentCache
from .html_parser import DEFAULT_ATTRIBUTE_RULES, AttributeRule, TranslationUnit
from .payload import Payload, decode_payload, encode_payload
from .postproc import restore_attributes
from .qa import ValidationResult, validate_fragment
from .scheduler import TranslationQueue
from .utils import chunked, sha1_text


SYSTEM_PROMPT_STANDARD = """\
You are an expert translator. Translate the text content within the following HTML fragments to {lang}.
**CRITICAL HTML RULES:**
* **DO TRANSLATE** the values of these specific attributes: {attributes}.
* **DO NOT TRANSLATE** the values of any other attributes (e.g., `class`, `id`, `href`, `src`, `data-*`, `style`). Leave them exactly as they are.
* **DO NOT HTML-ESCAPE** the tags. Output tags exactly with angle brackets (e.g., <code>), not as HTML entities (e.g., &lt;code&gt;).
* Keep every <chunk id="N"> wrapper and its id unchanged; return one chunk per chunk received.
* Strictly preserve all HTML tags and structure. Do not wrap your response in markdown formatting."""

SYSTEM_PROMPT_CODE = """\
You are an expert technical translator and senior software engineer.
Your task is to translate the natural language portions of the provided code snippets to {lang} while absolutely preserving the code's executability and structure.

You will receive HTML chunks containing <pre> or <code> blocks.

STRICT RULES:
1. ONLY translate inline comments (e.g., // comment, /* comment */, # comment), JSDoc/Docstrings, and user-facing text inside string literals.
2. DO NOT translate variable names, function names, class names, object keys, or programming keywords (like function, const, return, if, etc.).
3. DO NOT translate or modify any HTML tags, attributes, or <chunk> wrappers provided in the payload.
4. PRESERVE all original formatting, indentation, line breaks, and punctuation exactly as they appear in the source.
5. If a block contains no translatable comments or strings, return it exactly as it was provided."""

USER_PROMPT_TEMPLATE = """\
Translate to: {lang}

{payload}"""


def standard_system_prompt(target_lang: str, rules: Sequence[AttributeRule] = DEFAULT_ATTRIBUTE_RULES) -> str:
    names = list(dict.fromkeys(rule.attribute for rule in rules))
    return SYSTEM_PROMPT_STANDARD.format(lang=target_lang, attributes=", ".join(f"`{n}`" for n in names))


def code_system_prompt(target_lang: str) -> str:
    return SYSTEM_PROMPT_CODE.format(lang=target_lang)


class AuditTrail:
    """Lightweight audit collector for request hashes and per-page outcomes."""

    def __init__(self) -> None:
        self.records: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def record(self, kind: str, payload: Dict[str, Any]) -> None:
        entry = {"kind": kind, **payload}
        with self._lock:
            self.records.append(entry)

    def of_kind(self, kind: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [rec for rec in self.records if rec.get("kind") == kind]

    def as_list(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self.records)


class MissingApiKeyError(RuntimeError):
    """Raised when a required provider API key is missing."""


class ChunkError(RuntimeError):
    """A chunk request that cannot be trusted; the whole chunk is retried."""


class TranslationRequestError(ChunkError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MissingChunkError(ChunkError):
    def __init__(self, index: int):
        super().__init__(f"Missing chunk ID {index} in translation response")
        self.index = index


class ChunkValidationError(ChunkError):
    def __init__(self, index: int, result: ValidationResult):
        super().__init__(f"Validation failed for chunk {index}: {result.reason}")
        self.index = index
        self.result = result


@dataclass
class OpenAIConfig:
    model: str = "gpt-4.1-mini"
    base_url: Optional[str] = None
    temperature: Optional[float] = 0.1
    top_p: Optional[float] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None
    max_tokens_multiplier: int = 1000
    timeout: float = 60.0
    max_retries: int = 0


def build_chat_request(
    cfg: OpenAIConfig,
    target_lang: str,
    system_prompt: str,
    payload: Payload,
) -> Dict[str, Any]:
    """Chat-completion body for one chunk; ``max_tokens`` scales with the number of items sent."""
    body: Dict[str, Any] = {
        "model": cfg.model,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": USER_PROMPT_TEMPLATE.format(lang=target_lang.upper(), payload=payload.text)},
        ],
        "max_tokens": len(payload.mapping) * cfg.max_tokens_multiplier,
    }
    for key in ("temperature", "top_p", "frequency_penalty", "presence_penalty"):
        value = getattr(cfg, key)
        if value is not None:
            body[key] = value
    return body


class ChatClient(Protocol):
    def complete(self, request: Dict[str, Any]) -> str:
        ...


class OpenAIChatClient:
    """
    Chat-completion client for OpenAI or any OpenAI-compatible server.

    Requires OPENAI_API_KEY in env or provided.
    """

    def __init__(self, api_key: Optional[str] = None, cfg: Optional[OpenAIConfig] = None):
        self.api_key = api_key or os.getenv("OPENAI_API_KEY", "")
        if not self.api_key:
            raise MissingApiKeyError(
                "OPENAI_API_KEY missing: set the environment variable or add it to your .env."
            )
        self.cfg = cfg or OpenAIConfig()
        self._client = OpenAI(
            api_key=self.api_key,
            base_url=self.cfg.base_url or None,
            timeout=self.cfg.timeout,
            max_retries=self.cfg.max_retries,
        )

    def complete(self, request: Dict[str, Any]) -> str:
        try:
            resp = self._client.chat.completions.create(**request)
        except APIStatusError as exc:
            raise TranslationRequestError(
                f"OpenAI API error: {exc.status_code} {exc.message}",
                status_code=exc.status_code,
            ) from exc
        except APIError as exc:
            raise TranslationRequestError(f"OpenAI API error: {exc}") from exc

        if not resp.choices:
            return ""
        content = resp.choices[0].message.content or ""
        return _strip_code_fences(content).strip()


class DummyTranslator:
    """Offline client for testing/dev. Does not translate; echoes every chunk back."""

    def __init__(self) -> None:
        self.calls = 0
        self._lock = threading.Lock()

    def complete(self, request: Dict[str, Any]) -> str:
        with self._lock:
            self.calls += 1
        return request["messages"][-1]["content"]


class RateLimiter:
    """Simple thread-safe rate limiter (requests per minute)."""

    def __init__(self, requests_per_minute: Optional[int] = None):
        self.requests_per_minute = requests_per_minute or 0
        self.interval = 60.0 / self.requests_per_minute if self.requests_per_minute > 0 else 0.0
        self._lock = threading.Lock()
        self._last_ts = 0.0

    def wait(self) -> None:
        if self.interval <= 0:
            return
        with self._lock:
            now = time.monotonic()
            delta = now - self._last_ts
            if delta < self.interval:
                time.sleep(self.interval - delta)
            self._last_ts = time.monotonic()


def _strip_code_fences(s: str) -> str:
    fence = re.compile(r"^\s*```(?:html|xml)?\s*([\s\S]*?)\s*```\s*$", re.IGNORECASE)
    m = fence.match(s.strip())
    return m.group(1) if m else s


def _translate_payload(
    client: ChatClient,
    request: Dict[str, Any],
    payload: Payload,
    rules: Sequence[AttributeRule],
) -> Dict[int, str]:
    """One attempt: call the model, decode, validate every item, restore attributes."""
    translations = decode_payload(client.complete(request))

    resolved: Dict[int, str] = {}
    for index, source_html in payload.mapping.items():
        if index not in translations:
            raise MissingChunkError(index)
        candidate = translations[index]
        result = validate_fragment(source_html, candidate)
        if not result.valid:
            raise ChunkValidationError(index, result)
        # Validation sees the raw output; restoration only repairs what validation tolerates.
        resolved[index] = restore_attributes(source_html, candidate, rules)
    return resolved


def translate_units(
    units: Sequence[TranslationUnit],
    target_lang: str,
    client: ChatClient,
    cache: Optional[FragmentCache],
    queue: TranslationQueue,
    *,
    chat_config: Optional[OpenAIConfig] = None,
    chunk_size: int = 10,
    max_retries: int = 3,
    retry_backoff: float = 0.0,
    rate_limiter: Optional[RateLimiter] = None,
    rules: Sequence[AttributeRule] = DEFAULT_ATTRIBUTE_RULES,
    context: str = "",
    audit: Optional[AuditTrail] = None,
    logger: Optional[logging.Logger] = None,
) -> Dict[str, str]:
    """
    Translate units in fixed-size chunks through the queue.

    Returns fingerprint -> translated fragment for every unit that was
    resolved. A chunk is retried as a whole (up to ``max_retries`` extra
    attempts) on any transport, decode or validation failure; an exhausted
    chunk is dropped without affecting its siblings. Each resolved fragment
    is written to the cache as soon as its chunk succeeds.
    """
    chat_config = chat_config or OpenAIConfig()

    # Same fragment as code and as text is sent under both prompts.
    unique: Dict[Tuple[str, str], TranslationUnit] = {}
    for unit in units:
        unique.setdefault((unit.kind, unit.fingerprint), unit)
    text_units = [u for u in unique.values() if u.kind != "code"]
    code_units = [u for u in unique.values() if u.kind == "code"]

    jobs = []
    for label, prompt, group in (
        ("Text", standard_system_prompt(target_lang, rules), text_units),
        ("Code", code_system_prompt(target_lang), code_units),
    ):
        chunks = list(chunked(group, chunk_size))
        for chunk_no, chunk in enumerate(chunks, start=1):
            jobs.append((label, prompt, chunk, chunk_no, len(chunks)))

    results: Dict[str, str] = {}
    results_lock = threading.Lock()

    def _process_chunk(label: str, prompt: str, chunk: List[TranslationUnit], chunk_no: int, total: int) -> int:
        payload = encode_payload([u.source_html for u in chunk])
        if not payload:
            return 0
        request = build_chat_request(chat_config, target_lang, prompt, payload)

        resolved: Dict[int, str] = {}
        attempts = max(1, max_retries + 1)
        for attempt in range(attempts):
            if rate_limiter:
                rate_limiter.wait()
            try:
                resolved = _translate_payload(client, request, payload, rules)
                break
            except Exception as exc:  # noqa: PERF203 - retries intentionally broad
                if logger:
                    logger.warning(
                        "%s -> %s [%s]: chunk %s/%s attempt %s/%s failed: %s",
                        context,
                        target_lang,
                        label,
                        chunk_no,
                        total,
                        attempt + 1,
                        attempts,
                        exc,
                    )
                if attempt < attempts - 1:
                    if retry_backoff > 0:
                        time.sleep(retry_backoff * (2**attempt))
                else:
                    if audit:
                        audit.record(
                            "translation_request",
                            {
                                "page": context,
                                "lang": target_lang,
                                "label": label,
                                "chunk_size": len(payload.mapping),
                                "chunk_hash": sha1_text(payload.text),
                                "attempts": attempts,
                                "ok": False,
                                "error": str(exc),
                            },
                        )
                    raise

        for index, translated in resolved.items():
            unit = chunk[index]
            if cache is not None:
                cache.put(unit.fingerprint, target_lang, translated)
            with results_lock:
                results[unit.fingerprint] = translated

        if audit:
            audit.record(
                "translation_request",
                {
                    "page": context,
                    "lang": target_lang,
                    "label": label,
                    "chunk_size": len(payload.mapping),
                    "chunk_hash": sha1_text(payload.text),
                    "attempts": attempt + 1,
                    "ok": True,
                },
            )
        if logger:
            logger.info("%s -> %s [%s]: chunk %s/%s", context, target_lang, label, chunk_no, total)
        return len(resolved)

    futures = [(job, queue.add(partial(_process_chunk, *job))) for job in jobs]
    for (label, _prompt, chunk, chunk_no, total), future in futures:
        try:
            future.result()
        except Exception as exc:  # noqa: BLE001 - a dropped chunk only degrades its page
            if logger:
                logger.error(
                    "Chunk %s/%s failed for %s -> %s [%s]; %s units dropped: %s",
                    chunk_no,
                    total,
                    context,
                    target_lang,
                    label,
                    len(chunk),
                    exc,
                )
    return results
