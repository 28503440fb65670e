from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .html_parser import DEFAULT_ATTRIBUTE_RULES, AttributeRule, parse_attribute_rules
from .translator import OpenAIConfig


class ConfigurationError(ValueError):
    """Invalid or missing settings. Raised at setup, never retried."""


@dataclass
class TranslationSettings:
    source_language: str
    target_languages: List[str]
    pages_root: str = "dist"
    output_root: str = "dist"
    cache_file: Optional[str] = ".cache/i18n.json"
    exclude: List[str] = field(default_factory=list)
    chunk_size: int = 10
    retries: int = 3
    concurrency: int = 4
    requests_per_minute: int = 0
    retry_backoff: float = 1.0
    rules: Tuple[AttributeRule, ...] = DEFAULT_ATTRIBUTE_RULES
    openai: OpenAIConfig = field(default_factory=OpenAIConfig)

    @property
    def languages_to_generate(self) -> List[str]:
        return [lang for lang in self.target_languages if lang != self.source_language]


def _int_option(section: Dict[str, Any], key: str, default: int, minimum: int = 1) -> int:
    raw = section.get(key, default)
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"'{key}' must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ConfigurationError(f"'{key}' must be >= {minimum}, got {value}")
    return value


def _optional_float(section: Dict[str, Any], key: str, default: Optional[float] = None) -> Optional[float]:
    raw = section.get(key, default)
    if raw is None:
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"'{key}' must be a number, got {raw!r}") from None


def _validate_languages(tcfg: Dict[str, Any]) -> Tuple[str, List[str]]:
    source = tcfg.get("source_language")
    if not isinstance(source, str) or not source.strip():
        raise ConfigurationError('Translation requires a "source_language" setting.')
    targets = tcfg.get("target_languages")
    if not isinstance(targets, list) or not targets:
        raise ConfigurationError('Translation requires a non-empty "target_languages" list.')
    if not all(isinstance(t, str) and t.strip() for t in targets):
        raise ConfigurationError('"target_languages" must only contain language codes.')
    return source.strip().lower(), list(dict.fromkeys(t.strip().lower() for t in targets))


def load_settings(cfg: Dict[str, Any]) -> TranslationSettings:
    """Build validated settings from the parsed config.json."""
    if not isinstance(cfg, dict):
        raise ConfigurationError("The configuration must be a JSON object.")
    tcfg = cfg.get("translation") or {}
    paths = cfg.get("paths") or {}
    sched = tcfg.get("scheduling") or {}
    ocfg = tcfg.get("openai") or {}

    source, targets = _validate_languages(tcfg)

    exclude = tcfg.get("exclude") or []
    if not isinstance(exclude, list):
        raise ConfigurationError('"exclude" must be a list of path patterns.')

    attributes = tcfg.get("attributes")
    if attributes is not None and not isinstance(attributes, list):
        raise ConfigurationError('"attributes" must be a list of allow-list entries.')
    try:
        rules = parse_attribute_rules(attributes) if attributes else DEFAULT_ATTRIBUTE_RULES
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc

    openai_cfg = OpenAIConfig(
        model=ocfg.get("model", "gpt-4.1-mini"),
        base_url=ocfg.get("base_url") or None,
        temperature=_optional_float(ocfg, "temperature", 0.1),
        top_p=_optional_float(ocfg, "top_p"),
        frequency_penalty=_optional_float(ocfg, "frequency_penalty"),
        presence_penalty=_optional_float(ocfg, "presence_penalty"),
        max_tokens_multiplier=_int_option(tcfg, "max_tokens_multiplier", 1000),
        timeout=_optional_float(ocfg, "timeout", 60.0) or 60.0,
        max_retries=_int_option(ocfg, "max_retries", 0, minimum=0),
    )

    pages_root = str(paths.get("pages_root", "dist"))
    return TranslationSettings(
        source_language=source,
        target_languages=targets,
        pages_root=pages_root,
        output_root=str(paths.get("output_root", pages_root)),
        cache_file=paths.get("cache_file", str(Path(".cache") / "i18n.json")),
        exclude=[str(p) for p in exclude],
        chunk_size=_int_option(tcfg, "chunk_size", 10),
        retries=_int_option(tcfg, "retries", 3, minimum=0),
        concurrency=_int_option(tcfg, "concurrency", 4),
        requests_per_minute=_int_option(sched, "requests_per_minute", 0, minimum=0),
        retry_backoff=_optional_float(sched, "retry_backoff_seconds", 1.0) or 0.0,
        rules=rules,
        openai=openai_cfg,
    )
