from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from .cache import FragmentCache
from .config import TranslationSettings
from .html_parser import apply_translation, classify, parse_html, serialize
from .links import localize_links
from .scheduler import TranslationQueue
from .translator import AuditTrail, ChatClient, RateLimiter, translate_units
from .utils import to_posix


@dataclass(frozen=True)
class PagePath:
    pathname: str
    dirname: str
    filename: str

    @classmethod
    def from_pathname(cls, pathname: str) -> "PagePath":
        return cls(pathname=pathname, dirname=os.path.dirname(pathname), filename=os.path.basename(pathname))


@dataclass
class GeneratedPage:
    path: PagePath
    html: str
    language: str

    def as_dict(self) -> Dict[str, Any]:
        return {
            "path": {
                "pathname": self.path.pathname,
                "dirname": self.path.dirname,
                "filename": self.path.filename,
            },
            "html": self.html,
        }


class PagePipeline:
    """
    Per-page glue: classify -> cache lookup -> batch translation -> rebuild -> localize links.

    Each (page, language) pass parses its own tree from the rendered HTML, so
    passes never share mutable nodes. The cache and the queue are shared by
    the whole run.
    """

    def __init__(
        self,
        settings: TranslationSettings,
        client: ChatClient,
        cache: Optional[FragmentCache],
        queue: TranslationQueue,
        audit: Optional[AuditTrail] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.settings = settings
        self.client = client
        self.cache = cache
        self.queue = queue
        self.audit = audit
        self.logger = logger
        self.rate_limiter = RateLimiter(settings.requests_per_minute)

    def relative_path(self, pathname: str) -> str:
        return to_posix(os.path.relpath(pathname, self.settings.pages_root))

    def should_skip(self, pathname: str) -> bool:
        rel = self.relative_path(pathname)
        # Already a generated variant: translating it again would nest /fr/fr/...
        for lang in self.settings.languages_to_generate:
            if rel == lang or rel.startswith(lang + "/"):
                return True
        return any(pattern in pathname for pattern in self.settings.exclude)

    def output_pathname(self, pathname: str, lang: str) -> str:
        return os.path.join(self.settings.pages_root, lang, self.relative_path(pathname))

    def process_page(self, pathname: str, html: str) -> List[GeneratedPage]:
        """Return one generated page per target language (fewer if a pass fails)."""
        if self.should_skip(pathname):
            return []

        rel = self.relative_path(pathname)
        pages: List[GeneratedPage] = []
        for lang in self.settings.languages_to_generate:
            translated = self.translate_document(html, lang, rel)
            if translated is None:
                if self.logger:
                    self.logger.warning("Partial translation failure for %s to %s. Skipping page generation.", rel, lang)
                continue
            pages.append(
                GeneratedPage(
                    path=PagePath.from_pathname(self.output_pathname(pathname, lang)),
                    html=translated,
                    language=lang,
                )
            )
        return pages

    def translate_document(self, html: str, lang: str, rel: str) -> Optional[str]:
        """Translate one rendered page into ``lang``. None when any unit stays unresolved."""
        soup = parse_html(html)
        units = classify(soup, self.settings.rules)

        translations: Dict[str, str] = {}
        pending = []
        for unit in units:
            cached = self.cache.get(unit.fingerprint, lang) if self.cache is not None else None
            if cached is not None:
                translations[unit.fingerprint] = cached
            else:
                pending.append(unit)
        n_cached = len(units) - len(pending)

        if pending:
            translations.update(
                translate_units(
                    pending,
                    lang,
                    client=self.client,
                    cache=self.cache,
                    queue=self.queue,
                    chat_config=self.settings.openai,
                    chunk_size=self.settings.chunk_size,
                    max_retries=self.settings.retries,
                    retry_backoff=self.settings.retry_backoff,
                    rate_limiter=self.rate_limiter,
                    rules=self.settings.rules,
                    context=rel,
                    audit=self.audit,
                    logger=self.logger,
                )
            )
            if self.cache is not None:
                self.cache.flush()

        missing = 0
        for unit in units:
            translated = translations.get(unit.fingerprint)
            if translated is None or not apply_translation(unit, translated, self.settings.rules):
                missing += 1
                if self.logger:
                    self.logger.warning("Translation missing for <%s> block in %s to %s", unit.tag, rel, lang)

        if self.audit:
            self.audit.record(
                "page",
                {
                    "page": rel,
                    "lang": lang,
                    "units": len(units),
                    "cached": n_cached,
                    "requested": len(pending),
                    "missing": missing,
                    "ok": missing == 0,
                },
            )
        if missing:
            return None

        localize_links(soup, lang, rel)
        return serialize(soup)

    def process_site(self, pages: Iterable[Tuple[str, str]]) -> Iterator[GeneratedPage]:
        for pathname, html in pages:
            yield from self.process_page(pathname, html)
