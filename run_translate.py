from __future__ import annotations

import argparse
from pathlib import Path
from typing import Any, Dict, Iterator, Tuple

from dotenv import load_dotenv

from page_i18n import storage
from page_i18n.cache import FragmentCache
from page_i18n.config import ConfigurationError, TranslationSettings, load_settings
from page_i18n.pipeline import GeneratedPage, PagePipeline
from page_i18n.scheduler import TranslationQueue
from page_i18n.translator import (
    AuditTrail,
    ChatClient,
    DummyTranslator,
    MissingApiKeyError,
    OpenAIChatClient,
)
from page_i18n.utils import setup_logger


def build_client(provider: str, settings: TranslationSettings) -> ChatClient:
    provider = provider.lower()
    if provider == "openai":
        return OpenAIChatClient(cfg=settings.openai)
    if provider == "dummy":
        return DummyTranslator()
    raise ConfigurationError(f"Unknown translation provider: {provider}")


def iter_rendered_pages(pages_root: str | Path) -> Iterator[Tuple[str, str]]:
    root = Path(pages_root)
    if not root.is_dir():
        raise FileNotFoundError(f"Pages directory not found: {root}")
    for path in sorted(root.rglob("*.html")):
        yield str(path), storage.read_text(path)


def write_generated_page(page: GeneratedPage, settings: TranslationSettings) -> Path:
    # Generated pathnames live under pages_root; re-home them when output_root differs.
    rel = Path(page.path.pathname).relative_to(settings.pages_root)
    out_path = Path(settings.output_root) / rel
    storage.write_text(out_path, page.html)
    return out_path


def main() -> None:
    parser = argparse.ArgumentParser(description="Translate rendered HTML pages into the configured languages.")
    parser.add_argument("--config", type=str, default="config.json", help="Path to config.json")
    parser.add_argument("--provider", type=str, default="", help="Override provider (openai|dummy)")
    args = parser.parse_args()

    load_dotenv()

    cfg: Dict[str, Any] = storage.read_json(args.config)
    paths = cfg.get("paths", {})
    logger = setup_logger(paths.get("logs_dir", "logs"))
    audit = AuditTrail()

    try:
        settings = load_settings(cfg)
        client = build_client(args.provider or cfg.get("provider", "openai"), settings)
    except (ConfigurationError, MissingApiKeyError) as exc:
        logger.error(str(exc))
        raise SystemExit(1)

    logger.info(
        "Translating %s from %s into %s",
        settings.pages_root,
        settings.source_language,
        ", ".join(settings.languages_to_generate),
    )

    written = 0
    with FragmentCache(settings.cache_file, logger=logger) as cache, TranslationQueue(settings.concurrency) as queue:
        pipeline = PagePipeline(settings, client, cache, queue, audit=audit, logger=logger)
        try:
            # Materialize the page list first: generated pages land inside pages_root too.
            for pathname, html in list(iter_rendered_pages(settings.pages_root)):
                for page in pipeline.process_page(pathname, html):
                    out_path = write_generated_page(page, settings)
                    written += 1
                    logger.info("   Wrote %s", out_path)
        except Exception:
            logger.exception("Translation run failed.")
            raise SystemExit(1)

    page_rows = audit.of_kind("page")
    skipped = sum(1 for row in page_rows if not row.get("ok"))
    logger.info("Done: %s pages written, %s page/language passes skipped.", written, skipped)

    audit_path = paths.get("audit_report", "logs/audit.json")
    storage.write_json(audit_path, audit.as_list())
    logger.info(f"   Audit trail saved to: {audit_path}")

    report_path = paths.get("report_csv", "logs/pages.csv")
    storage.write_report_csv(report_path, page_rows)
    logger.info(f"   Page report saved to: {report_path}")


if __name__ == "__main__":
    main()
