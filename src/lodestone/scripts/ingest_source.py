"""CLI for ingesting a single knowledge source for an agent."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from lodestone.app import create_app
from lodestone.sources import (
    DocumentSource,
    SourceSpec,
    SourceStatus,
    TextSource,
    UpdateInterval,
    VideoSource,
    WebsiteSource,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Ingest one knowledge source for an agent")
    parser.add_argument("--agent", dest="agent_id", required=True, help="Agent identifier owning the source")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--text", help="Raw text to ingest")
    group.add_argument("--text-file", type=Path, help="Read raw text from a local file")
    group.add_argument("--url", help="Website URL or sitemap to ingest")
    group.add_argument("--document", type=Path, help="Local document (PDF, XLSX, CSV, DOCX, HTML, TXT)")
    group.add_argument("--document-url", help="Remote document to download and ingest")
    group.add_argument("--video", help="Video URL (stored as a placeholder fragment)")
    parser.add_argument("--title", help="Title for text sources")
    parser.add_argument("--crawl", action="store_true", help="Follow same-site links from --url")
    parser.add_argument(
        "--update-interval",
        choices=[interval.value for interval in UpdateInterval],
        default=UpdateInterval.NEVER.value,
    )
    return parser


def build_spec(args: argparse.Namespace) -> SourceSpec:
    interval = UpdateInterval(args.update_interval)
    if args.text is not None:
        return TextSource(text=args.text, title=args.title, update_interval=interval)
    if args.text_file is not None:
        text = args.text_file.read_text(encoding="utf-8")
        return TextSource(text=text, title=args.title or args.text_file.name, update_interval=interval)
    if args.url is not None:
        return WebsiteSource(url=args.url, crawl_subpages=args.crawl, update_interval=interval)
    if args.document is not None:
        return DocumentSource(
            filename=args.document.name,
            data=args.document.read_bytes(),
            update_interval=interval,
        )
    if args.document_url is not None:
        name = Path(args.document_url.split("?", 1)[0]).name or "document"
        return DocumentSource(filename=name, url=args.document_url, update_interval=interval)
    return VideoSource(url=args.video, update_interval=interval)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    for path in (args.text_file, args.document):
        if path is not None and not path.is_file():  # pragma: no cover - CLI validation
            parser.error(f"File '{path}' does not exist")

    app = create_app()
    state = app.state.services
    try:
        source = state.orchestrator.add_source(args.agent_id, build_spec(args))
    finally:
        state.close()

    if source.status is SourceStatus.READY:
        count = source.fragment_count
        print(f"Ingested {count} fragment{'s' if count != 1 else ''} from {source.origin} (source {source.id})")
        return 0
    print(f"Ingestion failed for {source.origin}: {source.error_message}", file=sys.stderr)
    return 1


if __name__ == "__main__":  # pragma: no cover - CLI entry
    sys.exit(main())
