#!/usr/bin/env python3
"""
Paperscribe — Command Line Interface

Usage:
    python cli.py scan
    python cli.py process 123 --prompt "Focus on the invoice total"
    python cli.py analyze letter.txt --prompt "Who sent this and when?"
    python cli.py status
    python cli.py serve --port 8080
"""
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from config.settings import ConfigurationError, config
from orchestrator.services import build_services


def setup_logging(debug: bool = False):
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )


async def _with_services(action):
    services = build_services(config)
    try:
        return await action(services)
    finally:
        await services.close()


def cmd_scan(args):
    """Run one full scan of the archive."""
    summary = asyncio.run(_with_services(lambda s: s.pipeline.scan_documents()))
    print(json.dumps(summary, indent=2))


def cmd_process(args):
    """Process one document, as if it arrived by webhook."""
    outcome = asyncio.run(_with_services(
        lambda s: s.pipeline.process_document(args.document_id, custom_prompt=args.prompt)
    ))
    print(f"Document {outcome.document_id}: {outcome.status}")
    if outcome.error:
        print(f"  error: {outcome.error}")
    if outcome.plan is not None:
        print(json.dumps(outcome.plan.to_payload(), indent=2, default=str))


def cmd_analyze(args):
    """Ad-hoc analysis of a local text file. Nothing is written anywhere."""
    content = Path(args.file).read_text(encoding="utf-8", errors="replace")
    outcome = asyncio.run(_with_services(
        lambda s: s.provider.analyze_ad_hoc(content, args.prompt)
    ))
    print(json.dumps(outcome.to_dict(), indent=2, ensure_ascii=False))


def cmd_status(args):
    """Check Paperscribe system status."""
    print("Paperscribe — System Status")
    print("=" * 40)

    try:
        config.validate()
        print(f"✅ Config: provider={config.ai.provider}, model={config.ai.model}")
    except ConfigurationError as e:
        print(f"❌ Config: {e}")
        return

    async def check(services):
        reachable = await services.archive.ping()
        print(f"{'✅' if reachable else '❌'} Archive: {config.archive.api_url}")
        totals = services.ledger.token_totals()
        print(
            f"✅ Ledger: {totals['measured_calls']} measured calls "
            f"({totals['total_tokens']} tokens), {totals['unmeasured_calls']} unmeasured"
        )
        for entry in services.ledger.recent_history(limit=5):
            print(f"   {entry['created_at']}  #{entry['document_id']}  {entry['title']}")

    asyncio.run(_with_services(check))
    print(f"\nDebug mode: {config.debug}")


def cmd_serve(args):
    """Run the API server with the embedded scheduler."""
    import uvicorn

    uvicorn.run("outputs.dashboard:app", host=args.host, port=args.port, log_level="info")


def main():
    parser = argparse.ArgumentParser(description="Paperscribe — AI metadata for your document archive")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("scan", help="Run one full document scan")

    process_parser = subparsers.add_parser("process", help="Process a single document")
    process_parser.add_argument("document_id", type=int, help="Archive document id")
    process_parser.add_argument("--prompt", type=str, help="Custom analysis prompt")

    analyze_parser = subparsers.add_parser("analyze", help="Ad-hoc analysis of a text file")
    analyze_parser.add_argument("file", type=str, help="Path to a text file")
    analyze_parser.add_argument("--prompt", type=str, required=True, help="Analysis prompt")

    subparsers.add_parser("status", help="Check system status")

    serve_parser = subparsers.add_parser("serve", help="Run the API server")
    serve_parser.add_argument("--host", type=str, default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=8080)

    args = parser.parse_args()
    setup_logging(args.debug or config.debug)

    commands = {
        "scan": cmd_scan,
        "process": cmd_process,
        "analyze": cmd_analyze,
        "status": cmd_status,
        "serve": cmd_serve,
    }
    command = commands.get(args.command)
    if command is None:
        parser.print_help()
        return
    try:
        command(args)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
