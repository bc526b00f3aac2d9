"""
CLI Entry Point for ASTER

    aster standardize FILE... [--store] [--output OUT]
    aster models
    aster ask PROMPT --file F [--file F ...]
    aster report --file F [--file F ...] [--json OUT] [--markdown OUT] [--verify]
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .config import AsterConfig, load_config
from .documents import StandardizedDocument, usable_documents
from .logging_utils import ReportEventLog, configure_logging
from .ollama_client import InferenceCancelled, InferenceClient, InferenceError
from .orchestrator import ReportOrchestrator, ReportParseError, ReportVerificationError
from .report import export_report_json, export_report_markdown
from .standardizers import standardize_path
from .storage import JsonFileStore, load_documents, save_blocks, save_documents
from .version import get_short_banner

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build argument parser for the aster CLI."""
    parser = argparse.ArgumentParser(
        prog="aster",
        description="Standardize documents and build reports with a local Ollama model",
    )
    parser.add_argument("--version", action="version", version=get_short_banner())
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to config file (default: search for aster.yaml)"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)"
    )
    parser.add_argument(
        "--model",
        type=str,
        help="Ollama model name (default: phi3:medium)"
    )
    parser.add_argument(
        "--port",
        type=int,
        help="Ollama port (default: 11434)"
    )
    parser.add_argument(
        "--stream",
        action="store_true",
        help="Use streaming mode"
    )

    commands = parser.add_subparsers(dest="command", required=True)

    std = commands.add_parser("standardize", help="Convert files to standardized JSON")
    std.add_argument("files", nargs="+", type=Path)
    std.add_argument("--store", action="store_true", help="Save results in the session store")
    std.add_argument("--output", type=Path, help="Write standardized documents to this JSON file")

    commands.add_parser("models", help="List models installed on the Ollama server")

    ask = commands.add_parser("ask", help="Ask a question about files")
    ask.add_argument("prompt")
    ask.add_argument("--file", dest="files", action="append", type=Path, default=[])

    report = commands.add_parser("report", help="Decompose files into a report and generate it")
    report.add_argument("--file", dest="files", action="append", type=Path, default=[])
    report.add_argument("--prompt", help="Custom decomposition prompt")
    report.add_argument("--json", dest="json_out", type=Path, help="Export report as JSON")
    report.add_argument("--markdown", dest="markdown_out", type=Path, help="Export report as Markdown")
    report.add_argument("--verify", action="store_true", help="Compute a credibility score")
    report.add_argument("--store", action="store_true", help="Save blocks in the session store")

    return parser


def resolve_config(args: argparse.Namespace) -> AsterConfig:
    """Resolve configuration with precedence: CLI > ENV > CONFIG > DEFAULTS"""
    config = load_config(args.config)
    if args.log_level:
        config.logging.level = args.log_level
    if args.model:
        config.inference.model = args.model
    if args.port:
        config.inference.port = args.port
    if args.stream:
        config.inference.streaming = True
    return config


def _progress(message: str) -> None:
    print(f"  ... {message}", file=sys.stderr)


async def _standardize_files(paths: List[Path]) -> List[StandardizedDocument]:
    documents = []
    for path in paths:
        doc = await standardize_path(path)
        if doc.is_error:
            print(f"{path.name}: error: {doc.error}", file=sys.stderr)
        else:
            print(f"{path.name}: {doc.format.value}", file=sys.stderr)
        documents.append(doc)
    return documents


# =============================================================================
# Commands
# =============================================================================

async def cmd_standardize(args: argparse.Namespace, config: AsterConfig) -> int:
    documents = await _standardize_files(args.files)

    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(
            json.dumps([doc.to_dict() for doc in documents], indent=2, ensure_ascii=False, default=str),
            encoding="utf-8",
        )
        print(f"Wrote {len(documents)} documents to {args.output}")

    if args.store:
        store = JsonFileStore(config.storage.path)
        names = {doc.filename for doc in documents}
        kept = [doc for doc in await load_documents(store) if doc.filename not in names]
        await save_documents(store, kept + documents)
        print(f"Stored {len(documents)} documents in {config.storage.path}")

    return 0 if usable_documents(documents) else 1


async def cmd_models(args: argparse.Namespace, config: AsterConfig) -> int:
    client = InferenceClient(config.inference)
    for name in await client.list_models():
        print(name)
    return 0


async def cmd_ask(args: argparse.Namespace, config: AsterConfig) -> int:
    documents = await _standardize_files(args.files)
    client = InferenceClient(config.inference)
    answer = await client.query(
        args.prompt,
        usable_documents(documents),
        config.report.default_context,
        on_progress=_progress,
    )
    print(answer)
    return 0


async def cmd_report(args: argparse.Namespace, config: AsterConfig) -> int:
    documents = usable_documents(await _standardize_files(args.files))
    if not documents:
        print("Error: no usable input file", file=sys.stderr)
        return 1

    orchestrator = ReportOrchestrator(
        InferenceClient(config.inference),
        files=documents,
        default_context=config.report.default_context,
        event_log=ReportEventLog(
            config.logging.log_dir,
            events_log=config.logging.events_log,
            mask_secrets_enabled=config.logging.mask_secrets,
        ),
        on_progress=_progress,
        decomposition_prompt=config.report.decomposition_prompt,
    )
    await orchestrator.build_report(args.prompt)

    failed = [b for b in orchestrator.blocks if b.error]
    for block in failed:
        print(f"Section '{block.title}' failed: {block.error}", file=sys.stderr)

    if args.json_out:
        args.json_out.write_text(export_report_json(orchestrator.blocks), encoding="utf-8")
        print(f"Wrote {args.json_out}", file=sys.stderr)
    if args.markdown_out:
        args.markdown_out.write_text(export_report_markdown(orchestrator.blocks), encoding="utf-8")
        print(f"Wrote {args.markdown_out}", file=sys.stderr)
    if not args.json_out and not args.markdown_out:
        print(export_report_markdown(orchestrator.blocks))

    if args.store:
        await save_blocks(JsonFileStore(config.storage.path), orchestrator.blocks)

    if args.verify:
        try:
            score = await orchestrator.verify()
            print(f"Credibility score: {score}/100")
        except ReportVerificationError as e:
            print(f"Verification failed: {e}", file=sys.stderr)

    return 1 if failed else 0


COMMANDS = {
    "standardize": cmd_standardize,
    "models": cmd_models,
    "ask": cmd_ask,
    "report": cmd_report,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the aster CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)
    config = resolve_config(args)
    configure_logging(config.logging.level, config.logging.log_dir, mask=config.logging.mask_secrets)

    try:
        return asyncio.run(COMMANDS[args.command](args, config))
    except KeyboardInterrupt:
        print("\n\n[Interrupted by user]", file=sys.stderr)
        return 130
    except InferenceCancelled:
        print("Cancelled", file=sys.stderr)
        return 130
    except (InferenceError, ReportParseError) as e:
        print(f"\nError: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
