"""
carelog/cli.py
Command-line interface for carelog.

USAGE:
  carelog import chat.txt                       # archive a LINE transcript
  carelog import Evidence_Archive_chat.json     # re-import an exported archive
  carelog list
  carelog show <id> --search 費用 --tag payment
  carelog show <id> --by-date
  carelog export <id> -o ./exports [--sign]
  carelog verify Evidence_Archive_chat.json
  carelog merge <id> analysis.json [--strict]
  carelog analyze <id> [--model qwen2.5:7b]
  carelog delete <id>
  carelog list-models

Store location, backend and model defaults come from carelog_config.json.
"""

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path

from carelog.analysis.merge import merge_analysis
from carelog.analysis.runner import AnalysisRunner
from carelog.archive.export import archive_file_name, export_archive, import_archive
from carelog.archive.signing import signature_path, verify_archive_file, write_signature
from carelog.archive.store import ArchiveStore
from carelog.config import SIGNING_SECRET_ENV, load_config, resolve_store_path, signing_secret
from carelog.errors import CarelogError
from carelog.models.record import ALL_TAGS
from carelog.query.filters import filter_messages, group_by_date, tag_counts
from carelog.session_builder import build_from_upload
from carelog.storage.blob_store import open_blob_store

logger = logging.getLogger(__name__)

# ANSI colors
GREEN  = '\033[92m'
YELLOW = '\033[93m'
RED    = '\033[91m'
CYAN   = '\033[96m'
RESET  = '\033[0m'
BOLD   = '\033[1m'


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog        = 'carelog',
        description = 'carelog — LINE transcript evidence archive for long-term-care cases',
        formatter_class = argparse.RawDescriptionHelpFormatter,
        epilog = """
NOTE:
  AI-generated case events are inferences, not findings.
  Verify against the original transcript before relying on them.
        """
    )
    parser.add_argument('--store', type=Path, default=None,
                        help='Archive store path (overrides carelog_config.json)')
    parser.add_argument('--backend', choices=('sqlite', 'json'), default=None,
                        help='Archive store backend (overrides carelog_config.json)')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable debug logging')

    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('import', help='Import a .txt transcript or .json archive')
    p.add_argument('path', type=Path)

    sub.add_parser('list', help='List archived sessions')

    p = sub.add_parser('show', help='Show messages of a session')
    p.add_argument('session_id')
    p.add_argument('--search', '-s', default=None, help='Substring of content or sender')
    p.add_argument('--tag', '-t', choices=ALL_TAGS, default=None)
    p.add_argument('--by-date', action='store_true', help='Group output by date')
    p.add_argument('--important', action='store_true', help='Only important messages')

    p = sub.add_parser('delete', help='Delete a session')
    p.add_argument('session_id')

    p = sub.add_parser('export', help='Export a session archive')
    p.add_argument('session_id')
    p.add_argument('--output', '-o', type=Path, default=Path('.'),
                   help='Output directory (default: current directory)')
    p.add_argument('--sign', action='store_true',
                   help=f'Write a detached HMAC signature (secret from ${SIGNING_SECRET_ENV})')

    p = sub.add_parser('verify', help='Verify an exported archive (hash + optional signature)')
    p.add_argument('path', type=Path)
    p.add_argument('--signature', type=Path, default=None,
                   help='Signature file (default: <archive>.sig if present)')

    p = sub.add_parser('merge', help='Attach an analysis JSON file to a session')
    p.add_argument('session_id')
    p.add_argument('path', type=Path)
    p.add_argument('--strict', action='store_true',
                   help='Reject the whole payload if any event is invalid')

    p = sub.add_parser('analyze', help='Run the local Ollama collaborator on a session')
    p.add_argument('session_id')
    p.add_argument('--model', '-m', default=None)
    p.add_argument('--ollama-host', default=None)

    p = sub.add_parser('list-models', help='List locally available Ollama models')
    p.add_argument('--ollama-host', default=None)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    # ── LOGGING SETUP ────────────────────────────────────────
    logging.basicConfig(
        level   = logging.DEBUG if args.verbose else logging.INFO,
        format  = '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt = '%H:%M:%S',
    )

    config = load_config()
    if args.store is not None:
        config['store_path'] = str(args.store)
    if args.backend is not None:
        config['store_backend'] = args.backend

    try:
        return _dispatch(args, config)
    except CarelogError as e:
        _print(f"{RED}Error: {e}{RESET}")
        return 1
    except OSError as e:
        _print(f"{RED}File error: {e}{RESET}")
        return 1


def _open_store(config) -> ArchiveStore:
    store = ArchiveStore(open_blob_store(config['store_backend'], resolve_store_path(config)))
    store.load()
    return store


def _dispatch(args, config) -> int:
    if args.command == 'list-models':
        from carelog.llm.ollama_adapter import OllamaAdapter
        models = OllamaAdapter(host=args.ollama_host or config['ollama_host']).list_available_models()
        if not models:
            _print(f"{YELLOW}No models found. Is Ollama running?{RESET}")
            return 1
        _print(f"\n{BOLD}Available Ollama models:{RESET}")
        for m in models:
            _print(f"  • {m}")
        return 0

    if args.command == 'verify':
        return _verify(args)

    store = _open_store(config)

    if args.command == 'import':
        t0 = time.time()
        session = build_from_upload(args.path.read_bytes(), args.path.name)
        store.insert(session)
        _ok(f"{session.id}: {len(session.messages)} messages, "
            f"{len(session.participants)} participants in {_elapsed(t0)}")
        _print(f"  SHA-256 : {session.file_hash}")
        return 0

    if args.command == 'list':
        if not len(store):
            _print(f"{YELLOW}No archived sessions.{RESET}")
            return 0
        for s in store:
            flag = f" {CYAN}[analysis]{RESET}" if s.analysis else ''
            _print(f"  {BOLD}{s.id}{RESET}  {s.file_name}  "
                   f"{len(s.messages)} msgs  {s.file_hash[:12]}…{flag}")
        return 0

    if args.command == 'show':
        return _show(store, args)

    if args.command == 'delete':
        store.delete(args.session_id)
        _ok(f"Deleted {args.session_id}")
        return 0

    if args.command == 'export':
        session = store.get(args.session_id)
        secret  = signing_secret() if args.sign else None
        if args.sign and not secret:
            _print(f"{RED}Set ${SIGNING_SECRET_ENV} to sign archives.{RESET}")
            return 1
        args.output.mkdir(parents=True, exist_ok=True)
        path = args.output / archive_file_name(session)
        content = export_archive(session)
        path.write_bytes(content.encode('utf-8'))
        _ok(f"Archive written → {path}")
        if secret:
            _ok(f"Signature written → {write_signature(path, content, secret)}")
        return 0

    if args.command == 'merge':
        report = merge_analysis(store, args.session_id, args.path.read_bytes(), strict=args.strict)
        _report(report)
        return 0

    if args.command == 'analyze':
        from carelog.llm.ollama_adapter import OllamaAdapter
        llm = OllamaAdapter(
            model       = args.model or config['model'],
            host        = args.ollama_host or config['ollama_host'],
            timeout_sec = config['timeout_sec'],
        )
        if not llm.is_available():
            _print(f"{YELLOW}⚠ Ollama unavailable. Start Ollama and run: ollama pull {llm.model}{RESET}")
            return 1
        runner = AnalysisRunner(
            store, llm,
            sample_limit = config['sample_limit'],
            strict       = config['strict_merge'],
        )
        _step(f"Analyzing {args.session_id} with {llm.model}...")
        t0 = time.time()
        report = asyncio.run(runner.run(args.session_id))
        _ok(f"Analysis complete in {_elapsed(t0)}")
        _report(report)
        return 0

    return 1


def _show(store: ArchiveStore, args) -> int:
    session  = store.get(args.session_id)
    messages = filter_messages(session.messages, args.search, args.tag)
    if args.important:
        messages = [m for m in messages if m.is_important]

    _print(f"{BOLD}{session.file_name}{RESET}  ({len(messages)}/{len(session.messages)} messages)")
    counts = tag_counts(session.messages)
    _print('  ' + '  '.join(f"{tag}={n}" for tag, n in counts.items()))

    if args.by_date:
        for date, day in group_by_date(messages).items():
            _print(f"\n{CYAN}── {date} ──{RESET}")
            for m in day:
                _print(_format_message(m, with_date=False))
    else:
        for m in messages:
            _print(_format_message(m, with_date=True))

    if session.analysis:
        a = session.analysis
        _print(f"\n{BOLD}Analysis:{RESET} {a.summary}")
        for e in a.events:
            _print(f"  [{e.risk_level.upper()}] {e.title} ({e.date_range})")
    return 0


def _verify(args) -> int:
    raw = args.path.read_bytes()
    session = import_archive(raw)
    _ok(f"Archive structure and integrity hash OK ({session.id})")

    sig_path = args.signature or signature_path(args.path)
    if not sig_path.exists():
        return 0
    secret = signing_secret()
    if not secret:
        _print(f"{RED}Set ${SIGNING_SECRET_ENV} to verify signatures.{RESET}")
        return 1
    if not verify_archive_file(args.path, secret, sig_path):
        _print(f"{RED}✗ Signature INVALID{RESET}")
        return 1
    _ok("Signature valid")
    return 0


def _report(report) -> None:
    _ok(f"{report.accepted_events} event(s) attached to {report.session_id}")
    for r in report.rejected_events:
        _print(f"  {YELLOW}⚠ dropped event {r.index} '{r.title}': {r.reason}{RESET}")
    if report.unresolved_references:
        _print(f"  {YELLOW}{report.unresolved_references} message reference(s) "
               f"not found in transcript (kept, unverified){RESET}")


# ── PRINT HELPERS ────────────────────────────────────────────

def _format_message(m, with_date: bool) -> str:
    stamp  = m.datetime if with_date else m.time
    marker = f"{RED}!{RESET}" if m.is_important else ' '
    tags   = f" {CYAN}[{','.join(m.tags)}]{RESET}" if m.tags else ''
    if m.is_system:
        return f"    {stamp}  ({m.content})"
    return f"  {marker} {stamp}  {BOLD}{m.sender}{RESET}: {m.content}{tags}"

def _step(msg):  _print(f"  {CYAN}→{RESET} {msg}")
def _ok(msg):    _print(f"  {GREEN}✓{RESET} {msg}")
def _print(msg): print(msg)

def _elapsed(t0: float) -> str:
    s = time.time() - t0
    return f"{s:.1f}s" if s < 60 else f"{int(s//60)}m {int(s%60)}s"


if __name__ == '__main__':
    sys.exit(main())
