from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from docvault.core.config import get_settings
from docvault.core.errors import AuthenticationMissingError, AuthorizationDeniedError, DocVaultError
from docvault.providers.backend.base import DocumentBackend
from docvault.providers.backend.factory import get_document_backend
from docvault.services.auth.roles import RoleResolver
from docvault.services.retention import RetentionService
from docvault.services.telemetry import api_call_stats, counters_snapshot


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Report retention counts and optionally purge expired documents")
    parser.add_argument(
        "--process",
        action="store_true",
        help="Permanently delete expired soft-deleted documents without active legal holds",
    )
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Print client counters and per-endpoint call latency after the run",
    )
    parser.add_argument(
        "--stats-window",
        type=int,
        default=3600,
        help="Latency window in seconds for --stats",
    )
    return parser


def _print_stats(window_s: int) -> None:
    for name, value in sorted(counters_snapshot().items()):
        print(f"counter.{name}={value}")
    for integration, stats in api_call_stats(window_s).items():
        print(
            f"api.{integration} calls={stats['calls']} failures={stats['failures']} "
            f"p50_ms={stats['p50_ms']:.1f} p95_ms={stats['p95_ms']:.1f} max_ms={stats['max_ms']:.1f}"
        )


def _format_error(exc: DocVaultError) -> tuple[int, str]:
    # Map failures to exit codes: 2 for session/role problems, 1 for everything else.
    if isinstance(exc, (AuthenticationMissingError, AuthorizationDeniedError)):
        return 2, f"{exc.code}: {exc}"
    return 1, f"{exc.code}: {exc}"


async def _run(args: argparse.Namespace, backend: DocumentBackend | None = None) -> int:
    resolver = RoleResolver()
    backend = backend or get_document_backend(resolver=resolver)
    service = RetentionService(backend, resolver)
    try:
        counts = await service.count()
        print(f"expired_documents={counts.expired_documents}")
        print(f"active_legal_holds={counts.active_legal_holds}")
        if args.process:
            result = await service.process()
            print(f"processed_count={result.processed_count if result.processed_count is not None else '-'}")
            print(f"status={result.status or '-'}")
        if args.stats:
            _print_stats(args.stats_window)
    finally:
        await backend.aclose()
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    logging.basicConfig(level=get_settings().log_level)
    try:
        return asyncio.run(_run(args))
    except DocVaultError as exc:
        code, message = _format_error(exc)
        print(f"retention_report failed: {message}", file=sys.stderr)
        return code


if __name__ == "__main__":
    raise SystemExit(main())
