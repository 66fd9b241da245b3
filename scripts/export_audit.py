from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
import sys

from docvault.core.config import get_settings
from docvault.core.errors import DocVaultError
from docvault.providers.backend.base import DocumentBackend
from docvault.providers.backend.factory import get_document_backend
from docvault.services.audit import EXPORT_FORMATS, AuditService
from docvault.services.auth.roles import RoleResolver


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Export audit logs to a file")
    parser.add_argument("--format", dest="export_format", default="csv", choices=sorted(EXPORT_FORMATS))
    parser.add_argument("--output", required=True, help="Destination file")
    parser.add_argument("--start-time", default=None, help="ISO-8601 lower bound")
    parser.add_argument("--end-time", default=None, help="ISO-8601 upper bound")
    return parser


async def _run(args: argparse.Namespace, backend: DocumentBackend | None = None) -> int:
    resolver = RoleResolver()
    backend = backend or get_document_backend(resolver=resolver)
    try:
        payload = await AuditService(backend, resolver).export(
            export_format=args.export_format,
            start_time=args.start_time,
            end_time=args.end_time,
        )
    finally:
        await backend.aclose()
    output = Path(args.output)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(payload)
    print(f"exported_bytes={len(payload)} path={output}")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    logging.basicConfig(level=get_settings().log_level)
    try:
        return asyncio.run(_run(args))
    except (DocVaultError, OSError) as exc:
        print(f"export_audit failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
