from __future__ import annotations

import argparse
import logging
import sys

from docvault.core.config import get_settings
from docvault.core.errors import DocVaultError
from docvault.services.auth.credentials import CredentialStore, get_credential_store
from docvault.services.auth.roles import AuthorizationContext, KNOWN_ROLES


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Store, inspect or clear the local docvault session")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--token", default=None, help="Bearer token issued by the identity provider")
    group.add_argument("--token-file", default=None, help="Read the bearer token from a file")
    group.add_argument("--logout", action="store_true", help="Clear the stored session")
    group.add_argument("--show", action="store_true", help="Print the roles of the stored session")
    return parser


def _read_token(args: argparse.Namespace) -> str | None:
    if args.token_file:
        with open(args.token_file, encoding="utf-8") as handle:
            return handle.read().strip()
    return args.token


def _describe(context: AuthorizationContext) -> list[str]:
    # Never print the token itself.
    lines = [f"authenticated: {str(context.authenticated).lower()}"]
    if context.subject:
        lines.append(f"subject: {context.subject}")
    if context.tenant_id:
        lines.append(f"tenant_id: {context.tenant_id}")
    roles = sorted(context.roles)
    lines.append(f"roles: {', '.join(roles) if roles else '-'}")
    unknown = sorted(set(roles) - KNOWN_ROLES)
    if unknown:
        lines.append(f"unrecognized_roles: {', '.join(unknown)}")
    return lines


def _run(args: argparse.Namespace, store: CredentialStore | None = None) -> int:
    store = store or get_credential_store()
    if args.logout:
        store.logout()
        print("session cleared")
        return 0
    if not args.show:
        store.login(_read_token(args) or "")
    context = AuthorizationContext.from_token(store.get_token(), bypass=get_settings().auth_dev_bypass)
    for line in _describe(context):
        print(line)
    return 0 if context.authenticated else 2


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    logging.basicConfig(level=get_settings().log_level)
    try:
        return _run(args)
    except (DocVaultError, OSError) as exc:
        print(f"session_login failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
