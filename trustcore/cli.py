#!/usr/bin/env python3
"""
TrustCore Command Line Interface

Usage:
    trustcore caps check --granted <mask> --required <mask>
    trustcore caps compose <NAME> [<NAME> ...]
    trustcore caps names <mask>
    trustcore hash --file <file> [--owner <identity>] [--salt <salt>]
    trustcore digest <package.module:attribute>
    trustcore keygen --issuer <identity> [--output <trust_store.json>]
    trustcore journal verify --path <journal.db>
"""

import argparse
import json
import os
import sys
from typing import List, Optional

from .capabilities import capability_names, compose, from_names, has_capability
from .identity import ImportLoader, LoadError, code_digest
from .journal import EventJournal
from .keys import generate_issuer_keypair
from .util import content_hash, derive_document_id


def parse_mask(value: str) -> int:
    """Accept decimal, 0x-hex, or comma-separated capability names."""
    try:
        return int(value, 0)
    except ValueError:
        return from_names(n.strip() for n in value.split(",") if n.strip())


def cmd_caps(args) -> int:
    if args.caps_command == "check":
        granted = parse_mask(args.granted)
        required = parse_mask(args.required)
        ok = has_capability(granted, required)
        print(json.dumps({"granted": granted, "required": required, "has_capability": ok}))
        return 0 if ok else 1
    if args.caps_command == "compose":
        mask = compose(parse_mask(n) for n in args.names)
        print(json.dumps({"mask": mask, "hex": hex(mask), "names": capability_names(mask)}))
        return 0
    if args.caps_command == "names":
        print("\n".join(capability_names(parse_mask(args.mask))))
        return 0
    return 2


def cmd_hash(args) -> int:
    """Content hash of a file, plus the derived document id when an owner is given."""
    with open(args.file, "rb") as f:
        digest = content_hash(f.read())
    out = {"content_hash": digest}
    if args.owner:
        out["document_id"] = derive_document_id(digest, args.owner, args.salt or "")
    print(json.dumps(out, indent=2))
    return 0


def cmd_digest(args) -> int:
    try:
        digest = code_digest(ImportLoader().load(args.ref))
    except LoadError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1
    print(digest)
    return 0


def cmd_keygen(args) -> int:
    """Generate an issuer keypair; optionally add the public key to a trust store."""
    private_b64, public_b64 = generate_issuer_keypair()
    if args.output:
        store = {"issuers": {}}
        if os.path.exists(args.output):
            with open(args.output, "r", encoding="utf-8") as f:
                store = json.load(f)
        store.setdefault("issuers", {})[args.issuer] = public_b64
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump(store, f, indent=2, sort_keys=True)
        print(f"Trust store updated: {args.output}", file=sys.stderr)
    print(json.dumps({"issuer": args.issuer, "public_key_b64": public_b64, "private_key_b64": private_b64}, indent=2))
    return 0


def cmd_journal(args) -> int:
    if not os.path.exists(args.path):
        print(f"✗ no journal at {args.path}", file=sys.stderr)
        return 1
    journal = EventJournal(args.path)
    try:
        result = journal.verify_chain()
    finally:
        journal.close()
    print(json.dumps(result, indent=2))
    if result["ok"]:
        print(f"✓ {result['entries']} entries verified", file=sys.stderr)
        return 0
    print(f"✗ chain broken at entry {result['broken_at']} ({result['reason']})", file=sys.stderr)
    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="trustcore",
        description="TrustCore CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  trustcore caps check --granted CORE_VIEW,DOC_SIGN --required DOC_SIGN
  trustcore caps compose CORE_VIEW CORE_CLAIM
  trustcore hash -f contract.pdf --owner alice
  trustcore digest trustcore.providers:SignedClaimProvider
  trustcore keygen --issuer notary-1 -o trust_store.json
  trustcore journal verify --path var/journal.db
        """
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    caps_parser = subparsers.add_parser("caps", help="Capability bitmask tools")
    caps_sub = caps_parser.add_subparsers(dest="caps_command")
    check_parser = caps_sub.add_parser("check", help="Check granted against required")
    check_parser.add_argument("-g", "--granted", required=True)
    check_parser.add_argument("-r", "--required", required=True)
    compose_parser = caps_sub.add_parser("compose", help="OR capabilities together")
    compose_parser.add_argument("names", nargs="+")
    names_parser = caps_sub.add_parser("names", help="Names of the bits in a mask")
    names_parser.add_argument("mask")

    hash_parser = subparsers.add_parser("hash", help="Compute a document content hash")
    hash_parser.add_argument("-f", "--file", required=True, help="File to hash")
    hash_parser.add_argument("--owner", help="Registering identity, to derive the document id")
    hash_parser.add_argument("--salt", help="Salt for the document id")

    digest_parser = subparsers.add_parser("digest", help="Identity digest of a component ref")
    digest_parser.add_argument("ref", help="package.module:attribute")

    keygen_parser = subparsers.add_parser("keygen", help="Generate an issuer key pair")
    keygen_parser.add_argument("-i", "--issuer", required=True, help="Issuer identity")
    keygen_parser.add_argument("-o", "--output", help="Trust store JSON to update")

    journal_parser = subparsers.add_parser("journal", help="Event journal tools")
    journal_sub = journal_parser.add_subparsers(dest="journal_command")
    verify_parser = journal_sub.add_parser("verify", help="Verify the hash chain")
    verify_parser.add_argument("-p", "--path", required=True)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        if args.command == "caps" and args.caps_command:
            return cmd_caps(args)
        if args.command == "hash":
            return cmd_hash(args)
        if args.command == "digest":
            return cmd_digest(args)
        if args.command == "keygen":
            return cmd_keygen(args)
        if args.command == "journal" and args.journal_command == "verify":
            return cmd_journal(args)
    except ValueError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 2

    parser.print_help()
    return 2


if __name__ == "__main__":
    sys.exit(main())
