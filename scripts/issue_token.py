"""Mint development bearer credentials, or generate a fresh signing keypair.

    python scripts/issue_token.py keygen --out-dir .
    python scripts/issue_token.py mint --subject alice --role buyer --name Alice
"""

from __future__ import annotations

import argparse
from datetime import timedelta
from pathlib import Path

from livebid.auth.tokens import generate_keypair, issue_token

DEFAULT_PRIVATE_KEY = Path(__file__).resolve().parent / "dev_auth_private.pem"


def _keygen(args: argparse.Namespace) -> None:
    private_pem, public_pem = generate_keypair()
    out_dir = Path(args.out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    (out_dir / "auth_private.pem").write_text(private_pem)
    (out_dir / "auth_public.pem").write_text(public_pem)
    print(f"wrote {out_dir / 'auth_private.pem'} and {out_dir / 'auth_public.pem'}")


def _mint(args: argparse.Namespace) -> None:
    private_pem = Path(args.private_key).read_text()
    token = issue_token(
        private_pem,
        subject=args.subject,
        role=args.role,
        name=args.name,
        ttl=timedelta(hours=args.ttl_hours),
    )
    print(token)


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    commands = parser.add_subparsers(dest="command", required=True)

    keygen = commands.add_parser("keygen", help="generate an Ed25519 keypair")
    keygen.add_argument("--out-dir", default=".")
    keygen.set_defaults(handler=_keygen)

    mint = commands.add_parser("mint", help="sign a bearer credential")
    mint.add_argument("--subject", required=True)
    mint.add_argument("--role", default="buyer", choices=["buyer", "seller", "admin"])
    mint.add_argument("--name")
    mint.add_argument("--ttl-hours", type=float, default=24)
    mint.add_argument("--private-key", default=str(DEFAULT_PRIVATE_KEY))
    mint.set_defaults(handler=_mint)

    args = parser.parse_args()
    args.handler(args)


if __name__ == "__main__":
    main()
