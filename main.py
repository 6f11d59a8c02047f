"""Run a ledgerload test from a source checkout.

Reads `config/secrets.env` first so node signatures and path overrides can stay
out of config.yaml, then hands off to `ledgerload.load.runner`.
"""

from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv


def _load_node_secrets() -> None:
    secrets = Path(__file__).resolve().parent / "config" / "secrets.env"
    if secrets.exists():
        load_dotenv(secrets)


def main() -> None:
    _load_node_secrets()

    from ledgerload.load.runner import main as run_load_test

    run_load_test()


if __name__ == "__main__":
    main()
