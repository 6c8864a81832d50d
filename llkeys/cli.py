"""Command-line interface for the llkeys credential store."""
import argparse
import logging
import sys
from typing import Optional

from .version import __version__
from .vault import CredentialStore, VaultConfig, VaultError

logger = logging.getLogger("llkeys.cli")


class KeysCLI:
    """``llkeys <command>`` front end over :class:`CredentialStore`."""

    _ALIASES = {"del": "remove"}

    def __init__(self) -> None:
        self._parser = self._create_parser()

    def _create_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog="llkeys",
            description="Local encrypted credential store",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
Examples:
  llkeys add mail "my secret"
  llkeys get mail --reveal
  llkeys import passwords.csv
  llkeys search github --reveal
  llkeys rotate
            """,
        )
        parser.add_argument(
            "--home",
            help="Directory holding keys.llk and config.json "
                 "(default: $LLKEYS_HOME or ~/.llkeys)",
        )
        parser.add_argument(
            "-v",
            "--verbose",
            action="store_true",
            help="Enable debug logging",
        )
        parser.add_argument(
            "--version",
            action="version",
            version=f"%(prog)s {__version__}",
        )

        subparsers = parser.add_subparsers(dest="command", required=True)

        add_parser = subparsers.add_parser("add", help="Add or replace a secret")
        add_parser.add_argument("name")
        add_parser.add_argument("value", nargs="+")

        get_parser = subparsers.add_parser("get", help="Show one secret")
        get_parser.add_argument("name")
        get_parser.add_argument(
            "--reveal", action="store_true", help="Show the decrypted value",
        )

        list_parser = subparsers.add_parser("list", help="List all secrets")
        list_parser.add_argument(
            "--reveal", action="store_true", help="Show decrypted values",
        )

        remove_parser = subparsers.add_parser(
            "remove", aliases=["del"], help="Delete a secret",
        )
        remove_parser.add_argument("name")

        import_parser = subparsers.add_parser(
            "import",
            help="Import a name,url,username,password,note CSV export",
        )
        import_parser.add_argument("csv_file")

        search_parser = subparsers.add_parser(
            "search", help="Search secrets by name",
        )
        search_parser.add_argument("keyword")
        search_parser.add_argument(
            "--reveal", action="store_true", help="Show decrypted values",
        )

        subparsers.add_parser("rotate", help="Rotate the master key")
        subparsers.add_parser("status", help="Show master key status")
        return parser

    def run(self, argv: Optional[list[str]] = None) -> int:
        args = self._parser.parse_args(argv)
        logging.basicConfig(
            level=logging.DEBUG if args.verbose else logging.WARNING,
            format="%(asctime)s %(name)s %(levelname)s: %(message)s",
        )
        command = self._ALIASES.get(args.command, args.command)
        handler = getattr(self, f"_cmd_{command}")
        store = None
        try:
            store = CredentialStore(VaultConfig.from_env(home=args.home))
            return handler(store, args)
        except (VaultError, OSError, ValueError) as err:
            logger.debug("Command %s failed", args.command, exc_info=True)
            self._error(str(err))
            return 1
        finally:
            if store is not None:
                store.close()

    @staticmethod
    def _error(message: str) -> None:
        print(f"Error: {message}", file=sys.stderr)

    # --- commands ---

    def _cmd_add(self, store: CredentialStore, args) -> int:
        store.add(args.name, " ".join(args.value))
        print(f"Secret '{args.name}' added.")
        return 0

    def _cmd_get(self, store: CredentialStore, args) -> int:
        value = store.get(args.name, reveal=args.reveal)
        if value is None:
            self._error(f"Secret '{args.name}' not found.")
            return 1
        print(value)
        return 0

    def _cmd_list(self, store: CredentialStore, args) -> int:
        items = store.items(reveal=args.reveal)
        if not items:
            print("No secrets stored.")
            return 0
        print("Secrets (plaintext):" if args.reveal else "Secrets (encrypted):")
        for name, value in items:
            print(f"{name}: {value}")
        return 0

    def _cmd_remove(self, store: CredentialStore, args) -> int:
        if store.remove(args.name):
            print(f"Secret '{args.name}' removed.")
            return 0
        self._error(f"Secret '{args.name}' not found.")
        return 1

    def _cmd_import(self, store: CredentialStore, args) -> int:
        count = store.import_csv_file(args.csv_file)
        print(f"Imported {count} secret(s).")
        return 0

    def _cmd_search(self, store: CredentialStore, args) -> int:
        results = store.search(args.keyword, reveal=args.reveal)
        if not results:
            print("No matching secrets.")
            return 0
        for name, first, second in results:
            print(f"{name}: {first}:{second}" if args.reveal else f"{name}: {first}")
        return 0

    def _cmd_rotate(self, store: CredentialStore, args) -> int:
        stats = store.rotate()
        print(
            f"Master key rotated to v{stats['new_version']}; "
            f"{stats['rotated']} secret(s) re-encrypted."
        )
        return 0

    def _cmd_status(self, store: CredentialStore, args) -> int:
        status = store.status()
        state = "expired" if status["expired"] else "active"
        print(f"Master key v{status['key_version']} ({state}), "
              f"expires {status['expires_at']}")
        print(f"{status['secrets']} secret(s) in {status['store_path']}")
        return 0


def main(argv: Optional[list[str]] = None) -> int:
    return KeysCLI().run(argv)


if __name__ == "__main__":
    sys.exit(main())
