"""Command-line entry point: push, init, delete and reindex charts."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence

from .config import DEFAULT_CHART_CONTENT_TYPE, Settings
from .logging_config import configure_logging
from .publish.chart_archive import load_chart_archive
from .publish.publisher import PublishPolicy, PublishResult
from .publish.service import ChartRepositoryService
from .repositories import open_repository
from .storage.errors import ChartSyncError

logger = logging.getLogger(__name__)

UPLOADED_MESSAGE = "Successfully uploaded the chart to the repository."
SKIPPED_MESSAGE = (
    "The chart already exists in the repository, keep existing chart and "
    "ignore push."
)
DELETED_MESSAGE = "Successfully deleted the chart from the repository."


class ChartSyncCLI:
    """Run one parsed command against a repository.

    Each command returns the single line to print on success; failures
    propagate as :class:`ChartSyncError` for :func:`main` to report.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        client: Optional[Any] = None,
    ) -> None:
        self._settings = settings
        self._client = client

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            self._settings = Settings.from_env()
        return self._settings

    def _service(self, repository: str) -> ChartRepositoryService:
        resolved = open_repository(
            repository, self.settings, client=self._client
        )
        return ChartRepositoryService(resolved, self.settings)

    def push(self, args: argparse.Namespace) -> str:
        # Contradictory flags are rejected before anything touches the store.
        policy = PublishPolicy.from_flags(
            force=args.force,
            ignore_if_exists=args.ignore_if_exists,
            dry_run=args.dry_run,
        )
        archive = load_chart_archive(args.chart)
        service = self._service(args.repository)
        outcome = service.push(
            archive,
            policy=policy,
            content_type=args.content_type,
            relative=args.relative,
        )
        if outcome.result is PublishResult.SKIPPED:
            return SKIPPED_MESSAGE
        return UPLOADED_MESSAGE

    def init(self, args: argparse.Namespace) -> str:
        service = self._service(args.repository)
        service.init(dry_run=args.dry_run)
        return f"Initialized repository at {args.repository}"

    def delete(self, args: argparse.Namespace) -> str:
        service = self._service(args.repository)
        service.delete(args.name, args.version, dry_run=args.dry_run)
        return DELETED_MESSAGE

    def reindex(self, args: argparse.Namespace) -> str:
        service = self._service(args.repository)
        index = service.reindex(relative=args.relative, dry_run=args.dry_run)
        return (
            f"Repository {args.repository} was reindexed with "
            f"{len(index)} chart version(s)."
        )

    def run(self, args: argparse.Namespace) -> int:
        commands: Dict[str, Callable[[argparse.Namespace], str]] = {
            "push": self.push,
            "init": self.init,
            "delete": self.delete,
            "reindex": self.reindex,
        }
        try:
            message = commands[args.command](args)
        except ChartSyncError as error:
            logger.warning("%s failed: %s", args.command, error)
            print(str(error), file=sys.stderr)
            return 1
        print(message)
        return 0


def build_arg_parser() -> argparse.ArgumentParser:
    argument_parser = argparse.ArgumentParser(
        prog="chartsync",
        description=(
            "ChartSync CLI: publish Helm charts to object-store backed "
            "repositories and keep their index consistent."
        ),
    )
    subparsers = argument_parser.add_subparsers(dest="command", required=True)

    push = subparsers.add_parser(
        "push", help="Upload a packaged chart and add it to the index."
    )
    push.add_argument(
        "chart", type=Path, help="Path to the packaged chart (.tgz)."
    )
    push.add_argument(
        "repository", help="Repository name or URL (s3://..., file://...)."
    )
    push.add_argument(
        "--content-type",
        default=DEFAULT_CHART_CONTENT_TYPE,
        help="Media type stored with the chart object.",
    )
    push.add_argument(
        "--dry-run",
        action="store_true",
        help="Evaluate the push without changing the repository.",
    )
    push.add_argument(
        "--force",
        action="store_true",
        help="Replace the chart if it already exists.",
    )
    push.add_argument(
        "--ignore-if-exists",
        action="store_true",
        help="Keep the existing chart and report success.",
    )
    push.add_argument(
        "--relative",
        action="store_true",
        help=(
            "Store the chart filename instead of an absolute URL. Only "
            "this chart's entry is affected; use reindex --relative to "
            "rewrite every entry."
        ),
    )

    init = subparsers.add_parser(
        "init", help="Create an empty index in a new repository."
    )
    init.add_argument("repository", help="Repository name or URL.")
    init.add_argument("--dry-run", action="store_true")

    delete = subparsers.add_parser(
        "delete", help="Remove a chart version from the repository."
    )
    delete.add_argument("name", help="Chart name.")
    delete.add_argument("--version", required=True, help="Chart version.")
    delete.add_argument("repository", help="Repository name or URL.")
    delete.add_argument("--dry-run", action="store_true")

    reindex = subparsers.add_parser(
        "reindex", help="Rebuild the index from the stored charts."
    )
    reindex.add_argument("repository", help="Repository name or URL.")
    reindex.add_argument(
        "--relative",
        action="store_true",
        help=(
            "Rewrite the URLs of every entry as bare filenames; without "
            "it every entry gets an absolute URL."
        ),
    )
    reindex.add_argument("--dry-run", action="store_true")
    return argument_parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    configure_logging()
    argument_parser = build_arg_parser()
    parsed_args = argument_parser.parse_args(argv)

    app = ChartSyncCLI()
    return app.run(parsed_args)


if __name__ == "__main__":
    sys.exit(main())
