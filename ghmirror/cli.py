"""Command-line entry point for creating the store and bootstrapping repositories."""

from __future__ import annotations

import argparse
import asyncio
import os
import typing as typ

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from ghmirror.bootstrap.config import (
    DATABASE_URL_ENV,
    BootstrapConfig,
    database_url_from_env,
)
from ghmirror.bootstrap.jobs import ACTIVE_STATES, SyncJobJournal
from ghmirror.bootstrap.runner import run_bootstrap
from ghmirror.github.errors import GitHubAPIError, GitHubAuthError, GitHubConfigError
from ghmirror.github.tokens import (
    GITHUB_TOKEN_ENV,
    StaticTokenResolver,
    StoredCredentialResolver,
)
from ghmirror.logging import configure_logging
from ghmirror.projection.queries import ProjectionQueries
from ghmirror.projection.storage import init_projection_storage

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from ghmirror.github.tokens import TokenResolver
    from ghmirror.projection.queries import RepositoryRef

type SessionFactory = async_sessionmaker[AsyncSession]


def _database_url_option(
    parser: argparse.ArgumentParser, *, default: object = None
) -> None:
    parser.add_argument(
        "--database-url",
        default=default,
        help=f"SQLAlchemy async URL; defaults to ${DATABASE_URL_ENV}",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ghmirror", description=__doc__)
    _database_url_option(parser)
    commands = parser.add_subparsers(dest="command", required=True)

    init_db = commands.add_parser("init-db", help="Create the projection tables")
    # SUPPRESS keeps a URL given before the subcommand.
    _database_url_option(init_db, default=argparse.SUPPRESS)

    bootstrap = commands.add_parser(
        "bootstrap", help="Backfill a connected repository"
    )
    _database_url_option(bootstrap, default=argparse.SUPPRESS)
    bootstrap.add_argument("repository", help="Repository as owner/name")
    bootstrap.add_argument(
        "--installation-id",
        type=int,
        required=True,
        help="GitHub App installation the repository belongs to",
    )
    bootstrap.add_argument(
        "--enqueue",
        action="store_true",
        help="Queue the bootstrap on the job queue instead of running it here",
    )
    return parser


def _resolver(session_factory: SessionFactory) -> TokenResolver:
    if os.environ.get(GITHUB_TOKEN_ENV, "").strip():
        return StaticTokenResolver.from_env()
    return StoredCredentialResolver(session_factory)


async def _init_db(database_url: str) -> int:
    engine = create_async_engine(database_url)
    try:
        await init_projection_storage(engine)
    finally:
        await engine.dispose()
    print(f"projection tables ready at {engine.url.render_as_string()}")
    return 0


async def _enqueue(
    session_factory: SessionFactory,
    database_url: str,
    repository: RepositoryRef,
    config: BootstrapConfig,
) -> int:
    from ghmirror.bootstrap.actor import bootstrap_enqueuer
    from ghmirror.bootstrap.workflow import BootstrapScheduler

    scheduler = BootstrapScheduler(
        session_factory, bootstrap_enqueuer(database_url), config
    )
    job = await scheduler.request(repository)
    print(f"{repository.full_name}: sync job {job.lock_key} is {job.state}")
    return 0


async def _run_inline(
    session_factory: SessionFactory,
    repository: RepositoryRef,
    config: BootstrapConfig,
) -> int:
    journal = SyncJobJournal(session_factory)
    job = await journal.open_job(
        installation_id=repository.installation_id,
        repository_id=repository.repository_id,
    )
    if job.state in ACTIVE_STATES:
        print(
            f"{repository.full_name}: sync job {job.lock_key} already has a run "
            f"in progress ({job.state})"
        )
        return 1

    try:
        finished = await run_bootstrap(
            session_factory,
            job.lock_key,
            resolver=_resolver(session_factory),
            config=config,
        )
    except (GitHubAuthError, GitHubConfigError, GitHubAPIError) as exc:
        print(f"{repository.full_name}: bootstrap failed: {exc}")
        return 1

    items = 0 if finished is None else finished.items_fetched
    print(f"{repository.full_name}: bootstrap complete, {items} items fetched")
    return 0


async def _bootstrap(args: argparse.Namespace, database_url: str) -> int:
    config = BootstrapConfig.from_env()
    engine = create_async_engine(database_url)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    try:
        repository = await ProjectionQueries(session_factory).find_repository(
            args.repository
        )
        if repository is None:
            print(f"{args.repository} is not a connected repository")
            return 1
        if repository.installation_id != args.installation_id:
            print(
                f"{args.repository} belongs to installation "
                f"{repository.installation_id}, not {args.installation_id}"
            )
            return 1

        if args.enqueue:
            return await _enqueue(session_factory, database_url, repository, config)
        return await _run_inline(session_factory, repository, config)
    finally:
        await engine.dispose()


def main(argv: list[str] | None = None) -> int:
    """Run the ``ghmirror`` command line.

    Parameters
    ----------
    argv : list[str] | None, optional
        Command-line arguments. ``None`` defaults to ``sys.argv``.

    Returns
    -------
    int
        Exit code: 0 on success, 1 when the command could not complete and
        2 when no database URL is configured.

    """
    args = _build_parser().parse_args(argv)
    configure_logging()

    database_url = args.database_url or database_url_from_env()
    if database_url is None:
        print(f"no database configured: pass --database-url or set {DATABASE_URL_ENV}")
        return 2

    if args.command == "init-db":
        return asyncio.run(_init_db(database_url))
    return asyncio.run(_bootstrap(args, database_url))


if __name__ == "__main__":
    raise SystemExit(main())
