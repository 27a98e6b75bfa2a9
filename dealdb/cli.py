import logging

import click
from pymongo.errors import PyMongoError

from .config_loader import load_settings
from .errors import BootstrapError, translate
from .logging_setup import setup_logging
from .mongo_client import get_db, ping
from .bootstrap.steps import plan_steps
from .verify import verify_database


@click.group()
def cli():
    pass


@cli.group(help="Initialize external resources.")
def bootstrap():
    """Initialize external resources."""
    pass


@bootstrap.command()
@click.option("--config", default="config.yaml", show_default=True)
@click.option("--verbose", is_flag=True, help="Log every step as it runs.")
def mongo(config, verbose):
    log = setup_logging(logging.DEBUG if verbose else logging.INFO)
    s = load_settings(config)
    from .bootstrap.mongo_bootstrap import bootstrap_mongo

    try:
        res = bootstrap_mongo(s)
    except BootstrapError as exc:
        log.error(
            "bootstrap mongo failed",
            extra={
                "stage": "bootstrap.mongo",
                "step": exc.step,
                "reached": getattr(exc.stage, "value", exc.stage),
                "error": type(exc).__name__,
            },
        )
        raise click.ClickException(str(exc)) from exc
    log.info("MongoDB initialized successfully", extra={"stage": "bootstrap.mongo", **res})


@cli.command(help="List the bootstrap steps without contacting the server.")
@click.option("--config", default="config.yaml", show_default=True)
def plan(config):
    s = load_settings(config)
    for i, step in enumerate(plan_steps(s.bootstrap), start=1):
        click.echo(f"{i:2d}. {step.describe()} [if exists: {step.if_exists.value}]")


@cli.command(help="Check that the database matches the bootstrap layout.")
@click.option("--config", default="config.yaml", show_default=True)
def verify(config):
    log = setup_logging()
    s = load_settings(config)
    db = get_db(s)
    try:
        ping(db.client)
        problems = verify_database(db, s.bootstrap)
    except BootstrapError as exc:
        raise click.ClickException(str(exc)) from exc
    except PyMongoError as exc:
        err = translate(exc, "verify")
        if err is None:
            raise
        log.error("verify failed", extra={"stage": "verify", "error": type(err).__name__})
        raise click.ClickException(str(err)) from exc
    finally:
        db.client.close()
    for problem in problems:
        log.warning(problem, extra={"stage": "verify"})
    if problems:
        raise click.ClickException(f"{len(problems)} problem(s) found in {s.bootstrap.database}")
    log.info("database verified", extra={"stage": "verify", "database": s.bootstrap.database})


def main():
    cli()


if __name__ == "__main__":
    main()
