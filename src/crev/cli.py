"""crev CLI: stage files, review them and commit signed proofs."""

from __future__ import annotations

import logging
import sys
import traceback
from pathlib import Path

import click

from crev import __version__
from crev.errors import CrevError
from crev.interactive import edit_proof_content, keep_proof_content, read_passphrase
from crev.local import Local
from crev.repo import Repo


def handle_error(error: Exception, debug: bool) -> None:
    """Report an error and exit non-zero.

    Args:
        error: The exception that occurred
        debug: Whether to show full traceback
    """
    if debug:
        traceback.print_exc()
    else:
        click.echo(f"Error: {error}", err=True)
    sys.exit(1)


def configure_logging(verbose: bool, debug: bool) -> None:
    level = logging.WARNING
    if verbose:
        level = logging.INFO
    if debug:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(levelname)s %(name)s: %(message)s",
    )


@click.group()
@click.version_option(version=__version__, prog_name="crev")
@click.option('--verbose', '-v', is_flag=True, help='Log progress to stderr')
@click.option('--debug', is_flag=True, help='Enable debug mode (show full tracebacks)')
@click.pass_context
def cli(ctx: click.Context, verbose: bool, debug: bool):
    """crev - cryptographically signed code review proofs."""
    ctx.ensure_object(dict)
    ctx.obj['debug'] = debug
    configure_logging(verbose, debug)


@cli.command()
@click.argument('trust_root_id')
@click.option(
    '--path',
    type=click.Path(file_okay=False, path_type=Path),
    default=Path('.'),
    help='Project root (default: current directory)',
)
@click.pass_context
def init(ctx: click.Context, trust_root_id: str, path: Path):
    """Initialize a crev project trusting TRUST_ROOT_ID."""
    try:
        repo = Repo.init(path, trust_root_id)
        click.echo(f"Initialized crev project in {repo.dot_crev_path}", err=True)
    except CrevError as e:
        handle_error(e, ctx.obj.get('debug', False))


@cli.command()
@click.argument('paths', nargs=-1, required=True, type=click.Path(path_type=Path))
@click.pass_context
def add(ctx: click.Context, paths: tuple[Path, ...]):
    """Stage files for the next review proof."""
    try:
        Repo.auto_open().add(paths)
    except CrevError as e:
        handle_error(e, ctx.obj.get('debug', False))


@cli.command()
@click.argument('paths', nargs=-1, required=True, type=click.Path(path_type=Path))
@click.pass_context
def remove(ctx: click.Context, paths: tuple[Path, ...]):
    """Unstage files. Paths that are not staged are ignored."""
    try:
        Repo.auto_open().remove(paths)
    except CrevError as e:
        handle_error(e, ctx.obj.get('debug', False))


@cli.command()
@click.pass_context
def status(ctx: click.Context):
    """List staged files."""
    try:
        for path in Repo.auto_open().status():
            click.echo(path)
    except CrevError as e:
        handle_error(e, ctx.obj.get('debug', False))


@cli.command()
@click.option('--edit/--no-edit', default=True, help='Edit proof content in $EDITOR before signing')
@click.pass_context
def commit(ctx: click.Context, edit: bool):
    """Sign a review of the staged files and append it to the proof store.

    The signed proof is printed to stdout.
    """
    try:
        repo = Repo.auto_open()
        result = repo.commit(
            local=Local.auto_open(),
            passphrase_provider=read_passphrase,
            editor=edit_proof_content if edit else keep_proof_content,
        )
        click.echo(result.proof.to_string(), nl=False)
        click.echo(f"Proof written to: {result.display_path}", err=True)
        if result.wipe_error is not None:
            raise result.wipe_error
    except CrevError as e:
        handle_error(e, ctx.obj.get('debug', False))


@cli.command()
@click.pass_context
def proofs(ctx: click.Context):
    """List proof files in the project store with their proof counts."""
    try:
        store = Repo.auto_open().proof_store
        for rel_path in store.list_files():
            click.echo(f"{rel_path}\t{len(store.read(rel_path))}")
    except CrevError as e:
        handle_error(e, ctx.obj.get('debug', False))


def main() -> None:
    """Entry point for the crev CLI."""
    cli(obj={})


if __name__ == '__main__':
    main()
