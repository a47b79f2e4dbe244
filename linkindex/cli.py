"""
CLI for inspecting a linkindex store.

Usage:
    linkindex keys boxes
    linkindex show boxes 3f1a...
    linkindex walk boxes_by_shape <index key> boxes
    linkindex index-key square
    linkindex lookup boxes shape square
"""

import json
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

import typer
from typing_extensions import Annotated

from .backend import create_gateway
from .config import get_default_store_path, load_or_create_config
from .errors import NotFoundError
from .finders import objects_by_indexed_attribute
from .logging_config import configure_ops_log, configure_quiet_mode, enable_debug_mode
from .protocol import StorageGateway
from .types import StoredObject, index_key

logger = logging.getLogger(__name__)

# Set LINKINDEX_VERBOSE=1 to enable debug mode via environment
if os.environ.get("LINKINDEX_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"linkindex {version('linkindex')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_store_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _store_callback(value: Optional[Path]):
    global _store_override
    _store_override = value


app = typer.Typer(
    name="linkindex",
    help="Inspect objects, links and index records in a linkindex store.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="LINKINDEX_STORE_PATH",
        help="Path to the store directory",
        callback=_store_callback,
        is_eager=True,
    )] = None,
):
    """Inspect objects, links and index records in a linkindex store."""


def _store_path() -> Path:
    return _store_override if _store_override is not None else get_default_store_path()


@contextmanager
def _open_gateway() -> Iterator[StorageGateway]:
    """Open the configured gateway for one command and close it afterwards."""
    path = _store_path()
    try:
        config = load_or_create_config(path)
        gateway = create_gateway(config)
    except (OSError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    ops_log = configure_ops_log(path)
    logger.info("Opened %s store at %s", config.backend, path)
    try:
        yield gateway
    finally:
        gateway.close()
        logging.getLogger("linkindex").removeHandler(ops_log)
        ops_log.close()


def _parse_value(raw: str) -> Any:
    """JSON value if ``raw`` parses as JSON, else the raw string."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _object_dict(obj: StoredObject) -> dict:
    return {
        "bucket": obj.bucket,
        "key": obj.key,
        "data": obj.data,
        "links": [
            {"bucket": link.bucket, "key": link.key, "tag": link.tag}
            for link in obj.links
        ],
    }


def _format_object(obj: StoredObject) -> str:
    if _json_output:
        return json.dumps(_object_dict(obj), indent=2, ensure_ascii=False)
    lines = [f"{obj.bucket}/{obj.key}"]
    for name, value in obj.data.items():
        lines.append(f"  {name}: {json.dumps(value, ensure_ascii=False)}")
    for link in obj.links:
        lines.append(f"  -> {link.bucket}/{link.key} [{link.tag}]")
    return "\n".join(lines)


def _get_or_exit(gateway: StorageGateway, bucket: str, key: str) -> StoredObject:
    try:
        return gateway.get(bucket, key)
    except NotFoundError:
        typer.echo(f"Not found: {bucket}/{key}", err=True)
        raise typer.Exit(1)


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def init():
    """Create the store directory and its config file."""
    config = load_or_create_config(_store_path())
    typer.echo(f"Store: {config.path} (backend: {config.backend})")


@app.command()
def keys(
    bucket: Annotated[str, typer.Argument(help="Bucket to list")],
    stream: Annotated[bool, typer.Option(
        "--stream", help="Stream keys in batches",
    )] = False,
):
    """List the keys in a bucket."""
    with _open_gateway() as gateway:
        if stream:
            for batch in gateway.stream_keys(bucket):
                for key in batch:
                    typer.echo(key)
            return
        found = gateway.list_keys(bucket)
        if _json_output:
            typer.echo(json.dumps(found))
        else:
            for key in found:
                typer.echo(key)


@app.command()
def show(
    bucket: Annotated[str, typer.Argument(help="Bucket name")],
    key: Annotated[str, typer.Argument(help="Object key")],
):
    """Show an object's data and links."""
    with _open_gateway() as gateway:
        typer.echo(_format_object(_get_or_exit(gateway, bucket, key)))


@app.command()
def walk(
    bucket: Annotated[str, typer.Argument(help="Bucket name")],
    key: Annotated[str, typer.Argument(help="Object key")],
    target: Annotated[str, typer.Argument(help="Bucket to follow links into")],
):
    """Show the objects an object links to in a target bucket."""
    with _open_gateway() as gateway:
        obj = _get_or_exit(gateway, bucket, key)
        walked = gateway.walk_links(obj, target)
        results = walked[0] if walked else []
        if _json_output:
            typer.echo(json.dumps([_object_dict(o) for o in results], indent=2, ensure_ascii=False))
        else:
            for found in results:
                typer.echo(_format_object(found))


@app.command("index-key")
def index_key_cmd(
    value: Annotated[str, typer.Argument(help="Attribute value (JSON, or a plain string)")],
):
    """Print the index record key for an attribute value."""
    typer.echo(index_key(_parse_value(value)))


@app.command()
def lookup(
    bucket: Annotated[str, typer.Argument(help="Document bucket")],
    attribute: Annotated[str, typer.Argument(help="Indexed attribute")],
    value: Annotated[str, typer.Argument(help="Attribute value (JSON, or a plain string)")],
):
    """List keys of documents reached through an attribute's index record."""
    with _open_gateway() as gateway:
        found = [
            obj.key
            for obj in objects_by_indexed_attribute(gateway, bucket, attribute, _parse_value(value))
        ]
        if _json_output:
            typer.echo(json.dumps(found))
        else:
            for key in found:
                typer.echo(key)


def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="linkindex CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
