"""Command-line interface for the QUIC harness.

Example:
    >>> # From terminal:
    >>> # quic-harness --version
    >>> # quic-harness serve --download-dir ~/Downloads
    >>> # quic-harness verify payload.bin --download-dir ~/Downloads
"""

import threading
from pathlib import Path
from typing import Annotated, Optional

import typer

from quic_harness import __version__
from quic_harness.config import HarnessConfig
from quic_harness.data import DATA_LEN, DATA_LONG_LEN
from quic_harness.errors import HarnessError
from quic_harness.session import HarnessSession
from quic_harness.verifier import DownloadVerifier

app = typer.Typer(help="QUIC harness: HTTP/3 transport exercise server.")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """QUIC harness CLI."""


def _config(download_dir: Optional[Path], client_dir: Optional[Path]) -> HarnessConfig:
    config = HarnessConfig.from_env()
    overrides: dict[str, object] = {}
    if download_dir is not None:
        overrides["download_dir"] = download_dir
    if client_dir is not None:
        overrides["client_dir"] = client_dir
    return config.model_copy(update=overrides)


@app.command("serve")
def serve(
    download_dir: Annotated[
        Optional[Path],
        typer.Option("--download-dir", help="Directory the external client downloads into."),
    ] = None,
    client_dir: Annotated[
        Optional[Path],
        typer.Option("--client-dir", help="Directory holding client-<os>-debug binaries."),
    ] = None,
    large: Annotated[
        bool,
        typer.Option("--large", help="Serve the 50 MiB payload at /data instead of 500 KiB."),
    ] = False,
) -> None:
    """Run the exercise server with one scratch area until interrupted."""
    session = HarnessSession(_config(download_dir, client_dir))
    session.data_manager.prepare_data(DATA_LONG_LEN if large else DATA_LEN)
    try:
        session.suite_setup()
    except HarnessError as exc:
        typer.echo(f"Error: {exc.message}", err=True)
        raise typer.Exit(1) from exc
    scratch = session.test_setup(test_id="cli")
    typer.echo(f"Serving HTTP/3 on {session.url('/')} (UDP port {session.port})")
    typer.echo(f"Uploads are written to {scratch.path}")
    typer.echo(f"Payload MD5: {session.data_manager.get_md5().hex()}")
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        typer.echo("Shutting down")
    finally:
        try:
            session.test_teardown()
        finally:
            session.suite_teardown()


@app.command("verify")
def verify(
    filename: Annotated[str, typer.Argument(help="File name inside the download directory.")],
    download_dir: Annotated[
        Optional[Path],
        typer.Option("--download-dir", help="Directory the external client downloads into."),
    ] = None,
) -> None:
    """Print size and MD5 of a downloaded artifact."""
    verifier = DownloadVerifier(_config(download_dir, None).download_dir)
    size = verifier.get_download_size(filename)
    md5 = verifier.get_download_md5(filename)
    typer.echo(f"size: {size}")
    typer.echo(f"md5: {md5.hex() if md5 is not None else '-'}")
    if md5 is None:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
