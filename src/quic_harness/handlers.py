"""Transport-exercise endpoints served over HTTP/3.

This module builds the FastAPI application the harness server exposes:

- /hello: fixed greeting
- /data and /data/<anything>: the data manager's current payload
- /echo: request body written back unchanged
- /uploadform?num=N: HTML form with N file inputs
- /uploadhandler: multipart ingestion into the current test's scratch area

Every HarnessError raised by a handler is recorded on the session, so it
fails the running test at teardown, and is answered with a JSON error body.

Example:
    >>> from quic_harness.session import HarnessSession
    >>> session = HarnessSession()
    >>> app = create_app(session)
"""

from __future__ import annotations

import asyncio
import html
import shutil
from pathlib import Path
from typing import IO, TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, Response
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException
from starlette.requests import ClientDisconnect

from quic_harness import __version__
from quic_harness.errors import (
    EmptyPayloadError,
    HarnessError,
    InvalidQueryParameterError,
    InvalidUploadError,
    NoScratchAreaError,
    NoUploadedFilesError,
    TransferError,
    UploadTooLargeError,
)
from quic_harness.observability import get_logger

if TYPE_CHECKING:
    from quic_harness.session import HarnessSession

logger = get_logger(__name__)

HELLO_PATH = "/hello"
DATA_PATH = "/data"
ECHO_PATH = "/echo"
UPLOAD_FORM_PATH = "/uploadform"
UPLOAD_HANDLER_PATH = "/uploadhandler"

HELLO_BODY = "Hello, World!\n"
UPLOAD_FIELD_PREFIX = "uploadfile_"

# Endpoints answer regardless of method, except the upload handler
ANY_METHOD = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def parse_num(raw: str | None) -> int:
    """Parse the ``num`` query parameter of the upload form.

    Raises:
        InvalidQueryParameterError: If missing, not a decimal integer or < 1.
    """
    if raw is None or raw == "":
        raise InvalidQueryParameterError("num", raw, "parameter is required")
    try:
        num = int(raw)
    except ValueError:
        raise InvalidQueryParameterError("num", raw, "not an integer") from None
    if num < 1:
        raise InvalidQueryParameterError("num", raw, "must be a positive integer")
    return num


def render_upload_form(num: int, action: str) -> str:
    """HTML form with ``num`` file inputs named uploadfile_0 .. uploadfile_<num-1>."""
    parts = [
        "<html><body>\n<form id='form' action='"
        + html.escape(action, quote=True)
        + "' method='post' enctype='multipart/form-data'>"
    ]
    for i in range(num):
        parts.append(f"<input type='file' id='upload_{i}' name='{UPLOAD_FIELD_PREFIX}{i}' />")
    parts.append("</form></body></html>")
    return "".join(parts)


def upload_target(scratch_dir: Path, field: str, filename: str | None) -> Path:
    """Destination for an uploaded file; the declared name is used verbatim.

    Raises:
        InvalidUploadError: If the name is empty, a dot entry or contains a
            path separator, i.e. would not land directly in scratch_dir.
    """
    if not filename or filename in (".", ".."):
        raise InvalidUploadError(field, "missing filename", {"filename": filename})
    if "/" in filename or "\\" in filename or "\x00" in filename:
        raise InvalidUploadError(field, "filename is not a plain name", {"filename": filename})
    return scratch_dir / filename


def _store(src: IO[bytes], target: Path) -> int:
    src.seek(0)
    with target.open("wb") as out:
        shutil.copyfileobj(src, out)
        return out.tell()


def create_app(session: HarnessSession) -> FastAPI:
    """Create the FastAPI application bound to a harness session.

    Args:
        session: Supplies the data manager, the current scratch area, the
            upload ceiling and receives recorded handler failures.

    Returns:
        Configured FastAPI application ready to be served.
    """
    app = FastAPI(
        title="QUIC Harness Server",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.session = session
    max_upload_size = session.config.max_upload_size

    async def _harness_error_handler(request: Request, exc: HarnessError) -> JSONResponse:
        session.record_failure(exc)
        logger.warning(
            "quic.handler.failed",
            path=request.url.path,
            code=exc.code,
            error=exc.message,
            test_id=session.test_id,
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    app.add_exception_handler(HarnessError, _harness_error_handler)

    @app.api_route(HELLO_PATH, methods=ANY_METHOD)
    async def hello() -> PlainTextResponse:
        return PlainTextResponse(HELLO_BODY)

    async def _serve_data() -> Response:
        data = session.data_manager.get_data()
        if not data:
            raise EmptyPayloadError()
        return Response(content=data, media_type="application/octet-stream")

    @app.api_route(DATA_PATH, methods=ANY_METHOD)
    async def data() -> Response:
        return await _serve_data()

    @app.api_route(DATA_PATH + "/{subpath:path}", methods=ANY_METHOD)
    async def data_subpath(subpath: str) -> Response:
        return await _serve_data()

    @app.api_route(ECHO_PATH, methods=ANY_METHOD)
    async def echo(request: Request) -> Response:
        try:
            body = await request.body()
        except ClientDisconnect as exc:
            raise TransferError("echo body read", repr(exc)) from exc
        return Response(content=body, media_type="application/octet-stream")

    @app.api_route(UPLOAD_FORM_PATH, methods=ANY_METHOD)
    async def upload_form(request: Request) -> HTMLResponse:
        num = parse_num(request.query_params.get("num"))
        action = str(request.url_for("upload_handler"))
        return HTMLResponse(render_upload_form(num, action))

    @app.post(UPLOAD_HANDLER_PATH, name="upload_handler")
    async def upload_handler(request: Request) -> Response:
        declared = request.headers.get("content-length", "")
        if declared.isdigit() and int(declared) > max_upload_size:
            raise UploadTooLargeError(int(declared), max_upload_size)

        scratch = session.scratch
        if scratch is None:
            raise NoScratchAreaError()

        try:
            form = await request.form()
        except (ClientDisconnect, HTTPException) as exc:
            raise TransferError("multipart parse", repr(exc)) from exc

        count = 0
        total = 0
        try:
            # Stops at the first missing index; a gap truncates the upload.
            while True:
                field = f"{UPLOAD_FIELD_PREFIX}{count}"
                # A repeated field name uses its first part
                parts = form.getlist(field)
                item = parts[0] if parts else None
                if not isinstance(item, UploadFile):
                    break
                target = upload_target(scratch.path, field, item.filename)
                total += item.size or 0
                if total > max_upload_size:
                    raise UploadTooLargeError(total, max_upload_size)
                try:
                    written = await asyncio.to_thread(_store, item.file, target)
                except OSError as exc:
                    raise TransferError("upload persist", str(exc)) from exc
                logger.info(
                    "quic.upload.stored",
                    field=field,
                    filename=item.filename,
                    size=written,
                    test_id=session.test_id,
                )
                count += 1
        finally:
            await form.close()

        if count == 0:
            raise NoUploadedFilesError(f"{UPLOAD_FIELD_PREFIX}0")
        return Response(content=b"", status_code=200)

    return app
