import logging
import uuid
from pathlib import Path

import aiofiles
import aiofiles.os
from fastapi import Request, status
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.formparsers import MultiPartException
from starlette.requests import ClientDisconnect

from simple_file_server import config
from simple_file_server.services.settings_store import MIB, Settings
from simple_file_server.services.usage_tracker import UsageTracker

logger = logging.getLogger("simple_file_server")

UPLOAD_FIELD = "fileUpload"
NEUTRAL_SUFFIX = ".txt"

METHOD_NOT_ALLOWED = "Method not allowed."
READ_ONLY = "Cannot upload file: Directory is marked as readonly in the settings."
UPLOAD_FAILED = "File upload failed! See log for details."
FILE_TOO_LARGE = "File too large!"
NOT_ENOUGH_SPACE = "Not enough space to upload this file."
INVALID_NAME = "Invalid file name."
UPLOAD_SUCCESSFUL = "File upload successful."


class UploadRejected(Exception):
    """An upload that ends without storing a file.

    `message` is what the client sees, `reason` is what goes to the log.
    """

    def __init__(self, status_code: int, message: str, reason: str = None):
        super().__init__(reason or message)
        self.status_code = status_code
        self.message = message
        self.reason = reason or message


def get_upload_size(upload: UploadFile) -> int:
    """Size of the parsed upload, measured from the spooled file if unknown."""
    if upload.size is not None:
        return upload.size
    upload.file.seek(0, 2)  # Seek to end
    size = upload.file.tell()
    upload.file.seek(0)
    return size


def get_extension(filename: str) -> str:
    """Text from the last dot on, dot included. Dotfiles such as ".html" count as an extension."""
    dot = filename.rfind(".")
    if dot == -1:
        return ""
    return filename[dot:]


class UploadHandler:
    """Validates incoming uploads against the settings and commits them to the upload folder."""

    def __init__(
        self,
        settings: Settings,
        tracker: UsageTracker,
        serialize_uploads: bool = True,
    ):
        self.settings = settings
        self.tracker = tracker
        # Same filesystem as the destination, so the final rename stays atomic
        self.temp_dir = tracker.folder / config.PARTIAL_DIR
        self.serialize_uploads = serialize_uploads

        # Limits in settings are in MB
        self.size_limit_bytes = settings.size_limit * MIB
        self.single_file_size_limit_bytes = settings.single_file_size_limit * MIB
        # Additional space for other fields in the form data
        self.max_multipart_bytes = self.single_file_size_limit_bytes + config.MULTIPART_OVERHEAD_BYTES

    async def handle(self, request: Request) -> Path:
        """Run one upload request to completion.

        Returns the path of the stored file.

        Raises:
            UploadRejected: for every outcome other than a stored file
        """
        if request.method != "POST":
            raise UploadRejected(
                status.HTTP_405_METHOD_NOT_ALLOWED,
                METHOD_NOT_ALLOWED,
                f"Unexpected request method: {request.method}",
            )

        if self.settings.read_only:
            raise UploadRejected(status.HTTP_403_FORBIDDEN, READ_ONLY)

        self.check_content_length(request)
        request = self.limit_body(request)

        try:
            async with request.form(max_files=1) as form:
                upload = form.get(UPLOAD_FIELD)
                if not isinstance(upload, UploadFile):
                    raise UploadRejected(
                        status.HTTP_400_BAD_REQUEST,
                        UPLOAD_FAILED,
                        f"Error when parsing file upload: no file in field '{UPLOAD_FIELD}'",
                    )

                size = get_upload_size(upload)
                remote = request.client.host if request.client else "-"
                logger.info(f"{remote}: Uploading {upload.filename} of size {size} ...")
                return await self.store(upload, size)
        except (MultiPartException, StarletteHTTPException, ClientDisconnect) as e:
            detail = getattr(e, "message", None) or getattr(e, "detail", None) or repr(e)
            raise UploadRejected(
                status.HTTP_400_BAD_REQUEST,
                UPLOAD_FAILED,
                f"Error when parsing file upload: {detail}",
            ) from e

    def check_content_length(self, request: Request):
        """Refuse bodies declared larger than the multipart budget before reading them."""
        content_length = request.headers.get("content-length")
        if content_length is None:
            return

        try:
            content_length_value = int(content_length)
        except ValueError:
            raise UploadRejected(
                status.HTTP_400_BAD_REQUEST,
                UPLOAD_FAILED,
                f"Invalid Content-Length header: {content_length!r}",
            )

        if content_length_value > self.max_multipart_bytes:
            raise UploadRejected(
                status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                FILE_TOO_LARGE,
                f"Request body of {content_length_value} bytes exceeds {self.max_multipart_bytes} bytes",
            )

    def limit_body(self, request: Request) -> Request:
        """Wrap the request so reading more than the multipart budget aborts parsing.

        Covers bodies sent without a Content-Length header.
        """
        receive = request.receive
        received = 0

        async def limited_receive():
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_multipart_bytes:
                    raise UploadRejected(
                        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                        FILE_TOO_LARGE,
                        f"Request body exceeds {self.max_multipart_bytes} bytes",
                    )
            return message

        return Request(request.scope, limited_receive)

    def admit(self, size: int):
        """Admission check against the per-file cap and the remaining quota."""
        if size > self.single_file_size_limit_bytes:
            raise UploadRejected(
                status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                FILE_TOO_LARGE,
                f"File too large! {size} bytes, limit is {self.single_file_size_limit_bytes}",
            )
        if self.tracker.space_used + size > self.size_limit_bytes:
            raise UploadRejected(
                status.HTTP_507_INSUFFICIENT_STORAGE,
                NOT_ENOUGH_SPACE,
                f"Not enough space for the file! {size} bytes requested, "
                f"{self.tracker.remaining(self.size_limit_bytes)} bytes left",
            )

    def destination_for(self, filename: str) -> Path:
        """Map a client filename to its path in the upload folder.

        Only bare file names are accepted. A forbidden extension gets a .txt
        suffix so the file is served as plain text.
        """
        if (
            not filename
            or filename in (".", "..")
            or "/" in filename
            or "\\" in filename
            or "\x00" in filename
            or filename == config.PARTIAL_DIR
        ):
            raise UploadRejected(
                status.HTTP_400_BAD_REQUEST,
                INVALID_NAME,
                f"Rejected file name {filename!r}",
            )

        if self.settings.is_forbidden(get_extension(filename)):
            filename += NEUTRAL_SUFFIX
        return self.tracker.folder / filename

    async def store(self, upload: UploadFile, size: int) -> Path:
        if self.serialize_uploads:
            async with self.tracker.lock:
                return await self._commit(upload, size)
        return await self._commit(upload, size)

    async def _commit(self, upload: UploadFile, size: int) -> Path:
        self.admit(size)
        destination = self.destination_for(upload.filename)
        temp_path = self.temp_dir / f"{uuid.uuid4().hex}.part"

        try:
            await aiofiles.os.makedirs(self.temp_dir, exist_ok=True)

            # Save content using chunks for memory efficiency
            copied = 0
            async with aiofiles.open(temp_path, 'wb') as f:
                while chunk := await upload.read(config.CHUNK_SIZE):
                    copied += len(chunk)
                    if copied > self.single_file_size_limit_bytes:
                        raise UploadRejected(
                            status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                            FILE_TOO_LARGE,
                            f"File too large! More than {self.single_file_size_limit_bytes} bytes received",
                        )
                    await f.write(chunk)

            await aiofiles.os.replace(temp_path, destination)
        except OSError as e:
            logger.error(f"Failed to store {destination}: {e}", exc_info=True)
            raise UploadRejected(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                UPLOAD_FAILED,
                f"Failed to store {destination.name}: {e}",
            ) from e
        finally:
            if await aiofiles.os.path.exists(temp_path):
                await aiofiles.os.remove(temp_path)

        try:
            await self.tracker.recompute()
        except OSError as e:
            logger.error(f"Failed to update used space: {e}")

        logger.info(f"File upload successful: {destination.name} ({copied} bytes)")
        return destination
