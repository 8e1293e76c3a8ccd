import html
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from urllib.parse import quote

import aiofiles.os
import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import FileResponse, HTMLResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles

from simple_file_server import config
from simple_file_server.logger_config import disable_file_logging, enable_file_logging, log_requests, setup_logger
from simple_file_server.pages import ensure_default_pages
from simple_file_server.services.settings_store import (
    Settings,
    SettingsError,
    StartupResult,
    StartupStatus,
    load_or_bootstrap,
)
from simple_file_server.services.upload_handler import UPLOAD_SUCCESSFUL, UploadHandler, UploadRejected
from simple_file_server.services.usage_tracker import UsageTracker

# Logger setup
logger = setup_logger()


async def clean_temp_dir(temp_dir: Path) -> int:
    """Remove upload leftovers from a previous run."""
    await aiofiles.os.makedirs(temp_dir, exist_ok=True)
    files_removed = 0
    for file in temp_dir.glob("*"):
        if file.is_file():
            await aiofiles.os.unlink(file)
            files_removed += 1
    return files_removed


def create_app(
    settings: Settings,
    serialize_uploads: bool = config.SERIALIZE_UPLOADS,
    log_to_file: bool = False,
) -> FastAPI:
    """Build the file server application for the given settings.

    With log_to_file, the session and latest log files are open for the
    lifetime of the app.
    """
    upload_folder = Path(settings.folder_path)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if log_to_file:
            enable_file_logging(Path(config.LOGS_DIR))

        tracker = UsageTracker(upload_folder)
        await tracker.initialize()
        upload_handler = UploadHandler(settings, tracker, serialize_uploads)
        files_removed = await clean_temp_dir(upload_handler.temp_dir)
        logger.info(f"Cleaned temporary directory, removed {files_removed} files")
        Path(config.STATIC_DIR).mkdir(parents=True, exist_ok=True)

        app.state.tracker = tracker
        app.state.upload_handler = upload_handler
        logger.info(
            f"Upload folder: {upload_folder}, quota {settings.size_limit} MB, "
            f"single file limit {settings.single_file_size_limit} MB, read only: {settings.read_only}"
        )
        yield

        if log_to_file:
            logger.info("Shutting down, closing log files")
            disable_file_logging()

    app = FastAPI(title="Simple File Server", version=config.VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.middleware("http")(log_requests)

    @app.exception_handler(UploadRejected)
    async def upload_rejected_handler(request: Request, exc: UploadRejected):
        logger.warning(f"Upload rejected ({exc.status_code}): {exc.reason}")
        return PlainTextResponse(exc.message, status_code=exc.status_code)

    @app.get("/")
    async def index():
        return FileResponse(Path(config.WWW_DIR) / "index.html")

    @app.get("/upload")
    async def upload_form():
        logger.info("Serving the HTML form file ...")
        return FileResponse(Path(config.WWW_DIR) / "upload.html")

    @app.api_route("/upload", methods=["POST", "PUT", "PATCH", "DELETE"])
    async def upload_file(request: Request):
        await request.app.state.upload_handler.handle(request)
        return PlainTextResponse(UPLOAD_SUCCESSFUL, status_code=status.HTTP_201_CREATED)

    @app.get("/uploads", response_class=HTMLResponse)
    @app.get("/uploads/", response_class=HTMLResponse)
    async def list_uploads(request: Request):
        """Plain listing of the stored files."""
        tracker = request.app.state.tracker
        rows = []
        try:
            names = sorted(await aiofiles.os.listdir(tracker.folder))
        except FileNotFoundError:
            logger.warning(f"Upload folder {tracker.folder} is missing")
            names = []
        for name in names:
            path = tracker.folder / name
            if not await aiofiles.os.path.isfile(path):
                continue
            size = (await aiofiles.os.stat(path)).st_size
            rows.append(f'<li><a href="/uploads/{quote(name)}">{html.escape(name)}</a> ({size} bytes)</li>')

        used_mb = tracker.space_used / (1024 * 1024)
        return (
            "<html>\n<head>\n\t<title>Uploaded files</title>\n</head>\n<body>\n"
            "\t<h1>Uploaded files</h1>\n"
            f"\t<p>{used_mb:.2f} MB used of {settings.size_limit} MB</p>\n"
            "\t<ul>\n\t\t" + "\n\t\t".join(rows) + "\n\t</ul>\n"
            "</body>\n</html>"
        )

    # File servers
    app.mount("/static", StaticFiles(directory=config.STATIC_DIR, check_dir=False), name="static")
    app.mount("/uploads", StaticFiles(directory=upload_folder, check_dir=False), name="uploads")
    return app


def bootstrap() -> StartupResult:
    """First phase of startup: default pages and settings."""
    ensure_default_pages(Path(config.WWW_DIR))
    logger.info("Loading settings ...")
    return load_or_bootstrap(config.SETTINGS_PATH)


def run():
    try:
        result = bootstrap()
    except (SettingsError, OSError) as e:
        logger.critical(f"Startup failed: {e}")
        sys.exit(1)

    if result.status is StartupStatus.RAN_WITH_DEFAULTS:
        logger.info("Default settings written. Review them and start the server again.")
        return

    app = create_app(result.settings, log_to_file=True)

    logger.info(f"Starting Simple File Server {config.VERSION}...")
    logger.info(f"Logs directory: {config.LOGS_DIR}")
    uvicorn.run(app, host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    run()
