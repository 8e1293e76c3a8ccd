"""Default HTML pages written on first run."""
import logging
from pathlib import Path
from typing import List

from simple_file_server.config import VERSION

logger = logging.getLogger("simple_file_server")

DEFAULT_INDEX_HTML = f"""<html>
<head>
	<title>Simple file server {VERSION}</title>
</head>
<body>
	<h1>About</h1>
	<p>This is simple file server version {VERSION}</p>
	<hr/>
	<a href="/upload">Upload file</a> |
	<a href="/uploads/">See uploaded files</a>
</body>
</html>"""

DEFAULT_UPLOAD_HTML = """<html>
<head>
	<title>Upload file</title>
</head>
<body>
	<form method="POST" action="/upload" enctype="multipart/form-data">
		<input type="file" name="fileUpload"><br/>
		<input type="submit" value="Upload File">
	</form>
</body>
</html>"""

DEFAULT_PAGES = {
    "index.html": DEFAULT_INDEX_HTML,
    "upload.html": DEFAULT_UPLOAD_HTML,
}


def ensure_default_pages(www_dir: Path) -> List[Path]:
    """Create any missing page with its default content. Existing pages are left alone."""
    www_dir.mkdir(parents=True, exist_ok=True)
    created = []
    for name, content in DEFAULT_PAGES.items():
        page = www_dir / name
        if page.exists():
            continue
        logger.info(f"{page} does not exist, creating it ...")
        page.write_text(content, encoding="utf-8")
        created.append(page)
    return created
