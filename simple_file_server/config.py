"""Configuration settings for the Simple File Server."""

VERSION = "1.0"

# Network
HOST = "0.0.0.0"
PORT = 8080

# Upload limits (the quotas themselves live in settings.json)
MULTIPART_OVERHEAD_BYTES = 10 * 1024  # 10KB for non-file form fields
CHUNK_SIZE = 8192  # 8KB
SERIALIZE_UPLOADS = True

# Paths, relative to the working directory
SETTINGS_PATH = "settings.json"
WWW_DIR = "./www"
STATIC_DIR = "./static"
LOGS_DIR = "./logs"

# Uploads are staged here, inside the upload folder, then renamed into place
PARTIAL_DIR = ".partial"
