"""Configuration constants for the static video server."""

HOST: str = "0.0.0.0"
PORT: int = 9092
ASSETS_ROOT: str = "assets"
SERVER_NAME: str = "static-video-server/0.1"
BUFFER_SIZE: int = 1024
READ_CHUNK_SIZE: int = 8192
WRITE_CHUNK_SIZE: int = 256 * 1024
ENABLE_SENDFILE: bool = True
WORKER_COUNT: int = 16
REQUEST_QUEUE_SIZE: int = 64
SOCKET_TIMEOUT_SECS: int = 30
KEEPALIVE_TIMEOUT_SECS: int = 15
MAX_KEEPALIVE_REQUESTS: int = 100
MAX_REQUEST_BYTES: int = 65_536
MAX_HEADER_BYTES: int = 16_384
MAX_BODY_BYTES: int = 0
MAX_TARGET_LENGTH: int = 8192
LOG_FORMAT: str = "plain"
LOG_LEVEL: str = "INFO"

VIDEO_MIME_TYPES: dict[str, str] = {
    ".mp4": "video/mp4",
    ".av1": "video/av1",
    ".avi": "video/x-msvideo",
    ".flv": "video/x-flv",
    ".heic": "image/heic",
    ".mkv": "video/x-matroska",
    ".mov": "video/quicktime",
    ".mpg": "video/mpeg",
    ".mpeg": "video/mpeg",
    ".m4v": "video/x-m4v",
    ".webm": "video/webm",
    ".wmv": "video/x-ms-wmv",
    ".3gp": "video/3gpp",
}
