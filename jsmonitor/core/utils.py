"""
Small shared helpers: hashing, file naming and size formatting.
"""

import hashlib
from datetime import datetime
from urllib.parse import quote


MAX_FILE_NAME = 150


def sha256_hex(data) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def safe_file_name(url: str) -> str:
    name = quote(url, safe="").replace("%", "_")
    if len(name) > MAX_FILE_NAME:
        name = f"{name[:MAX_FILE_NAME]}_{sha256_hex(url)[:8]}"
    return name


def safe_domain(domain: str) -> str:
    return domain.replace("/", "_").replace(":", "_")


def timestamp_slug() -> str:
    return datetime.now().strftime("%Y%m%d_%H%M%S_%f")


def format_file_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    value = float(size)
    for unit in ("KB", "MB", "GB"):
        value /= 1024
        if value < 1024 or unit == "GB":
            return f"{value:.1f} {unit}"
    return f"{size} B"


def short_name(url: str, limit: int = 25) -> str:
    name = url.split("?")[0].rstrip("/").split("/")[-1] or url
    if len(name) > limit:
        return name[:limit - 3] + "..."
    return name
