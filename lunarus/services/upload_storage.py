"""
Local-disk storage for uploaded images, served back under /uploads.
"""
import logging
import os
import secrets
import shutil
import time
from typing import BinaryIO, Dict

logger = logging.getLogger(__name__)

MAX_EXTENSION_LENGTH = 12


class UploadStorage:
    """Stores uploads under <root>/files with collision-free names."""

    def __init__(self, root: str, public_base_url: str = ""):
        self.files_dir = os.path.join(root, "files")
        self.public_base_url = public_base_url.rstrip("/")
        os.makedirs(self.files_dir, exist_ok=True)

    def absolute_url(self, relative_path: str) -> str:
        if not self.public_base_url:
            return relative_path
        return f"{self.public_base_url}{relative_path}"

    def save(self, source: BinaryIO, original_name: str) -> Dict[str, object]:
        """
        Copy an uploaded stream to disk.

        Returns:
            Dict with filename, rel, url and size
        """
        extension = os.path.splitext(original_name or "file")[1][:MAX_EXTENSION_LENGTH]
        filename = f"{int(time.time() * 1000)}_{secrets.token_hex(16)}{extension}"
        path = os.path.join(self.files_dir, filename)

        with open(path, "wb") as target:
            shutil.copyfileobj(source, target)

        relative = f"/uploads/{filename}"
        size = os.path.getsize(path)
        logger.info(f"Stored upload {filename} ({size} bytes)")
        return {"filename": filename, "rel": relative, "url": self.absolute_url(relative), "size": size}
