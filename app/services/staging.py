"""
Staging for submitted images.

A transformation request carries the photo inline (a data URL). The bytes
are written once, content-addressed, at submission time and the job only
stores the short token returned here. The dispatch client loads the bytes
back from the token when it calls the provider.
"""
import asyncio
import base64
import binascii
import hashlib
import re
from pathlib import Path

from app.config import settings
from app.exceptions import InvalidImage


DATA_URL_PATTERN = re.compile(r"^data:([A-Za-z-+/]+);base64,(.+)$", re.DOTALL)
TOKEN_PREFIX = "sha256:"
MIN_BASE64_LENGTH = 100


def decode_image(image: str) -> tuple[bytes, str]:
    """
    Decode a data URL (or bare base64) into bytes and a MIME type.

    Raises:
        InvalidImage: malformed, too short or not base64
    """
    match = DATA_URL_PATTERN.match(image.strip())
    if match:
        mime_type, payload = match.group(1), match.group(2)
    elif image.startswith("data:"):
        raise InvalidImage("Invalid image data URL")
    else:
        mime_type, payload = "image/jpeg", image.strip()

    if not mime_type.startswith("image/"):
        raise InvalidImage(f"Unsupported content type: {mime_type}")
    if len(payload) < MIN_BASE64_LENGTH:
        raise InvalidImage("Invalid or too short base64 image data")

    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidImage("Invalid base64 image data") from e
    return data, mime_type


class ImageStager:
    """Content-addressed image store on the local filesystem."""

    def __init__(self, root: str | Path | None = None):
        self.root = Path(root or settings.UPLOAD_DIR)

    def _path(self, token: str) -> Path:
        if not token.startswith(TOKEN_PREFIX):
            raise InvalidImage(f"Unknown image reference: {token}")
        digest = token[len(TOKEN_PREFIX):]
        if not re.fullmatch(r"[0-9a-f]{64}", digest):
            raise InvalidImage(f"Unknown image reference: {token}")
        return self.root / digest

    async def stage(self, image: str) -> tuple[str, str]:
        """
        Decode and persist an image.

        Returns:
            (token, mime_type)
        """
        data, mime_type = decode_image(image)
        token = TOKEN_PREFIX + hashlib.sha256(data).hexdigest()
        path = self._path(token)

        def _write():
            self.root.mkdir(parents=True, exist_ok=True)
            if not path.exists():
                path.write_bytes(data)

        await asyncio.to_thread(_write)
        return token, mime_type

    async def load(self, token: str) -> bytes:
        """Read staged bytes back; raises InvalidImage if they are gone."""
        path = self._path(token)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as e:
            raise InvalidImage(f"Staged image missing: {token}") from e
        except OSError as e:
            raise InvalidImage(f"Staged image unreadable: {token}") from e
