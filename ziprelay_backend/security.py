from __future__ import annotations

import re
import uuid
from urllib.parse import quote


_TOKEN_RE = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-4[0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}$")


def new_token() -> str:
    # uuid4 draws from os.urandom, so tokens are not predictable from earlier ones.
    return str(uuid.uuid4())


def normalize_token(token: str) -> str:
    """Validate and normalize a download token.

    Tokens are capabilities: anyone holding one can download the archive once.
    Only the canonical UUID4 text form is accepted.
    """
    if not isinstance(token, str):
        raise ValueError("Invalid token")
    token = token.strip()
    if not _TOKEN_RE.match(token):
        raise ValueError("Invalid token")
    return str(uuid.UUID(token))


def safe_entry_name(name: str | None) -> str | None:
    """Reduce a remote-supplied name to a bare file name.

    Returns None when nothing usable is left. Archive entries must never carry
    directories, drive letters or parent references (Zip Slip).
    """
    if not isinstance(name, str):
        return None
    name = name.replace("\\", "/").strip()
    name = name.rstrip("/").rsplit("/", 1)[-1]
    if ":" in name:
        name = name.rsplit(":", 1)[-1]
    name = "".join(ch for ch in name if ch >= " " and ch != "\x7f").strip()
    if name in ("", ".", ".."):
        return None
    return name


def content_disposition(filename: str) -> str:
    """Build an attachment header value that survives any filename.

    Quotes and control characters are dropped from the plain parameter; names
    outside ASCII also get an RFC 6266 ``filename*`` parameter.
    """
    plain = "".join(ch for ch in filename if " " <= ch < "\x7f" and ch not in '"\\')
    plain = plain.strip() or "download.zip"
    value = f'attachment; filename="{plain}"'
    if plain != filename:
        value += f"; filename*=UTF-8''{quote(filename, safe='')}"
    return value
