"""
Product and avatar media on local storage.

Layout under the media root::

    {category}/{product_id}/{timestamp}_{suffix}.{ext}
    avatars/{user_id}/avatar.{ext}

Files are never shared between products.
"""
from __future__ import annotations

import logging
import re
import secrets
import time
from pathlib import Path
from typing import Any, Optional, Tuple

from sqlalchemy.orm import Session
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from storefront.config import Config
from storefront.models import MediaType, Product, ProductMedia
from storefront.observability import increment_counter
from storefront.services.change_feed import publish_change

_WHITESPACE = re.compile(r"\s+")


def generate_path(category: str, product_id: str, filename: str) -> str:
    clean_category = _WHITESPACE.sub("_", (category or "").lower())
    return f"{clean_category}/{product_id}/{filename}"


def _extension(filename: Optional[str]) -> str:
    safe = secure_filename(filename or "")
    if "." not in safe:
        return ""
    return safe.rsplit(".", 1)[1].lower()


class LocalMediaStore:
    """Stores uploads under a root directory and builds their public URLs."""

    def __init__(self, root: Optional[Path] = None, url_prefix: Optional[str] = None) -> None:
        self.root = Path(root or Config.MEDIA_ROOT)
        self.url_prefix = url_prefix or Config.MEDIA_URL_PREFIX

    def save(self, relative_path: str, upload: FileStorage) -> str:
        target = self.root / relative_path
        target.parent.mkdir(parents=True, exist_ok=True)
        upload.save(str(target))
        return self.public_url(relative_path)

    def delete(self, relative_path: str) -> bool:
        target = self.root / relative_path
        if not target.exists():
            return False
        target.unlink()
        return True

    def public_url(self, relative_path: str) -> str:
        return f"{self.url_prefix.rstrip('/')}/{relative_path}"


class MediaService:
    def __init__(self, db_session: Session, store: Optional[LocalMediaStore] = None) -> None:
        self.db = db_session
        self.store = store or LocalMediaStore()
        self.logger = logging.getLogger(__name__)

    def upload_media(
        self,
        product_id: str,
        category: Optional[str],
        upload: Optional[FileStorage],
        media_type: MediaType | str = MediaType.IMAGE,
        is_primary: bool = False,
    ) -> Tuple[bool, str, Optional[ProductMedia]]:
        product = self.db.query(Product).filter_by(id=product_id).first()
        if not product:
            return False, "Product not found", None
        if upload is None or not upload.filename:
            return False, "A file is required", None

        extension = _extension(upload.filename)
        if extension not in Config.MEDIA_ALLOWED_EXTENSIONS:
            return False, f"Files of type .{extension or '?'} are not allowed", None
        try:
            type_enum = MediaType(media_type)
        except ValueError:
            return False, f"Unknown media type {media_type}", None

        filename = f"{int(time.time() * 1000)}_{secrets.token_hex(3)}.{extension}"
        path = generate_path(category or product.category, product.id, filename)
        url = self.store.save(path, upload)

        if is_primary:
            self._clear_primary(product.id)
        media = ProductMedia(
            product_id=product.id,
            type=type_enum,
            url=url,
            path=path,
            is_primary=is_primary,
        )
        self.db.add(media)
        self.db.commit()

        increment_counter("media_uploads_total", labels={"type": type_enum.value})
        publish_change("product_media", "INSERT", media.id, {"product_id": product.id})
        self.logger.info("Media uploaded", extra={"product_id": product.id, "media_path": path})
        return True, "Media uploaded", media

    def set_primary(self, product_id: str, media_id: str) -> Tuple[bool, str]:
        media = self.db.query(ProductMedia).filter_by(id=media_id, product_id=product_id).first()
        if not media:
            return False, "Media not found"
        self._clear_primary(product_id)
        media.is_primary = True
        self.db.commit()
        return True, "Primary media updated"

    def delete_media(self, media_id: str) -> Tuple[bool, str]:
        media = self.db.query(ProductMedia).filter_by(id=media_id).first()
        if not media:
            return False, "Media not found"
        if not self.store.delete(media.path):
            self.logger.warning("Storage deletion failed or file not found", extra={"media_path": media.path})
        self.db.delete(media)
        self.db.commit()
        publish_change("product_media", "DELETE", media_id)
        return True, "Media deleted"

    def upload_avatar(self, user_id: str, upload: Optional[FileStorage]) -> Tuple[bool, str, Optional[str]]:
        """Store (or replace) a user's avatar and return its URL."""
        if upload is None or not upload.filename:
            return False, "A file is required", None
        extension = _extension(upload.filename)
        if extension not in Config.MEDIA_ALLOWED_EXTENSIONS:
            return False, f"Files of type .{extension or '?'} are not allowed", None
        url = self.store.save(f"avatars/{user_id}/avatar.{extension}", upload)
        return True, "Avatar uploaded", url

    def _clear_primary(self, product_id: str) -> Any:
        return (
            self.db.query(ProductMedia)
            .filter_by(product_id=product_id)
            .update({ProductMedia.is_primary: False}, synchronize_session="fetch")
        )
