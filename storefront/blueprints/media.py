from __future__ import annotations

from flask import Blueprint, send_from_directory

from storefront.config import Config

media_bp = Blueprint("media", __name__)


@media_bp.route(f"{Config.MEDIA_URL_PREFIX.rstrip('/')}/<path:relative_path>", methods=["GET"])
def serve_media(relative_path: str):
    return send_from_directory(Config.MEDIA_ROOT, relative_path)
