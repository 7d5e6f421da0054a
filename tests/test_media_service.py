import io

import pytest
from werkzeug.datastructures import FileStorage

from storefront.models import ProductMedia
from storefront.services.media_service import LocalMediaStore, MediaService, generate_path


def _upload(filename="photo.JPG", content=b"fake image bytes"):
    return FileStorage(stream=io.BytesIO(content), filename=filename, content_type="image/jpeg")


@pytest.fixture
def store(tmp_path):
    return LocalMediaStore(root=tmp_path, url_prefix="/media/")


@pytest.fixture
def media(db_session, store):
    return MediaService(db_session, store=store)


def test_generate_path_slugs_the_category():
    assert generate_path("Home Decor", "p1", "a.jpg") == "home_decor/p1/a.jpg"


def test_upload_writes_file_and_row(db_session, media, store, products):
    product = products[0]
    ok, message, item = media.upload_media(product.id, None, _upload(), is_primary=True)
    assert ok, message
    assert item.path.startswith(f"fashion/{product.id}/")
    assert item.path.endswith(".jpg")
    assert item.url == f"/media/{item.path}"
    assert (store.root / item.path).read_bytes() == b"fake image bytes"
    assert item.is_primary


def test_only_one_primary_per_product(db_session, media, products):
    product_id = products[0].id
    _, _, first = media.upload_media(product_id, "fashion", _upload(), is_primary=True)
    _, _, second = media.upload_media(product_id, "fashion", _upload("clip.mp4"), media_type="video")

    assert media.set_primary(product_id, second.id) == (True, "Primary media updated")
    primaries = db_session.query(ProductMedia).filter_by(product_id=product_id, is_primary=True).all()
    assert [m.id for m in primaries] == [second.id]
    assert media.set_primary(products[1].id, first.id) == (False, "Media not found")


def test_upload_validation(media, products):
    product_id = products[0].id
    assert media.upload_media("missing", None, _upload())[1] == "Product not found"
    assert media.upload_media(product_id, None, None)[1] == "A file is required"
    assert media.upload_media(product_id, None, _upload("notes.exe"))[1] == "Files of type .exe are not allowed"
    assert media.upload_media(product_id, None, _upload("README"))[1] == "Files of type .? are not allowed"
    assert media.upload_media(product_id, None, _upload(), media_type="audio")[1] == "Unknown media type audio"


def test_delete_removes_file(db_session, media, store, products):
    _, _, item = media.upload_media(products[0].id, None, _upload())
    media_id, path = item.id, item.path
    assert media.delete_media(media_id) == (True, "Media deleted")
    assert not (store.root / path).exists()
    assert db_session.query(ProductMedia).count() == 0
    assert media.delete_media(media_id) == (False, "Media not found")


def test_avatar_replaces_previous_file(media, store, customer):
    ok, _, url = media.upload_avatar(customer.id, _upload("me.png", b"one"))
    assert ok
    assert url == f"/media/avatars/{customer.id}/avatar.png"
    media.upload_avatar(customer.id, _upload("me.png", b"two"))
    assert (store.root / "avatars" / customer.id / "avatar.png").read_bytes() == b"two"
