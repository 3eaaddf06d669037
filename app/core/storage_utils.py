# app/core/storage_utils.py
import uuid

from app.core.config import get_settings
from app.core.supabase_client import supabase_admin


def upload_to_storage(path: str, file_bytes: bytes, content_type: str | None = None) -> str:
    """
    Upload raw bytes to the proof bucket and return the public URL.

    An existing object at `path` is overwritten ('upsert').

    Args:
        path: Object path inside the bucket,
              e.g. "deliveries/<delivery_id>/proof/<uuid>.jpg"
        file_bytes: File content.
        content_type: MIME type stored with the object.

    Raises:
        Any exception raised by the Supabase client if the upload fails.
    """
    bucket = supabase_admin().storage.from_(get_settings().STORAGE_BUCKET)
    options = {"upsert": "true"}
    if content_type:
        options["content-type"] = content_type
    bucket.upload(path, file_bytes, options)
    return bucket.get_public_url(path)


def generate_filename(ext: str) -> str:
    """
    Random filename: "<uuid4>.<ext>" (ext without dot).
    """
    return f"{uuid.uuid4()}.{ext}"
