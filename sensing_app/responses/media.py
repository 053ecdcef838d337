"""
Media attached to survey responses.

Uploads arrive as multipart parts named by media UUID, optionally alongside an
``images`` parameter holding BASE64-encoded images keyed by UUID. Each part is
sorted into a media category by its content type. Photo, video and audio
answers must point at media of their own category; file answers accept media
of any category.
"""

from __future__ import annotations

import base64
import json
import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Mapping

from django.core.files.base import ContentFile
from django.db import DatabaseError

from sensing_app.campaigns.definitions import MediaCategory
from sensing_app.core.exceptions import DataAccessError, ErrorCode, ValidationFailure

from .domain import SurveyResponseRecord
from .models import Media

logger = logging.getLogger(__name__)

CONTENT_TYPE_PREFIXES = (
    ("image/", MediaCategory.IMAGE),
    ("video/", MediaCategory.VIDEO),
    ("audio/", MediaCategory.AUDIO),
    ("application/", MediaCategory.FILE),
    ("text/", MediaCategory.FILE),
)

# Leading bytes of the image formats accepted inline
IMAGE_SIGNATURES = (
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
)


@dataclass(frozen=True)
class UploadedMedia:
    uuid: str
    category: MediaCategory
    content_type: str
    file: object
    size: int
    filename: str = ""


MediaMap = Mapping[MediaCategory, Mapping[str, UploadedMedia]]


def classify_content_type(content_type: str | None) -> MediaCategory | None:
    if not content_type:
        return None
    content_type = content_type.lower()
    for prefix, category in CONTENT_TYPE_PREFIXES:
        if content_type.startswith(prefix):
            return category
    return None


def _media_uuid(name: str) -> str | None:
    try:
        return str(uuid.UUID(name))
    except ValueError:
        return None


def _duplicate(media_id: str) -> ValidationFailure:
    return ValidationFailure(
        f"Media {media_id} was uploaded more than once.", ErrorCode.INVALID_MEDIA
    )


class _JsonPairs(list):
    """Key-value pairs of a JSON object, in document order, repeats kept."""


def decode_inline_images(raw: str) -> dict[str, UploadedMedia]:
    """Decode the ``images`` parameter: a JSON object of UUID to BASE64 image."""
    try:
        pairs = json.loads(raw, object_pairs_hook=_JsonPairs)
    except json.JSONDecodeError:
        raise ValidationFailure("images must be a JSON object.", ErrorCode.INVALID_MEDIA) from None
    if not isinstance(pairs, _JsonPairs):
        raise ValidationFailure("images must be a JSON object.", ErrorCode.INVALID_MEDIA)

    images: dict[str, UploadedMedia] = {}
    for name, encoded in pairs:
        media_id = _media_uuid(name)
        if media_id is None:
            raise ValidationFailure(
                f"Inline image key '{name}' is not a media UUID.", ErrorCode.INVALID_MEDIA
            )
        if media_id in images:
            raise _duplicate(media_id)
        try:
            data = base64.b64decode(encoded, validate=True)
        except (TypeError, ValueError):
            raise ValidationFailure(
                f"Inline image {media_id} is not valid BASE64.", ErrorCode.INVALID_MEDIA
            ) from None
        content_type = next(
            (ctype for signature, ctype in IMAGE_SIGNATURES if data.startswith(signature)), None
        )
        if content_type is None:
            raise ValidationFailure(
                f"Inline image {media_id} is not a JPEG, PNG or GIF image.",
                ErrorCode.INVALID_MEDIA,
            )
        images[media_id] = UploadedMedia(
            uuid=media_id,
            category=MediaCategory.IMAGE,
            content_type=content_type,
            file=ContentFile(data),
            size=len(data),
        )
    return images


def collect_uploaded_media(
    files, inline_images: Mapping[str, UploadedMedia] | None = None
) -> dict[MediaCategory, dict[str, UploadedMedia]]:
    """Sort multipart file parts into per-category maps keyed by UUID.

    ``files`` is a Django ``MultiValueDict`` such as ``request.FILES``;
    ``inline_images`` comes from ``decode_inline_images``. Part names that are
    not UUIDs are ignored. A UUID used twice, across parts or between a part
    and an inline image, or a part without a recognised content type rejects
    the whole upload.
    """
    media: dict[MediaCategory, dict[str, UploadedMedia]] = {c: {} for c in MediaCategory}
    media[MediaCategory.IMAGE].update(inline_images or {})
    seen: set[str] = set(media[MediaCategory.IMAGE])
    for name in files.keys():
        media_id = _media_uuid(name)
        if media_id is None:
            logger.warning(f"Ignoring upload part '{name}': not a media UUID")
            continue
        parts = files.getlist(name)
        if len(parts) > 1 or media_id in seen:
            raise _duplicate(media_id)
        seen.add(media_id)
        upload = parts[0]
        category = classify_content_type(getattr(upload, "content_type", None))
        if category is None:
            raise ValidationFailure(
                f"Media {media_id} has a missing or unsupported content type.",
                ErrorCode.INVALID_MEDIA,
            )
        media[category][media_id] = UploadedMedia(
            uuid=media_id,
            category=category,
            content_type=upload.content_type,
            file=upload,
            size=upload.size,
            filename=getattr(upload, "name", "") or "",
        )
    return media


def _find_uploaded(media: MediaMap, media_id: str) -> UploadedMedia | None:
    for parts in media.values():
        if media_id in parts:
            return parts[media_id]
    return None


def verify_media_for_response(
    record: SurveyResponseRecord,
    media: MediaMap,
    stored_media_ids: set[str] | None = None,
) -> list[UploadedMedia]:
    """Check every media answer of one response against the uploaded parts.

    Answers may also point at media already stored for the response
    (``stored_media_ids``), which is how an update keeps an unchanged photo.
    Returns the uploaded parts the response uses.
    """
    used: list[UploadedMedia] = []
    for answer in record.answers.values():
        media_id = answer.media_id
        if media_id is None:
            continue
        category = answer.prompt.type.media_category
        uploaded = _find_uploaded(media, media_id)
        if uploaded is None:
            if stored_media_ids and media_id in stored_media_ids:
                continue
            raise ValidationFailure(
                f"Prompt '{answer.prompt.id}' of survey response {record.uuid} references "
                f"{category.value} {media_id}, which was not uploaded.",
                ErrorCode.MISSING_MEDIA,
            )
        if category is not MediaCategory.FILE and uploaded.category != category:
            raise ValidationFailure(
                f"Prompt '{answer.prompt.id}' of survey response {record.uuid} needs "
                f"{category.value} media, but {media_id} was uploaded as {uploaded.content_type}.",
                ErrorCode.INVALID_MEDIA,
            )
        max_size = answer.prompt.max_file_size
        if max_size is not None and uploaded.size > max_size:
            raise ValidationFailure(
                f"Media {media_id} is {uploaded.size} bytes; prompt '{answer.prompt.id}' "
                f"allows at most {max_size}.",
                ErrorCode.MEDIA_TOO_LARGE,
            )
        used.append(uploaded)
    return used


class MediaStore:
    """Blob storage for survey media, backed by the Media model and its FileField."""

    def media_exists(self, media_id: str) -> bool:
        try:
            return Media.objects.filter(uuid=media_id).exists()
        except DatabaseError as exc:
            raise DataAccessError("Error checking media existence.") from exc

    def get_media(self, media_id: str) -> Media | None:
        return Media.objects.filter(uuid=media_id).first()

    def save_media(self, owner, uploaded: UploadedMedia, survey_response=None) -> Media:
        if self.media_exists(uploaded.uuid):
            raise ValidationFailure(
                f"Media {uploaded.uuid} already exists.", ErrorCode.INVALID_MEDIA
            )
        media = Media(
            uuid=uploaded.uuid,
            owner=owner,
            survey_response=survey_response,
            category=uploaded.category,
            content_type=uploaded.content_type,
            filename=uploaded.filename[:255],
            size=uploaded.size,
        )
        media.data.save(uploaded.uuid, uploaded.file, save=False)
        try:
            media.save()
        except Exception:
            media.data.delete(save=False)
            raise
        logger.info(f"Stored {uploaded.category} {uploaded.uuid} ({uploaded.size} bytes)")
        return media

    @contextmanager
    def removing_files_on_failure(self):
        """Collect media saved inside the block; remove their files if it raises.

        Wrap the block's transaction in this so the rows roll back first. Only
        the files need removing afterwards.
        """
        saved: list[Media] = []
        try:
            yield saved
        except Exception:
            for media in saved:
                try:
                    media.data.delete(save=False)
                except OSError:
                    logger.exception(f"Could not remove the file of rolled back media {media.uuid}")
            if saved:
                logger.info(f"Removed {len(saved)} media files of a failed upload")
            raise

    def delete_media(self, media_id: str) -> None:
        """Remove the blob and its row. Unknown IDs are ignored."""
        media = self.get_media(media_id)
        if media is None:
            return
        if media.data:
            media.data.delete(save=False)
        media.delete()
        logger.info(f"Deleted media {media_id}")
