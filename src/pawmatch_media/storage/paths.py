"""
Ключи объектов в blob storage.

Единая точка правды для раскладки:
    pets/{petType}s/{petId}/original.jpg
    pets/{petType}s/{petId}/optimized.webp
    pets/{petType}s/{petId}/optimized.jpg
    pets/{petType}s/{petId}/thumb-{small|medium|large}.jpg
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from pawmatch_media.domain.enums import PetType, SourceFormat

ROOT_PREFIX = "pets/"

THUMBNAIL_SIZES: tuple[tuple[str, int, int], ...] = (
    ("small", 150, 150),
    ("medium", 300, 300),
    ("large", 600, 600),
)

_SOURCE_EXT = {
    SourceFormat.jpeg: "jpg",
    SourceFormat.png: "png",
}

_PET_KEY_RE = re.compile(r"^pets/(dogs|cats)/([^/]+)/([^/]+)$")


def pet_prefix(pet_type: PetType | str, pet_id: str) -> str:
    return f"{type_prefix(pet_type)}{pet_id}/"


def type_prefix(pet_type: PetType | str) -> str:
    return f"{ROOT_PREFIX}{PetType(pet_type).value}s/"


def original_key(
    pet_type: PetType | str, pet_id: str, source_format: SourceFormat | None = None
) -> str:
    ext = _SOURCE_EXT[source_format or SourceFormat.jpeg]
    return f"{pet_prefix(pet_type, pet_id)}original.{ext}"


def webp_key(pet_type: PetType | str, pet_id: str) -> str:
    return f"{pet_prefix(pet_type, pet_id)}optimized.webp"


def optimized_jpeg_key(pet_type: PetType | str, pet_id: str) -> str:
    return f"{pet_prefix(pet_type, pet_id)}optimized.jpg"


def thumbnail_key(pet_type: PetType | str, pet_id: str, size: str) -> str:
    return f"{pet_prefix(pet_type, pet_id)}thumb-{size}.jpg"


def thumbnail_keys(pet_type: PetType | str, pet_id: str) -> list[str]:
    return [thumbnail_key(pet_type, pet_id, name) for name, _, _ in THUMBNAIL_SIZES]


@dataclass(frozen=True)
class PetKey:
    pet_type: PetType
    pet_id: str
    filename: str


def parse_pet_key(key: str) -> PetKey | None:
    """
    pets/dogs/12345/original.jpg -> PetKey(dog, "12345", "original.jpg")
    """
    m = _PET_KEY_RE.match(key or "")
    if not m:
        return None
    pet_type = PetType.dog if m.group(1) == "dogs" else PetType.cat
    return PetKey(pet_type=pet_type, pet_id=m.group(2), filename=m.group(3))
