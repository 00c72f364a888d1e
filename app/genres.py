"""Fixed genre name to catalog id table."""

from __future__ import annotations

from typing import Iterable


GENRE_IDS: dict[str, int] = {
    "Action": 1,
    "Adventure": 2,
    "Comedy": 4,
    "Mystery": 7,
    "Drama": 8,
    "Fantasy": 10,
    "Horror": 14,
    "Romance": 22,
    "School": 23,
    "Sci-Fi": 24,
    "Sports": 30,
    "Slice of Life": 36,
    "Supernatural": 37,
    "Military": 38,
    "Psychological": 40,
    "Thriller": 41,
}

# Order used when presenting the selectable genres.
AVAILABLE_GENRES: tuple[str, ...] = (
    "Action",
    "Adventure",
    "Comedy",
    "Drama",
    "Fantasy",
    "Romance",
    "Sci-Fi",
    "Slice of Life",
    "Supernatural",
    "Military",
    "Horror",
    "Mystery",
    "Psychological",
    "Thriller",
    "Sports",
    "School",
)


def genre_ids_for(names: Iterable[str]) -> list[int]:
    """Translate genre names to catalog ids.

    Unknown names are dropped. The result keeps the order of the first
    occurrence of each id and never contains duplicates.
    """

    ids: list[int] = []
    for name in names:
        genre_id = GENRE_IDS.get(name)
        if genre_id is None or genre_id in ids:
            continue
        ids.append(genre_id)
    return ids
