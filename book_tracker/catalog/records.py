"""
Parsing of book records returned by the external catalog API.

The API has changed shape over time, so several fields have fallbacks:
authors come from `contributions`, then `authors`, then bare `author_names`;
the ISBN from `editions`, then `isbns`, then `isbn`.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..exceptions import ValidationError


@dataclass
class CatalogAuthor:
    external_id: str
    name: str
    bio: Optional[str] = None
    photo_url: Optional[str] = None


@dataclass
class CatalogRecord:
    external_id: str
    title: str
    authors: List[CatalogAuthor] = field(default_factory=list)
    isbn: Optional[str] = None
    description: Optional[str] = None
    publication_date: Optional[str] = None
    cover_url: Optional[str] = None

    @property
    def primary_author(self) -> Optional[CatalogAuthor]:
        # Books are filed on disk under their first author
        return self.authors[0] if self.authors else None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "CatalogRecord":
        if data.get('id') is None or not str(data['id']).strip():
            raise ValidationError("Catalog record has no id", {'record': data})
        title = (data.get('title') or '').strip()
        if not title:
            raise ValidationError("Catalog record has no title", {'external_id': str(data['id'])})

        external_id = str(data['id'])
        return cls(
            external_id=external_id,
            title=title,
            authors=extract_authors(data, external_id),
            isbn=extract_isbn(data),
            description=data.get('description'),
            publication_date=release_year_to_date(data.get('release_year')),
            cover_url=_image_url(data.get('image')),
        )


def extract_authors(data: Dict[str, Any], book_id: str) -> List[CatalogAuthor]:
    contributions = data.get('contributions') or []
    authors = [c['author'] for c in contributions if c.get('author')]
    if authors:
        return [_to_author(a, book_id) for a in authors]

    if data.get('authors'):
        return [_to_author(a, book_id) for a in data['authors']]

    names = [n.strip() for n in data.get('author_names') or [] if n and n.strip()]
    # No author ids available: derive stable ones from the book id
    return [
        CatalogAuthor(external_id=f"{book_id}-author-{i}", name=name)
        for i, name in enumerate(names)
    ]


def extract_isbn(data: Dict[str, Any]) -> Optional[str]:
    editions = data.get('editions') or []
    if editions:
        edition = editions[0]
        return edition.get('isbn_13') or edition.get('isbn_10') or None

    isbns = data.get('isbns') or []
    if isbns:
        return isbns[0]

    isbn = data.get('isbn')
    if isinstance(isbn, list):
        return isbn[0] if isbn else None
    return isbn or None


def release_year_to_date(release_year: Optional[int]) -> Optional[str]:
    if not release_year:
        return None
    return f"{int(release_year):04d}-01-01"


def _image_url(image: Optional[Dict[str, Any]]) -> Optional[str]:
    if not image:
        return None
    return image.get('url')


def _to_author(raw: Dict[str, Any], book_id: str) -> CatalogAuthor:
    name = (raw.get('name') or '').strip()
    if raw.get('id') is None or not name:
        raise ValidationError("Catalog author has no id or name", {'external_id': book_id, 'author': raw})
    return CatalogAuthor(
        external_id=str(raw['id']),
        name=name,
        bio=raw.get('bio'),
        photo_url=_image_url(raw.get('image')),
    )
