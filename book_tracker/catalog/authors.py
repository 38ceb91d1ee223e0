from typing import List

from ..config import DEFAULT_LIST_LIMIT
from ..database.ops import CatalogRepository
from ..exceptions import NotFoundError
from ..models import Author, AuthorWithBooks


class AuthorService:
    """Read side of the author catalog."""
    def __init__(self, repo: CatalogRepository):
        self.repo = repo

    def list_authors(self, limit: int = DEFAULT_LIST_LIMIT, offset: int = 0) -> List[Author]:
        """Authors ordered by sort name ("Christie, Agatha")."""
        return self.repo.list_authors(limit=limit, offset=offset)

    def get_author_with_books(self, author_id: int) -> AuthorWithBooks:
        """
        The author with their active books.

        Raises:
            NotFoundError: no author with this id.
        """
        author = self.repo.find_author_by_id(author_id)
        if author is None:
            raise NotFoundError("Author not found", {'author_id': author_id})

        all_books = self.repo.find_books_by_author_id(author_id, include_deleted=True)
        return AuthorWithBooks(
            author=author,
            books=[b for b in all_books if not b.deleted],
            total_book_count=len(all_books),
        )
