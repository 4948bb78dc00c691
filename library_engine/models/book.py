from decimal import Decimal
from typing import Iterable, List, Optional

from library_engine.errors import BookNotFound, ValidationError
from library_engine.models.database import get_db, insert_row, transaction
from library_engine.utils.money import format_money, to_money


class Publisher:
    """A publisher of books."""

    def __init__(self, publisher_id: int, publisher_name: str,
                 address: Optional[str], phone: Optional[str], email: str,
                 website: Optional[str]) -> None:
        self.publisher_id = publisher_id
        self.publisher_name = publisher_name
        self.address = address
        self.phone = phone
        self.email = email
        self.website = website

    @staticmethod
    def create(publisher_name: str, email: str, address: Optional[str] = None,
               phone: Optional[str] = None, website: Optional[str] = None) -> 'Publisher':
        publisher_id = insert_row('''
            INSERT INTO publisher (publisher_name, address, phone, email, website)
            VALUES (?, ?, ?, ?, ?)
        ''', (publisher_name, address, phone, email, website))
        return Publisher.get_by_id(publisher_id)

    @staticmethod
    def get_by_id(publisher_id: int) -> Optional['Publisher']:
        db = get_db()
        row = db.execute(
            'SELECT * FROM publisher WHERE publisher_id = ?', (publisher_id,)
        ).fetchone()
        if row:
            return Publisher(**dict(row))
        return None

    @staticmethod
    def get_by_name(publisher_name: str) -> Optional['Publisher']:
        db = get_db()
        row = db.execute(
            'SELECT * FROM publisher WHERE publisher_name = ?', (publisher_name,)
        ).fetchone()
        if row:
            return Publisher(**dict(row))
        return None


class Author:
    """An author of one or more books."""

    def __init__(self, author_id: int, first_name: str, last_name: str,
                 birth_year: Optional[int] = None, death_year: Optional[int] = None,
                 nationality: Optional[str] = None, biography: Optional[str] = None) -> None:
        self.author_id = author_id
        self.first_name = first_name
        self.last_name = last_name
        self.birth_year = birth_year
        self.death_year = death_year
        self.nationality = nationality
        self.biography = biography

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @staticmethod
    def create(first_name: str, last_name: str, birth_year: Optional[int] = None,
               death_year: Optional[int] = None, nationality: Optional[str] = None,
               biography: Optional[str] = None) -> 'Author':
        if birth_year and death_year and birth_year > death_year:
            raise ValidationError("Death year cannot precede birth year")
        author_id = insert_row('''
            INSERT INTO author (first_name, last_name, birth_year, death_year,
                                nationality, biography)
            VALUES (?, ?, ?, ?, ?, ?)
        ''', (first_name, last_name, birth_year, death_year, nationality, biography))
        return Author.get_by_id(author_id)

    @staticmethod
    def get_by_id(author_id: int) -> Optional['Author']:
        db = get_db()
        row = db.execute('SELECT * FROM author WHERE author_id = ?', (author_id,)).fetchone()
        if row:
            return Author(**dict(row))
        return None


class Book:
    """Represents a catalog title; physical inventory lives in BookCopy.

    Attributes:
        book_id (int): Unique identifier.
        isbn (str): Unique ISBN.
        title (str): Book title.
        publisher_id (int): Publisher reference.
        publication_year (int): Year of publication.
        edition (int): Edition number (>= 1).
        category (str): Book category/genre.
        language (str): Book language.
        page_count (int): Number of pages.
        description (str): Book description/summary.
        price (Decimal): Replacement price, None if unknown.
    """

    def __init__(self, book_id: int, isbn: str, title: str, publisher_id: int,
                 publication_year: int, edition: int, category: str,
                 language: str, page_count: Optional[int],
                 description: Optional[str], price: Optional[str],
                 created_at: Optional[str] = None) -> None:
        """Initialize a Book instance."""
        self.book_id = book_id
        self.isbn = isbn
        self.title = title
        self.publisher_id = publisher_id
        self.publication_year = int(publication_year)
        self.edition = int(edition)
        self.category = category
        self.language = language
        self.page_count = page_count
        self.description = description
        self.price: Optional[Decimal] = Decimal(price) if price is not None else None
        self.created_at = created_at

    @staticmethod
    def create(isbn: str, title: str, publisher_id: int, publication_year: int,
               category: str, author_ids: Iterable[int] = (), edition: int = 1,
               language: str = 'English', page_count: Optional[int] = None,
               description: Optional[str] = None,
               price: Optional[Decimal] = None) -> 'Book':
        """Add a title to the catalog and link its authors.

        Raises:
            ValidationError: On a negative price or a non-positive page count.
            DuplicateRecord: If the ISBN already exists.
        """
        if price is not None:
            price = to_money(price)
            if price < 0:
                raise ValidationError("Price cannot be negative")
        if page_count is not None and page_count <= 0:
            raise ValidationError("Page count must be positive")

        with transaction():
            book_id = insert_row('''
                INSERT INTO book (isbn, title, publisher_id, publication_year, edition,
                                  category, language, page_count, description, price)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ''', (isbn, title, publisher_id, publication_year, edition, category,
                  language, page_count, description, price))
            for author_id in author_ids:
                insert_row(
                    'INSERT INTO book_author (book_id, author_id) VALUES (?, ?)',
                    (book_id, author_id)
                )
        return Book.get_by_id(book_id)

    @staticmethod
    def get_by_id(book_id: int) -> Optional['Book']:
        """Retrieve a book by its ID."""
        db = get_db()
        row = db.execute('SELECT * FROM book WHERE book_id = ?', (book_id,)).fetchone()
        if row:
            return Book(**dict(row))
        return None

    @staticmethod
    def require(book_id: int) -> 'Book':
        book = Book.get_by_id(book_id)
        if not book:
            raise BookNotFound(f"Book {book_id} not found")
        return book

    @staticmethod
    def get_by_isbn(isbn: str) -> Optional['Book']:
        """Retrieve a book by its ISBN number."""
        db = get_db()
        row = db.execute('SELECT * FROM book WHERE isbn = ?', (isbn,)).fetchone()
        if row:
            return Book(**dict(row))
        return None

    def get_authors(self) -> List[Author]:
        db = get_db()
        rows = db.execute('''
            SELECT a.* FROM author a
            JOIN book_author ba ON ba.author_id = a.author_id
            WHERE ba.book_id = ?
            ORDER BY a.last_name, a.first_name
        ''', (self.book_id,)).fetchall()
        return [Author(**dict(row)) for row in rows]

    def to_dict(self) -> dict:
        return {
            'book_id': self.book_id,
            'isbn': self.isbn,
            'title': self.title,
            'publisher_id': self.publisher_id,
            'publication_year': self.publication_year,
            'edition': self.edition,
            'category': self.category,
            'language': self.language,
            'page_count': self.page_count,
            'price': format_money(self.price) if self.price is not None else None,
        }
