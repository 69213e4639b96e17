from datetime import timedelta

import pytest

from librarydesk.errors import (
    ActiveBorrowingsError,
    DuplicateError,
    InvalidInputError,
    NotFoundError,
)


def test_create_book(lib):
    book = lib.books.create("Dune", "Frank Herbert", "Science Fiction", stock=3,
                            isbn="978-0-441-01359-3", published_year=1965)
    assert book.id is not None
    assert book.stock == 3
    assert book.available == 3
    assert book.isbn == "9780441013593"

    stored = lib.books.get(book.id)
    assert stored.title == "Dune"
    assert stored.published_year == 1965


def test_create_book_default_stock(lib):
    assert lib.books.create("Dune", "Frank Herbert", "Science Fiction").stock == 1


@pytest.mark.parametrize("title, author, category", [
    ("", "Frank Herbert", "Science Fiction"),
    ("Dune", "   ", "Science Fiction"),
    ("Dune", "Frank Herbert", None),
    ("<b></b>", "Frank Herbert", "Science Fiction"),
])
def test_create_requires_title_author_category(lib, title, author, category):
    with pytest.raises(InvalidInputError):
        lib.books.create(title, author, category)


def test_create_rejects_negative_stock(lib):
    with pytest.raises(InvalidInputError):
        lib.books.create("Dune", "Frank Herbert", "Science Fiction", stock=-1)


def test_create_rejects_invalid_isbn(lib):
    with pytest.raises(InvalidInputError):
        lib.books.create("Dune", "Frank Herbert", "Science Fiction", isbn="978-0-441-01359-4")


def test_duplicate_isbn(lib):
    lib.books.create("Dune", "Frank Herbert", "Science Fiction", isbn="0-306-40615-2")
    with pytest.raises(DuplicateError):
        lib.books.create("Other", "Someone", "Misc", isbn="0306406152")


def test_html_is_stripped(lib):
    book = lib.books.create("<i>Dune</i>", "Frank Herbert", "Science Fiction",
                            description="<p>Desert planet</p>")
    assert book.title == "Dune"
    assert book.description == "Desert planet"


def test_get_unknown_book(lib):
    with pytest.raises(NotFoundError):
        lib.books.get(42)


def test_list_and_search(lib):
    lib.books.create("Dune", "Frank Herbert", "Science Fiction")
    lib.books.create("Laskar Pelangi", "Andrea Hirata", "Novel")
    lib.books.create("Cantik Itu Luka", "Eka Kurniawan", "Novel")

    assert [b.title for b in lib.books.list()] == ["Cantik Itu Luka", "Dune", "Laskar Pelangi"]
    assert [b.title for b in lib.books.list(limit=1, offset=1)] == ["Dune"]
    assert {b.title for b in lib.books.search("novel")} == {"Laskar Pelangi", "Cantik Itu Luka"}
    assert [b.title for b in lib.books.search("herbert")] == ["Dune"]
    assert lib.books.search("tolkien") == []


def test_update_fields(lib, book):
    updated = lib.books.update(book.id, title="Dune Messiah", publisher="Ace")
    assert updated.title == "Dune Messiah"
    assert updated.publisher == "Ace"
    assert updated.author == "Frank Herbert"


def test_update_rejects_unknown_field(lib, book):
    with pytest.raises(InvalidInputError):
        lib.books.update(book.id, available=10)


def test_update_rejects_blank_title(lib, book):
    with pytest.raises(InvalidInputError):
        lib.books.update(book.id, title="  ")


def test_update_unknown_book(lib):
    with pytest.raises(NotFoundError):
        lib.books.update(42, title="Ghost")


def test_update_to_taken_isbn(lib, book):
    lib.books.create("Other", "Someone", "Misc", isbn="0-306-40615-2")
    with pytest.raises(DuplicateError):
        lib.books.update(book.id, isbn="0306406152")


def test_resize_with_copies_on_loan(lib, clock, member):
    shelf = lib.books.create("Pulang", "Tere Liye", "Novel", stock=5)
    for _ in range(3):
        lib.borrowings.create(shelf.id, member.id, clock.now + timedelta(days=2))

    resized = lib.books.resize(shelf.id, 2)
    assert (resized.stock, resized.available) == (2, 0)

    grown = lib.books.update(shelf.id, stock=6)
    assert (grown.stock, grown.available) == (6, 3)


def test_resize_rejects_negative(lib, book):
    with pytest.raises(InvalidInputError):
        lib.books.resize(book.id, -3)


def test_delete_book(lib, book):
    lib.books.delete(book.id)
    with pytest.raises(NotFoundError):
        lib.books.get(book.id)


def test_delete_unknown_book(lib):
    with pytest.raises(NotFoundError):
        lib.books.delete(42)


def test_delete_with_active_borrowing(lib, clock, book, member):
    borrowing = lib.borrowings.create(book.id, member.id, clock.now + timedelta(days=2))
    with pytest.raises(ActiveBorrowingsError) as exc:
        lib.books.delete(book.id)
    assert exc.value.count == 1

    lib.borrowings.return_book(borrowing.id)
    lib.books.delete(book.id)


def test_book_stats(lib, clock, member):
    a = lib.books.create("Dune", "Frank Herbert", "Science Fiction", stock=2)
    lib.books.create("Laskar Pelangi", "Andrea Hirata", "Novel", stock=3)
    lib.borrowings.create(a.id, member.id, clock.now + timedelta(days=2))

    assert lib.books.stats() == {
        "total_books": 2,
        "total_stock": 5,
        "total_available": 4,
        "total_borrowed": 1,
        "by_category": {"Novel": 1, "Science Fiction": 1},
    }


def test_book_activity(lib, book):
    lib.books.update(book.id, stock=4, admin_name="rina")
    lib.books.delete(book.id, admin_name="rina")

    actions = [e["action"] for e in lib.activity.list(entity_type="book")]
    assert sorted(actions) == ["create", "delete", "update"]
    update = lib.activity.list(action="update", entity_type="book")[0]
    assert update["details"] == "Updated stock from 1 to 4"
    assert update["admin_name"] == "rina"
