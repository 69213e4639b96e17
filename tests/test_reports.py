from datetime import timedelta


def test_overall_on_empty_library(lib):
    stats = lib.reports.overall()
    assert stats["books"]["total_books"] == 0
    assert stats["members"]["total_members"] == 0
    assert stats["borrowings"] == {"total": 0, "active": 0, "overdue": 0, "returned": 0, "total_fines": 0}
    assert stats["ebooks"] == {"total_ebooks": 0, "total_file_size": 0, "by_category": {}}


def test_overall_counts(lib, clock, member):
    dune = lib.books.create("Dune", "Frank Herbert", "Science Fiction", stock=2)
    pelangi = lib.books.create("Laskar Pelangi", "Andrea Hirata", "Novel", stock=1)
    late = lib.borrowings.create(dune.id, member.id, clock.now + timedelta(days=1))
    lib.borrowings.create(pelangi.id, member.id, clock.now + timedelta(days=10))
    clock.advance(days=3)
    lib.borrowings.return_book(late.id)

    stats = lib.reports.overall()
    assert stats["books"]["total_available"] == 2
    assert stats["books"]["total_borrowed"] == 1
    assert stats["borrowings"]["active"] == 1
    assert stats["borrowings"]["returned"] == 1
    assert stats["borrowings"]["total_fines"] == 2000


def test_popular_books(lib, clock, member):
    dune = lib.books.create("Dune", "Frank Herbert", "Science Fiction", stock=3)
    pelangi = lib.books.create("Laskar Pelangi", "Andrea Hirata", "Novel", stock=3)
    lib.books.create("Unread", "Nobody", "Misc")
    for _ in range(2):
        lib.borrowings.create(pelangi.id, member.id, clock.now + timedelta(days=1))
    lib.borrowings.create(dune.id, member.id, clock.now + timedelta(days=1))

    popular = lib.reports.popular_books()
    assert [(p["title"], p["borrow_count"]) for p in popular] == [("Laskar Pelangi", 2), ("Dune", 1)]
    assert len(lib.reports.popular_books(limit=1)) == 1


def test_active_members(lib, clock, member):
    shelf = lib.books.create("Atlas", "Various", "Reference", stock=5)
    other = lib.members.create("Agus", "M-002")
    lib.members.create("Idle", "M-003")
    lib.borrowings.create(shelf.id, member.id, clock.now + timedelta(days=1))
    lib.borrowings.create(shelf.id, member.id, clock.now + timedelta(days=1))
    returned = lib.borrowings.create(shelf.id, other.id, clock.now + timedelta(days=1))
    lib.borrowings.create(shelf.id, other.id, clock.now + timedelta(days=1))
    lib.borrowings.return_book(returned.id)

    ranking = lib.reports.active_members()
    assert [(r["name"], r["active_borrowings"]) for r in ranking] == [("Siti Rahma", 2), ("Agus", 1)]
