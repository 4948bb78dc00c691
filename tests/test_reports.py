from datetime import timedelta

from conftest import NOW
from library_engine.models.book import Author


def test_active_loans_view(engine, catalog, staff_id):
    student = catalog.add_member(membership_type='Student', first_name='Wanjiku')
    public = catalog.add_member()
    overdue = engine.checkout(catalog.add_copy().copy_id, student.member_id, staff_id, now=NOW)
    current = engine.checkout(catalog.add_copy(branch=catalog.other_branch).copy_id,
                              public.member_id, staff_id, now=NOW)
    returned = engine.checkout(catalog.add_copy().copy_id, public.member_id, staff_id, now=NOW)
    engine.return_copy(returned.loan_id, now=NOW + timedelta(days=1))

    # Student loan due 2024-03-15, public loan due 2024-03-22
    rows = engine.active_loans(now=NOW + timedelta(days=17))

    assert [row['loan_id'] for row in rows] == [overdue.loan_id, current.loan_id]
    first = rows[0]
    assert first['member_first_name'] == 'Wanjiku'
    assert first['book_title'] == 'Things Fall Apart'
    assert first['branch_name'] == 'Central Library'
    assert first['days_overdue'] == 3
    assert first['status'] == 'Overdue'
    assert rows[1]['days_overdue'] == 0
    assert rows[1]['status'] == 'Active'
    assert rows[1]['branch_name'] == 'North Branch'


def test_active_loans_filters(engine, catalog, staff_id):
    student = catalog.add_member(membership_type='Student')
    public = catalog.add_member()
    engine.checkout(catalog.add_copy().copy_id, student.member_id, staff_id, now=NOW)
    engine.checkout(catalog.add_copy(branch=catalog.other_branch).copy_id,
                    public.member_id, staff_id, now=NOW)
    later = NOW + timedelta(days=17)

    assert len(engine.active_loans(now=later, member_id=public.member_id)) == 1
    assert len(engine.active_loans(now=later, branch_id=catalog.other_branch.branch_id)) == 1
    assert len(engine.active_loans(now=later, book_id=catalog.book.book_id)) == 2
    overdue = engine.active_loans(now=later, overdue_only=True)
    assert [row['member_id'] for row in overdue] == [student.member_id]


def test_available_copies_view(engine, catalog, staff_id):
    on_shelf = catalog.add_copy(shelf='B-7')
    lent = catalog.add_copy()
    lost = catalog.add_copy()
    repairing = catalog.add_copy()
    member = catalog.add_member()
    engine.checkout(lent.copy_id, member.member_id, staff_id, now=NOW)
    engine.report_lost(lost.copy_id, now=NOW)
    engine.send_to_maintenance(repairing.copy_id, now=NOW)

    rows = engine.available_copies()

    assert [row['copy_id'] for row in rows] == [on_shelf.copy_id]
    row = rows[0]
    assert row['title'] == 'Things Fall Apart'
    assert row['authors'] == ['Chinua Achebe']
    assert row['shelf_location'] == 'B-7'
    assert row['branch_name'] == 'Central Library'


def test_available_copies_lists_all_authors_once_per_copy(engine, catalog):
    coauthor = Author.create('Ngugi', 'wa Thiongo')
    book = catalog.add_book('Joint Essays', author_ids=[catalog.author.author_id,
                                                        coauthor.author_id])
    copy = catalog.add_copy(book=book)

    rows = engine.available_copies(book_id=book.book_id)

    assert len(rows) == 1
    assert rows[0]['copy_id'] == copy.copy_id
    assert rows[0]['authors'] == ['Chinua Achebe', 'Ngugi wa Thiongo']


def test_available_copies_filters(engine, catalog):
    catalog.add_copy()
    catalog.add_copy(branch=catalog.other_branch)
    untitled = catalog.add_book('Anonymous Pamphlet', author_ids=[])
    catalog.add_copy(book=untitled)

    assert len(engine.available_copies(branch_id=catalog.other_branch.branch_id)) == 1
    assert len(engine.available_copies(isbn=catalog.book.isbn)) == 2
    assert len(engine.available_copies(search='achebe')) == 2
    assert len(engine.available_copies(search='Fall')) == 2
    pamphlets = engine.available_copies(search='Pamphlet')
    assert len(pamphlets) == 1
    assert pamphlets[0]['authors'] == []
