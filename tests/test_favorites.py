import pytest

from campus_library.exceptions import BookNotFoundError, UserNotFoundError


def test_new_user_has_no_favorites(favorites, user):
    assert favorites.get_favorite_ids(user.id) == []
    assert favorites.get_favorite_books(user.id) == []


def test_add_and_list_in_insertion_order(favorites, user, make_book):
    b = make_book("B title")
    a = make_book("A title")
    favorites.add_favorite(user.id, b.id)
    favorites.add_favorite(user.id, a.id)

    assert favorites.get_favorite_ids(user.id) == [b.id, a.id]
    assert [book.title for book in favorites.get_favorite_books(user.id)] == ["B title", "A title"]


def test_adding_twice_keeps_one_entry(favorites, user, make_book):
    book = make_book()
    favorites.add_favorite(user.id, book.id)
    favorites.add_favorite(user.id, book.id)
    assert favorites.get_favorite_ids(user.id) == [book.id]


def test_add_unknown_book(favorites, user):
    with pytest.raises(BookNotFoundError):
        favorites.add_favorite(user.id, "missing")


def test_unknown_user(favorites, make_book):
    book = make_book()
    with pytest.raises(UserNotFoundError):
        favorites.add_favorite("nobody", book.id)
    with pytest.raises(UserNotFoundError):
        favorites.get_favorite_ids("nobody")


def test_remove_favorite(favorites, user, make_book):
    book = make_book()
    favorites.add_favorite(user.id, book.id)
    favorites.remove_favorite(user.id, book.id)
    assert not favorites.is_favorite(user.id, book.id)

    # removing something that is not there is fine
    favorites.remove_favorite(user.id, book.id)


def test_toggle(favorites, user, make_book):
    book = make_book()
    assert favorites.toggle_favorite(user.id, book.id) is True
    assert favorites.is_favorite(user.id, book.id)
    assert favorites.toggle_favorite(user.id, book.id) is False
    assert not favorites.is_favorite(user.id, book.id)


def test_favorites_are_per_user(favorites, make_user, make_book):
    first, second = make_user(), make_user()
    book = make_book()
    favorites.add_favorite(first.id, book.id)

    assert favorites.is_favorite(first.id, book.id)
    assert not favorites.is_favorite(second.id, book.id)


def test_books_removed_from_catalog_are_skipped(favorites, lib, user, make_book):
    kept, removed = make_book(), make_book()
    favorites.add_favorite(user.id, kept.id)
    favorites.add_favorite(user.id, removed.id)
    lib.remove_book(removed.id)

    assert [book.id for book in favorites.get_favorite_books(user.id)] == [kept.id]
