from library_app.config import Settings, get_settings
from library_app.endpoints import app

import pytest


BOOK_DATA = {
    "isbn": "9780451524935",
    "title": "1984",
    "author": "George Orwell",
    "publication_year": 1949,
    "description": "Dystopian novel",
    "genres": ["Dystopian Fiction"],
}

MEMBER_DATA = {
    "first_name": "John",
    "surname": "Doe",
    "email": "john.doe@example.com",
    "phone": "0123456789",
    "address": "1 Main Street",
    "city": "Springfield",
    "postcode": "SP1 1AA",
}


def create_book(client, copies=1, **overrides):
    data = {**BOOK_DATA, "initial_copies": copies, **overrides}
    response = client.post("/books", json=data)
    assert response.status_code == 201
    return response.json()


def create_member(client, **overrides):
    response = client.post("/members", json={**MEMBER_DATA, **overrides})
    assert response.status_code == 201
    return response.json()


@pytest.fixture
def rental_limit():
    """
    Fixture that lowers the rental limit through the settings dependency.

    The override is removed after the test so other tests see the default.
    """

    def apply(limit):
        app.dependency_overrides[get_settings] = lambda: Settings(rental_limit=limit)

    yield apply
    app.dependency_overrides.pop(get_settings, None)


def test_health_check(client):
    """
    Test the health check endpoint.

    Verifies:
    - Endpoint returns 200 OK
    - Response contains expected status message
    """
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "service": "library-api"}


def test_rent_by_copy_success(client):
    """
    Test renting a specific copy.

    Verifies:
    - 201 Created status
    - Rental is open and points at the requested copy
    - The copy is no longer listed as available
    """
    book = create_book(client, copies=2)
    member = create_member(client)

    response = client.post(f"/members/{member['id']}/rentals", json={"copy_id": 2})
    assert response.status_code == 201
    data = response.json()
    assert data["member_id"] == member["id"]
    assert data["copy_id"] == 2
    assert data["returned"] is False
    assert data["returned_at"] is None

    available = client.get(f"/books/{book['isbn']}/copies/available").json()
    assert [copy["id"] for copy in available] == [1]


def test_rent_by_isbn_and_title(client):
    """
    Test the book-level rent selectors.

    Business Logic:
    - renting by ISBN takes the lowest-id available copy
    - renting by title resolves the book first, then does the same
    """
    book = create_book(client, copies=3)
    member = create_member(client)

    by_isbn = client.post(f"/members/{member['id']}/rentals", json={"isbn": book["isbn"]})
    assert by_isbn.status_code == 201
    assert by_isbn.json()["copy_id"] == 1

    by_title = client.post(f"/members/{member['id']}/rentals", json={"title": "1984"})
    assert by_title.status_code == 201
    assert by_title.json()["copy_id"] == 2

    legacy = client.post(f"/members/{member['id']}/rent/1984")
    assert legacy.status_code == 201
    assert legacy.json()["copy_id"] == 3


def test_rent_selector_must_name_one_target(client):
    member = create_member(client)

    response = client.post(f"/members/{member['id']}/rentals", json={})
    assert response.status_code == 400
    assert response.json()["error_code"] == "VALIDATION_ERROR"

    response = client.post(
        f"/members/{member['id']}/rentals", json={"copy_id": 1, "isbn": "123"}
    )
    assert response.status_code == 400


def test_rent_unavailable_copy(client):
    """
    Test that a borrowed copy cannot be rented again.

    Verifies:
    - 409 with error_code UNAVAILABLE
    - The message says what is unavailable
    """
    create_book(client, copies=1)
    first = create_member(client)
    second = create_member(client, email="jane@example.com")

    client.post(f"/members/{first['id']}/rentals", json={"copy_id": 1})
    response = client.post(f"/members/{second['id']}/rentals", json={"copy_id": 1})

    assert response.status_code == 409
    body = response.json()
    assert body["error_code"] == "UNAVAILABLE"
    assert "not available" in body["detail"]

    response = client.post(
        f"/members/{second['id']}/rentals", json={"isbn": BOOK_DATA["isbn"]}
    )
    assert response.status_code == 409


def test_rent_not_found(client):
    member = create_member(client)

    response = client.post(f"/members/{member['id']}/rentals", json={"copy_id": 99})
    assert response.status_code == 404
    assert response.json()["error_code"] == "NOT_FOUND"

    response = client.post(f"/members/{member['id']}/rentals", json={"title": "Nope"})
    assert response.status_code == 404
    assert "Nope" in response.json()["detail"]

    response = client.post("/members/999/rentals", json={"copy_id": 1})
    assert response.status_code == 404


def test_rental_limit_enforced(client, rental_limit):
    """
    Test the per-member rental limit.

    Internal Working:
    1. Limit is lowered to 2 through the settings override
    2. Two rents succeed
    3. The third fails with 422 RENTAL_LIMIT_EXCEEDED
    4. After a return the third rent succeeds
    """
    rental_limit(2)
    create_book(client, copies=3)
    member = create_member(client)

    for copy_id in (1, 2):
        response = client.post(f"/members/{member['id']}/rentals", json={"copy_id": copy_id})
        assert response.status_code == 201

    response = client.post(f"/members/{member['id']}/rentals", json={"copy_id": 3})
    assert response.status_code == 422
    assert response.json()["error_code"] == "RENTAL_LIMIT_EXCEEDED"
    assert response.json()["details"]["limit"] == 2

    client.post(f"/members/{member['id']}/returns", json={"copy_id": 1})
    response = client.post(f"/members/{member['id']}/rentals", json={"copy_id": 3})
    assert response.status_code == 201


def test_return_success_and_double_return(client):
    """
    Test returning a copy.

    Verifies:
    - Return closes the rental and stamps returned_at
    - The copy is available again
    - A second return of the same copy is 404, not a silent success
    """
    book = create_book(client, copies=1)
    member = create_member(client)
    rental = client.post(f"/members/{member['id']}/rentals", json={"copy_id": 1}).json()

    response = client.post(f"/members/{member['id']}/returns", json={"copy_id": 1})
    assert response.status_code == 200
    data = response.json()
    assert data["id"] == rental["id"]
    assert data["returned"] is True
    assert data["returned_at"] is not None

    available = client.get(f"/books/{book['isbn']}/copies/available").json()
    assert [copy["id"] for copy in available] == [1]

    response = client.post(f"/members/{member['id']}/returns", json={"copy_id": 1})
    assert response.status_code == 404


def test_return_by_isbn(client):
    book = create_book(client, copies=2)
    member = create_member(client)
    client.post(f"/members/{member['id']}/rentals", json={"isbn": book["isbn"]})

    response = client.post(f"/members/{member['id']}/returns", json={"isbn": book["isbn"]})
    assert response.status_code == 200
    assert response.json()["copy_id"] == 1


def test_return_by_other_member_rejected(client):
    """
    Test that a member cannot return a copy someone else holds.

    Verifies:
    - 404 for the wrong member
    - The real borrower's rental stays open
    """
    create_book(client, copies=1)
    owner = create_member(client)
    other = create_member(client, email="other@example.com")
    client.post(f"/members/{owner['id']}/rentals", json={"copy_id": 1})

    response = client.post(f"/members/{other['id']}/returns", json={"copy_id": 1})
    assert response.status_code == 404

    open_rentals = client.get(f"/members/{owner['id']}/rentals").json()
    assert len(open_rentals) == 1


def test_member_open_rentals_include_book(client):
    create_book(client, copies=2)
    member = create_member(client)
    client.post(f"/members/{member['id']}/rentals", json={"copy_id": 2})

    response = client.get(f"/members/{member['id']}/rentals")
    assert response.status_code == 200
    data = response.json()
    assert len(data) == 1
    assert data[0]["book_copy"]["id"] == 2
    assert data[0]["book_copy"]["book"]["title"] == "1984"
    assert data[0]["book_copy"]["book"]["author"] == "George Orwell"

    assert client.get("/members/999/rentals").status_code == 404


def test_list_rentals_active_only(client):
    """
    Test filtering for active (unreturned) rentals only.

    Tests the SQL WHERE clause filtering on the returned column.
    """
    create_book(client, copies=2)
    first = create_member(client)
    second = create_member(client, email="second@example.com")
    client.post(f"/members/{first['id']}/rentals", json={"copy_id": 1})
    client.post(f"/members/{second['id']}/rentals", json={"copy_id": 2})
    client.post(f"/members/{first['id']}/returns", json={"copy_id": 1})

    all_rentals = client.get("/rentals").json()
    assert len(all_rentals) == 2

    response = client.get("/rentals?active_only=true")
    assert response.status_code == 200
    data = response.json()
    assert len(data) == 1
    assert data[0]["member"]["email"] == "second@example.com"
    assert data[0]["book_copy"]["book"]["isbn"] == BOOK_DATA["isbn"]
    assert data[0]["returned"] is False


def test_book_details_include_rental_history(client):
    """
    Test that book details carry the rental history.

    Verifies:
    - History lists every rental with member display fields
    - currently_borrowed reflects open rentals
    - Copy counts are derived from the copies
    """
    book = create_book(client, copies=2)
    member = create_member(client)
    client.post(f"/members/{member['id']}/rentals", json={"copy_id": 1})
    client.post(f"/members/{member['id']}/returns", json={"copy_id": 1})
    client.post(f"/members/{member['id']}/rentals", json={"copy_id": 2})

    response = client.get(f"/books/{book['isbn']}")
    assert response.status_code == 200
    data = response.json()
    assert data["total_rentals"] == 2
    assert data["currently_borrowed"] is True
    assert data["book"]["total_copies"] == 2
    assert data["book"]["available_copies"] == 1
    assert [entry["returned"] for entry in data["rental_history"]] == [True, False]
    assert data["rental_history"][0]["member"]["first_name"] == "John"


def test_analytics_stats(client):
    create_book(client, copies=3)
    create_book(client, copies=1, isbn="1111111111", title="Second Book")
    member = create_member(client)
    client.post(f"/members/{member['id']}/rentals", json={"copy_id": 1})

    response = client.get("/analytics/stats")
    assert response.status_code == 200
    assert response.json() == {
        "total_books": 2,
        "total_members": 1,
        "total_copies": 4,
        "books_currently_borrowed": 1,
        "available_copies": 3,
    }

    assert client.get("/analytics/books/total").json() == {"count": 2}
    assert client.get("/analytics/members/total").json() == {"count": 1}
    assert client.get("/analytics/books/borrowed").json() == {"count": 1}
    assert client.get("/analytics/books/available").json() == {"count": 3}
