import httpx
import pytest

from book_importer.services.metadata_lookup import IsbndbLookupClient


def _client(handler, batch_limit=1000):
    http = httpx.Client(base_url="https://isbn.test", transport=httpx.MockTransport(handler))
    return IsbndbLookupClient("https://isbn.test", "key", batch_limit=batch_limit, client=http)


def test_lookup_maps_results_by_isbn13():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(
            200,
            json={
                "data": [
                    {
                        "isbn13": "9780306406157",
                        "title": "Found",
                        "authors": ["A. Writer"],
                        "date_published": 1999,
                    },
                    {"isbn10": "1861972717", "isbn13": "", "title": "Ten"},
                ]
            },
        )

    result = _client(handler).lookup_batch(["9780306406157", "9781861972712", "9780000000000"])

    assert result["9780306406157"].title == "Found"
    assert result["9780306406157"].authors == ["A. Writer"]
    assert result["9780306406157"].published_date == "1999"
    assert result["9781861972712"].title == "Ten"
    assert result["9780000000000"] is None
    assert requests[0].url.path == "/books"


def test_transport_failure_reports_everything_absent():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    result = _client(handler).lookup_batch(["9780306406157", "9781861972712"])

    assert result == {"9780306406157": None, "9781861972712": None}


def test_server_error_reports_everything_absent():
    result = _client(lambda request: httpx.Response(503)).lookup_batch(["9780306406157"])
    assert result == {"9780306406157": None}


def test_batches_above_the_limit_are_refused():
    client = _client(lambda request: httpx.Response(200, json={"data": []}), batch_limit=2)
    with pytest.raises(ValueError):
        client.lookup_batch(["9780306406157", "9781861972712", "9780000000000"])


def test_unexpected_body_shape_reports_everything_absent():
    result = _client(lambda request: httpx.Response(200, json=["unexpected"])).lookup_batch(
        ["9780306406157", "9781861972712"]
    )

    assert result == {"9780306406157": None, "9781861972712": None}


def test_malformed_entries_are_skipped():
    def handler(request):
        return httpx.Response(
            200,
            json={
                "data": [
                    "9781861972712",
                    {"isbn13": 9780306406157, "title": "Numeric ISBN", "authors": "Solo"},
                    {"isbn13": "9780000000000", "title": 42},
                ]
            },
        )

    result = _client(handler).lookup_batch(["9780306406157", "9781861972712", "9780000000000"])

    assert result["9780306406157"].title == "Numeric ISBN"
    assert result["9780306406157"].authors == ["Solo"]
    assert result["9781861972712"] is None
    assert result["9780000000000"] is None
