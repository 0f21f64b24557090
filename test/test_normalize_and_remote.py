import json

import pytest
import requests

from stocksync.domain.errors import RemoteRejectedError, RemoteUnavailableError, ValidationError
from stocksync.domain.models import SALE_TYPE_WEIGHT, Product
from stocksync.domain.normalize import (
    local_id_to_uuid,
    normalize_product,
    product_to_remote_row,
    uuid_to_local_id,
)
from stocksync.remote.row_store import RestRowStore


class FakeResponse:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self.content = b"" if body is None else json.dumps(body).encode("utf-8")
        self.text = self.content.decode("utf-8")

    def json(self):
        return json.loads(self.content)


class FakeSession:
    def __init__(self, responses=None, error=None):
        self.headers = {}
        self.responses = list(responses or [])
        self.error = error
        self.requests = []

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        if self.error is not None:
            raise self.error
        return self.responses.pop(0)


def test_local_ids_roundtrip_through_uuid():
    for local_id in (0, 1, 1718000000123, 2**53):
        assert uuid_to_local_id(local_id_to_uuid(local_id)) == local_id


def test_foreign_ids_map_to_stable_integers():
    foreign = "0b6f8a3e-2c1d-4f7a-9e8b-1234567890ab"
    assert uuid_to_local_id(foreign) == uuid_to_local_id(foreign)
    assert uuid_to_local_id(foreign) < 2**53
    assert uuid_to_local_id("17") == 17
    with pytest.raises(ValidationError):
        uuid_to_local_id("not-an-id")


def test_normalize_accepts_remote_spellings():
    row = {
        "id": local_id_to_uuid(12),
        "nome": " Arroz ",
        "preco_venda": 6.5,
        "preco_custo": "4,10",
        "quantidade": 30,
        "quantidade_minima": 5,
        "unidade_medida": "un",
        "codigo_barras": "7891000",
        "categoria": "Mercearia",
        "criado_em": "2024-05-01T10:00:00Z",
    }
    p = normalize_product(row)

    assert p.id == 12
    assert p.name == "Arroz"
    assert p.cost == 4.1
    assert p.stock == 30
    assert p.min_stock == 5
    assert p.sku == "7891000"
    assert p.updated_at == "2024-05-01T10:00:00Z"


def test_normalize_accepts_legacy_local_spellings():
    p = normalize_product({"id": 8, "name": "Ham", "saleType": "weight", "pricePerKilo": 32.0, "estoque": -4,
                           "minStock": 100})
    assert p.sale_type == SALE_TYPE_WEIGHT
    assert p.price == 32.0
    assert p.price_per_kilo == 32.0
    assert p.stock == 0
    assert p.min_stock == 100


def test_normalize_requires_an_id_unless_defaulted():
    with pytest.raises(ValidationError):
        normalize_product({"name": "No id"})
    assert normalize_product({"name": "Defaulted"}, default_id=5).id == 5


def test_low_stock_uses_minimum_or_fallback():
    assert Product(id=1, name="a", stock=2, min_stock=2).is_low_stock
    assert not Product(id=1, name="a", stock=3, min_stock=2).is_low_stock
    assert Product(id=1, name="a", stock=3).is_low_stock
    assert not Product(id=1, name="a", stock=4).is_low_stock


def test_remote_row_uses_remote_column_names():
    p = Product(id=4, name="Cheese", price=20.0, stock=5000, sale_type=SALE_TYPE_WEIGHT, price_per_kilo=20.0)
    row = product_to_remote_row(p, "acct-1")
    assert row["id"] == local_id_to_uuid(4)
    assert row["unidade_medida"] == "kg"
    assert row["preco_venda"] == 20.0
    assert row["quantidade"] == 5000
    assert row["user_id"] == "acct-1"


def test_rest_select_sends_filters_auth_and_timeout():
    session = FakeSession([FakeResponse(200, [{"id": "x"}])])
    store = RestRowStore("https://db.example.com/", "key-123", timeout=10, session=session)

    rows = store.select("produtos", {"user_id": "acct-1"})

    method, url, kwargs = session.requests[0]
    assert rows == [{"id": "x"}]
    assert method == "GET"
    assert url == "https://db.example.com/rest/v1/produtos"
    assert kwargs["params"] == {"select": "*", "user_id": "eq.acct-1"}
    assert kwargs["timeout"] == 10.0
    assert session.headers["Authorization"] == "Bearer key-123"


def test_rest_network_errors_are_unavailable():
    session = FakeSession(error=requests.Timeout("read timed out"))
    store = RestRowStore("https://db.example.com", "k", session=session)
    with pytest.raises(RemoteUnavailableError, match="timed out"):
        store.select("produtos")


@pytest.mark.parametrize("status", [500, 503, 429])
def test_rest_server_errors_are_unavailable(status):
    store = RestRowStore("https://db.example.com", "k", session=FakeSession([FakeResponse(status)]))
    with pytest.raises(RemoteUnavailableError):
        store.upsert("produtos", [{"id": "x"}])


def test_rest_client_errors_are_rejected():
    body = {"message": "violates row-level security policy"}
    store = RestRowStore("https://db.example.com", "k", session=FakeSession([FakeResponse(403, body)]))
    with pytest.raises(RemoteRejectedError, match="row-level security"):
        store.delete("produtos", "x")


def test_rest_update_of_missing_row_is_rejected():
    store = RestRowStore("https://db.example.com", "k", session=FakeSession([FakeResponse(200, [])]))
    with pytest.raises(RemoteRejectedError, match="not found"):
        store.update("produtos", "x", {"quantidade": 1})


def test_rest_upsert_names_conflict_key():
    session = FakeSession([FakeResponse(201)])
    RestRowStore("https://db.example.com", "k", session=session).upsert("vendas", [{"codigo": "s1"}], "codigo")
    _, _, kwargs = session.requests[0]
    assert kwargs["params"] == {"on_conflict": "codigo"}
    assert "merge-duplicates" in kwargs["headers"]["Prefer"]
