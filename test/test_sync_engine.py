from pathlib import Path

import pytest

from conftest import FakeRowStore, build_session, remote_stock, seed_product
from stocksync.domain.errors import NotFoundError
from stocksync.domain.models import Product
from stocksync.domain.normalize import local_id_to_uuid, normalize_product, product_to_remote_row
from stocksync.services.scheduler import ManualScheduler
from stocksync.services.sync_engine import DEAD_LETTERED, DUPLICATE, QUEUED, REMOTE_CONFIRMED


FOREIGN_ROW_ID = "3f2504e0-4f89-11d3-9a0c-0305e82c3301"


def _online_session(tmp_path: Path, stock: int = 10):
    remote = FakeRowStore()
    s = build_session(tmp_path / "device.db", remote)
    seed_product(s, product_id=3, stock=stock)
    assert s.engine.push_all()
    return s, remote


def test_push_delta_confirmed_updates_remote(tmp_path: Path):
    s, remote = _online_session(tmp_path)

    result = s.engine.push_delta(3, -2, "tx-1")

    assert result.state == REMOTE_CONFIRMED
    assert result.confirmed
    assert result.product.stock == 8
    assert remote_stock(remote, 3) == 8
    assert s.ledger.is_processed("tx-1")
    assert s.engine.status().state == "synced"


def test_push_delta_offline_queues_and_drain_applies(tmp_path: Path):
    s, remote = _online_session(tmp_path)
    remote.online = False

    result = s.engine.push_delta(3, -1)

    assert result.state == QUEUED
    assert s.store.get_product(3).stock == 9
    entry = s.queue.entries()[0]
    assert (entry.product_id, entry.quantity_delta, entry.attempts) == (3, -1, 0)
    assert s.engine.status().state == "offline"
    assert remote_stock(remote, 3) == 10

    remote.online = True
    drained = s.engine.scheduled_drain()

    assert len(drained.succeeded) == 1
    assert remote_stock(remote, 3) == 9
    assert len(s.queue) == 0
    assert s.engine.status().state == "synced"


def test_push_delta_with_processed_transaction_is_a_no_op(tmp_path: Path):
    s, remote = _online_session(tmp_path)
    s.engine.push_delta(3, -1, "tx-dup")

    again = s.engine.push_delta(3, -1, "tx-dup")

    assert again.state == DUPLICATE
    assert s.store.get_product(3).stock == 9
    assert remote_stock(remote, 3) == 9


def test_push_delta_unknown_product_raises(tmp_path: Path):
    s, _ = _online_session(tmp_path)
    with pytest.raises(NotFoundError):
        s.engine.push_delta(404, -1)


def test_rejected_delta_is_dead_lettered_and_kept_locally(tmp_path: Path):
    s, remote = _online_session(tmp_path)
    remote.reject = True

    result = s.engine.push_delta(3, -4)

    assert result.state == DEAD_LETTERED
    assert s.store.get_product(3).stock == 6
    assert len(s.queue) == 0
    assert s.queue.dead_letters()[0].delta == -4
    assert s.engine.status().state == "error"


def test_missing_remote_row_is_created_from_local_state(tmp_path: Path):
    remote = FakeRowStore()
    s = build_session(tmp_path / "device.db", remote)
    seed_product(s, product_id=3, stock=10)

    s.engine.push_delta(3, -2)

    assert remote_stock(remote, 3) == 8
    assert remote.tables["produtos"][local_id_to_uuid(3)]["user_id"] == "acct-1"


def test_missing_remote_row_leaves_room_for_queued_deltas(tmp_path: Path):
    remote = FakeRowStore()
    s = build_session(tmp_path / "device.db", remote)
    seed_product(s, product_id=3, stock=10)

    remote.online = False
    s.engine.push_delta(3, -1)
    remote.online = True
    s.engine.push_delta(3, -2)
    assert remote_stock(remote, 3) == 8

    s.engine.scheduled_drain()
    assert remote_stock(remote, 3) == 7
    assert s.store.get_product(3).stock == 7


def test_reconcile_roundtrip_leaves_local_unchanged(tmp_path: Path):
    remote = FakeRowStore()
    s = build_session(tmp_path / "device.db", remote)
    seed_product(s, product_id=3, stock=10, sku="789100", category="Grocery", cost=1.25, min_stock=2)
    seed_product(s, product_id=4, stock=5000, sale_type="weight", price_per_kilo=20.0)
    before = sorted(s.store.get(), key=lambda p: p.id)

    assert s.engine.push_all()
    after = sorted(s.engine.pull_and_reconcile(), key=lambda p: p.id)

    assert after == before


def test_reconcile_adopts_remote_stock(tmp_path: Path):
    s, remote = _online_session(tmp_path)
    remote.tables["produtos"][local_id_to_uuid(3)]["quantidade"] = 4

    s.engine.pull_and_reconcile()

    assert s.store.get_product(3).stock == 4


def test_reconcile_reapplies_queued_deltas(tmp_path: Path):
    s, remote = _online_session(tmp_path)
    remote.online = False
    s.engine.push_delta(3, -1)
    remote.online = True

    s.engine.pull_and_reconcile()

    assert s.store.get_product(3).stock == 9
    assert len(s.queue) == 1


def test_reconcile_keeps_local_on_failure_or_empty_remote(tmp_path: Path):
    remote = FakeRowStore()
    s = build_session(tmp_path / "device.db", remote)
    seed_product(s, product_id=3, stock=10)

    assert [p.id for p in s.engine.pull_and_reconcile()] == [3]

    remote.online = False
    assert [p.id for p in s.engine.pull_and_reconcile()] == [3]
    assert s.engine.status().state == "offline"


def test_unpushed_product_survives_reconcile_and_is_flushed(tmp_path: Path):
    remote = FakeRowStore()
    s = build_session(tmp_path / "device.db", remote)
    remote.online = False
    created = s.inventory.add_product("Beans", price=3.0, stock=6)
    assert s.engine.status().dirty_products == 1

    remote.online = True
    other = product_to_remote_row(Product(id=50, name="Remote only", price=1.0, stock=2), "acct-1")
    remote.upsert("produtos", [other])

    ids = {p.id for p in s.engine.pull_and_reconcile()}
    assert ids == {created.id, 50}

    s.engine.scheduled_drain()
    assert remote_stock(remote, created.id) == 6
    assert s.engine.status().state == "synced"


def test_field_update_does_not_overwrite_remote_stock(tmp_path: Path):
    s, remote = _online_session(tmp_path)
    remote.tables["produtos"][local_id_to_uuid(3)]["quantidade"] = 4

    s.inventory.update_product(3, name="Renamed")

    row = remote.tables["produtos"][local_id_to_uuid(3)]
    assert row["nome"] == "Renamed"
    assert row["quantidade"] == 4


def test_offline_delete_is_not_resurrected_by_reconcile(tmp_path: Path):
    s, remote = _online_session(tmp_path)
    remote.online = False
    s.inventory.delete_product(3)
    remote.online = True

    assert s.engine.pull_and_reconcile() == []

    s.engine.scheduled_drain()
    assert remote.rows("produtos") == []


def test_scheduler_drains_on_interval_visibility_and_unload(tmp_path: Path):
    s, remote = _online_session(tmp_path)
    scheduler = ManualScheduler()
    s.engine.start(scheduler, interval=180)

    remote.online = False
    s.engine.push_delta(3, -1)
    remote.online = True

    assert scheduler.advance(179) == 0
    assert len(s.queue) == 1
    assert scheduler.advance(1) == 1
    assert len(s.queue) == 0
    assert remote_stock(remote, 3) == 9

    remote.online = False
    s.engine.push_delta(3, -1)
    remote.online = True
    scheduler.became_visible()
    assert remote_stock(remote, 3) == 8

    remote.online = False
    s.engine.push_delta(3, -1)
    remote.online = True
    scheduler.unload()
    assert remote_stock(remote, 3) == 7


def test_queue_survives_restart(tmp_path: Path):
    s, remote = _online_session(tmp_path)
    remote.online = False
    s.engine.push_delta(3, -2)

    remote.online = True
    restarted = build_session(tmp_path / "device.db", remote)
    assert restarted.store.get_product(3).stock == 8
    restarted.engine.scheduled_drain()
    assert remote_stock(remote, 3) == 8


def test_reconcile_drops_products_deleted_remotely(tmp_path: Path):
    remote = FakeRowStore()
    s = build_session(tmp_path / "device.db", remote)
    seed_product(s, product_id=3, stock=10)
    seed_product(s, product_id=4, stock=5)
    assert s.engine.push_all()

    del remote.tables["produtos"][local_id_to_uuid(4)]
    s.engine.pull_and_reconcile()

    expected = sorted((normalize_product(r) for r in remote.rows("produtos")), key=lambda p: p.id)
    assert sorted(s.store.get(), key=lambda p: p.id) == expected
    assert s.store.find(4) is None


def _foreign_row(stock: int = 10) -> dict:
    # a row created by another client, keyed by an arbitrary UUID
    return {
        "id": FOREIGN_ROW_ID,
        "user_id": "acct-1",
        "nome": "Imported flour",
        "preco_venda": 4.0,
        "quantidade": stock,
        "ativo": True,
    }


def test_delta_on_pulled_foreign_row_updates_that_row(tmp_path: Path):
    remote = FakeRowStore()
    remote.upsert("produtos", [_foreign_row(stock=10)])
    s = build_session(tmp_path / "device.db", remote)
    [product] = s.engine.pull_and_reconcile()

    result = s.engine.push_delta(product.id, -2)

    assert result.state == REMOTE_CONFIRMED
    assert [(r["id"], r["quantidade"]) for r in remote.rows("produtos")] == [(FOREIGN_ROW_ID, 8)]

    remote.online = False
    s.engine.push_delta(product.id, -1)
    remote.online = True
    s.engine.scheduled_drain()

    assert [(r["id"], r["quantidade"]) for r in remote.rows("produtos")] == [(FOREIGN_ROW_ID, 7)]


def test_foreign_row_id_is_kept_across_restart_for_edits_sales_and_delete(tmp_path: Path):
    remote = FakeRowStore()
    remote.upsert("produtos", [_foreign_row(stock=10)])
    s = build_session(tmp_path / "device.db", remote)
    [product] = s.engine.pull_and_reconcile()

    restarted = build_session(tmp_path / "device.db", remote)
    restarted.inventory.update_product(product.id, name="Renamed flour")
    restarted.sales.process_sale([{"product_id": product.id, "qty": 1}])

    [row] = remote.rows("produtos")
    assert row["id"] == FOREIGN_ROW_ID
    assert row["nome"] == "Renamed flour"
    assert row["quantidade"] == 9
    [sale] = remote.rows("vendas")
    assert sale["itens"][0]["product_id"] == FOREIGN_ROW_ID

    restarted.inventory.delete_product(product.id)
    assert remote.rows("produtos") == []


def test_sale_upload_outage_shows_offline_after_drain(tmp_path: Path):
    s, remote = _online_session(tmp_path)
    seed_product(s, product_id=4, stock=5)
    assert s.engine.push_all()

    remote.offline_tables = {"vendas"}
    s.sales.process_sale([{"product_id": 3, "qty": 1}])
    s.engine.push_delta(4, -1)
    assert s.engine.status().state == "pending"
    assert s.engine.status().pending_sales == 1

    s.engine.scheduled_drain()
    status = s.engine.status()
    assert status.state == "offline"
    assert status.pending_sales == 1

    remote.offline_tables = set()
    s.engine.scheduled_drain()
    assert s.engine.status().state == "synced"
    assert len(remote.rows("vendas")) == 1
