from conftest import add_order, add_product, get_order, get_stock, run
from scripts.retry_flagged_settlements import retry_flagged
from storefront.repository import list_flagged_orders


async def flagged_uuids(maker):
    async with maker() as session:
        return [o.transaction_uuid for o in await list_flagged_orders(session)]


def test_only_pending_flagged_orders_are_listed(db):
    product_id = run(add_product(db))
    run(add_order(db, "1000", [(product_id, 1)], transaction_uuid="txn-stuck",
                  needs_attention=True, settlement_error="SETTLEMENT_ERROR"))
    run(add_order(db, "1000", [(product_id, 1)], transaction_uuid="txn-done",
                  status="COMPLETED", needs_attention=True, settlement_error="SETTLEMENT_ERROR"))
    run(add_order(db, "1000", [(product_id, 1)], transaction_uuid="txn-fine"))

    assert run(flagged_uuids(db)) == ["txn-stuck"]


def test_retry_settles_flagged_order_and_clears_the_flag(db, settings, esewa):
    product_id = run(add_product(db, stock=5))
    run(add_order(db, "1000", [(product_id, 2)], transaction_uuid="txn-stuck",
                  needs_attention=True, settlement_error="SETTLEMENT_ERROR"))
    esewa.answer("txn-stuck", "1000.0", "COMPLETE", ref_id="0001TS9")

    failures = run(retry_flagged(db, esewa.client(), settings))

    assert failures == 0
    stored = run(get_order(db, "txn-stuck"))
    assert stored.status == "COMPLETED"
    assert stored.needs_attention is False
    assert stored.settlement_error is None
    assert stored.esewa_ref_id == "0001TS9"
    assert run(get_stock(db, product_id)) == 3
    assert run(flagged_uuids(db)) == []


def test_retry_counts_gateway_outages(db, settings, esewa):
    product_id = run(add_product(db))
    run(add_order(db, "1000", [(product_id, 1)], transaction_uuid="txn-stuck",
                  needs_attention=True, settlement_error="SETTLEMENT_ERROR"))
    esewa.status_code = 503

    assert run(retry_flagged(db, esewa.client(), settings)) == 1
    assert run(flagged_uuids(db)) == ["txn-stuck"]
