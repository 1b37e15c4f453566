"""
Tests for the order ledger.

Order creation with history fan-out, amendment, deletion cascade and the
reconciliation helpers.
"""

from datetime import date

import mongomock
import pytest
from pymongo.errors import OperationFailure

import catalog
import ledger
from conftest import line_item, order_payload
from errors import NotFound, PartialWrite, ReferenceNotFound, ValidationFailed
from schemas import CustomerCreate, OrderCreate, OrderUpdate

TODAY = date(2026, 10, 19)


def create(db, payload, today=TODAY):
    return ledger.create_order(db, OrderCreate.model_validate(payload), today=today)


# -----------------------------
# Create
# -----------------------------


class TestCreateOrder:
    def test_order_id_uses_date_prefix(self, db, customer, product) -> None:
        order = create(db, order_payload(customer, line_item(product)))
        assert order["orderId"] == "19102026OR1"
        assert create(db, order_payload(customer, line_item(product)))["orderId"] == "19102026OR2"

    def test_stored_order_matches_payload(self, db, customer, product) -> None:
        payload = order_payload(customer, line_item(product))
        order = create(db, payload)
        stored = ledger.get_order(db, order["orderId"])

        assert stored["status"] == "created"
        for submitted, saved in zip(payload["productDetails"], stored["productDetails"]):
            assert {key: saved[key] for key in submitted} == submitted
        for key, value in payload["billing"].items():
            assert stored["billing"][key] == value
        assert stored["billing"]["finalAmount"] == 0

    def test_customer_snapshot_comes_from_record(self, db, customer, product) -> None:
        payload = order_payload(customer, line_item(product))
        payload["user"]["shopName"] = "Something Else"
        order = create(db, payload)
        assert order["user"]["shopName"] == "Test Shop"
        assert order["user"]["pincode"] == "560001"

        db["customer"].update_one({"_id": customer["_id"]}, {"$set": {"shopName": "Renamed"}})
        assert ledger.get_order(db, order["orderId"])["user"]["shopName"] == "Test Shop"

    def test_history_fan_out_one_entry_per_line_item(self, db, customer, product, second_product) -> None:
        order = create(db, order_payload(customer, line_item(product), line_item(second_product, 3)))

        for name in ("customer_history", "product_history"):
            entries = list(db[name].find({"orderKey": order["_id"]}))
            assert len(entries) == 2
            assert {e["productId"] for e in entries} == {product["productId"], second_product["productId"]}
            assert all(e["customerKey"] == customer["_id"] for e in entries)
            assert all(e["userShopName"] == "Test Shop" for e in entries)
            assert all(e["orderId"] == order["orderId"] for e in entries)

    def test_history_triples_match_line_items(self, db, customer, product, second_product) -> None:
        order = create(db, order_payload(customer, line_item(product), line_item(second_product)))
        items = {(customer["userId"], i["productId"], order["orderId"]) for i in order["productDetails"]}
        for name in ("customer_history", "product_history"):
            triples = {(e["userId"], e["productId"], e["orderId"]) for e in db[name].find()}
            assert triples == items

    def test_dues_cache_set_to_final_amount(self, db, customer, product) -> None:
        create(db, order_payload(customer, line_item(product), moneyGiven=100))
        assert db["customer"].find_one({"_id": customer["_id"]})["dues"] == 120

    def test_next_order_carries_dues_forward(self, db, customer, product) -> None:
        create(db, order_payload(customer, line_item(product), moneyGiven=100))
        payload = order_payload(customer, line_item(product), moneyGiven=200)
        del payload["billing"]["pastOrderDue"]
        order = create(db, payload)
        assert order["billing"]["pastOrderDue"] == 120
        assert order["billing"]["finalAmount"] == 140
        assert db["customer"].find_one({"_id": customer["_id"]})["dues"] == 140

    def test_unknown_customer_rejected(self, db, customer, product) -> None:
        payload = order_payload(customer, line_item(product))
        payload["user"]["userId"] = "NA000000Nobody01"
        with pytest.raises(ReferenceNotFound) as exc_info:
            create(db, payload)
        assert exc_info.value.kind == "customer"
        assert db["order"].count_documents({}) == 0

    def test_unknown_product_leaves_nothing_behind(self, db, customer, product) -> None:
        ghost = {**line_item(product), "productId": "999"}
        with pytest.raises(ReferenceNotFound) as exc_info:
            create(db, order_payload(customer, line_item(product), ghost))
        assert exc_info.value.kind == "product"
        assert exc_info.value.ref == "999"
        assert db["order"].count_documents({}) == 0
        assert db["customer_history"].count_documents({}) == 0
        assert db["product_history"].count_documents({}) == 0

    def test_unknown_free_product_rejected(self, db, customer, product) -> None:
        payload = order_payload(customer, line_item(product))
        payload["isFreeProducts"] = True
        payload["freeProducts"] = [{"productId": "404", "name": "Sample", "quantity": 1}]
        with pytest.raises(ReferenceNotFound):
            create(db, payload)

    def test_free_products_stored_without_history(self, db, customer, product, second_product) -> None:
        payload = order_payload(customer, line_item(product))
        payload["isFreeProducts"] = True
        payload["freeProducts"] = [{"productId": second_product["productId"], "name": "Chilli Powder", "quantity": 1}]
        order = create(db, payload)
        assert order["freeProducts"][0]["rate"] == 0
        assert order["freeProducts"][0]["unit"] == "NA"
        assert db["product_history"].count_documents({"productId": second_product["productId"]}) == 0

    def test_wrong_final_amount_rejected_before_write(self, db, customer, product) -> None:
        with pytest.raises(ValidationFailed):
            create(db, order_payload(customer, line_item(product), finalAmount=50))
        assert db["order"].count_documents({}) == 0

    def test_history_failure_rolls_back_order(self, db, customer, product, monkeypatch) -> None:
        original = mongomock.Collection.insert_many

        def failing_insert_many(self, documents, *args, **kwargs):
            if self.name == "product_history":
                raise OperationFailure("disk full")
            return original(self, documents, *args, **kwargs)

        monkeypatch.setattr(mongomock.Collection, "insert_many", failing_insert_many)

        with pytest.raises(PartialWrite) as exc_info:
            create(db, order_payload(customer, line_item(product)))

        error = exc_info.value
        assert error.order_id == "19102026OR1"
        assert error.rolled_back is True
        assert len(error.customer_history) == 1
        assert error.product_history == []
        assert db["order"].count_documents({}) == 0
        assert db["customer_history"].count_documents({}) == 0
        assert db["customer"].find_one({"_id": customer["_id"]})["dues"] == 0


# -----------------------------
# Update
# -----------------------------


class TestUpdateOrder:
    def test_comments_are_appended(self, db, customer, product) -> None:
        payload = order_payload(customer, line_item(product))
        payload["comments"] = [{"message": "first"}]
        order = create(db, payload)

        updated = ledger.update_order(db, order["orderId"], OrderUpdate(comments=[{"message": "second"}]))
        assert [c["message"] for c in updated["comments"]] == ["first", "second"]
        assert updated["status"] == "amended"
        assert updated["orderId"] == order["orderId"]

    def test_identity_fields_are_not_writable(self, db, customer, product) -> None:
        order = create(db, order_payload(customer, line_item(product)))
        created_at = ledger.get_order(db, order["orderId"])["createdAt"]
        update = OrderUpdate.model_validate({"orderId": "hijack", "createdAt": "2000-01-01", "comments": [{"message": "x"}]})
        updated = ledger.update_order(db, order["orderId"], update)
        assert updated["orderId"] == order["orderId"]
        assert updated["createdAt"] == created_at
        assert db["order"].count_documents({"orderId": "hijack"}) == 0

    def test_empty_update_rejected(self, db, customer, product) -> None:
        order = create(db, order_payload(customer, line_item(product)))
        with pytest.raises(ValidationFailed):
            ledger.update_order(db, order["orderId"], OrderUpdate())

    def test_missing_order(self, db) -> None:
        with pytest.raises(NotFound):
            ledger.update_order(db, "01012026OR1", OrderUpdate(comments=[{"message": "x"}]))

    def test_line_items_without_matching_billing_rejected(self, db, customer, product, second_product) -> None:
        order = create(db, order_payload(customer, line_item(product)))
        update = OrderUpdate.model_validate({"productDetails": [line_item(second_product, 5)]})
        with pytest.raises(ValidationFailed):
            ledger.update_order(db, order["orderId"], update)

    def test_line_item_change_rebuilds_history(self, db, customer, product, second_product) -> None:
        order = create(db, order_payload(customer, line_item(product)))
        replacement = order_payload(customer, line_item(second_product, 4), line_item(product, 1))
        update = OrderUpdate.model_validate(
            {"productDetails": replacement["productDetails"], "billing": replacement["billing"]}
        )
        updated = ledger.update_order(db, order["orderId"], update)

        assert updated["billing"]["orderAmount"] == 300
        for name in ("customer_history", "product_history"):
            entries = list(db[name].find({"orderKey": order["_id"]}))
            assert sorted(e["productId"] for e in entries) == sorted([product["productId"], second_product["productId"]])

    def test_amendment_leaves_dues_cache(self, db, customer, product) -> None:
        order = create(db, order_payload(customer, line_item(product), moneyGiven=100))
        billing = {**order["billing"], "moneyGiven": 220, "finalAmount": None}
        ledger.update_order(db, order["orderId"], OrderUpdate.model_validate({"billing": billing}))
        assert ledger.get_order(db, order["orderId"])["billing"]["finalAmount"] == 0
        assert db["customer"].find_one({"_id": customer["_id"]})["dues"] == 120

    def test_customer_change_rewrites_history(self, db, customer, product) -> None:
        order = create(db, order_payload(customer, line_item(product)))
        other = catalog.create_customer(db, CustomerCreate(shop_name="Other", state="Goa", pincode="403001"))

        updated = ledger.update_order(db, order["orderId"], OrderUpdate.model_validate({"user": {"userId": other["userId"]}}))

        assert updated["user"]["userId"] == other["userId"]
        for name in ("customer_history", "product_history"):
            entries = list(db[name].find({"orderKey": order["_id"]}))
            assert [e["userId"] for e in entries] == [other["userId"]]
            assert entries[0]["customerKey"] == other["_id"]

    def test_failed_customer_change_leaves_order_untouched(self, db, customer, product) -> None:
        order = create(db, order_payload(customer, line_item(product)))
        other = catalog.create_customer(db, CustomerCreate(shop_name="Other", state="Goa", pincode="403001"))
        catalog.delete_product(db, product["productId"])

        with pytest.raises(ReferenceNotFound) as exc_info:
            ledger.update_order(db, order["orderId"], OrderUpdate.model_validate({"user": {"userId": other["userId"]}}))

        assert exc_info.value.ref == product["productId"]
        stored = ledger.get_order(db, order["orderId"])
        assert stored["user"]["userId"] == customer["userId"]
        assert stored["status"] == "created"
        for name in ("customer_history", "product_history"):
            assert [e["userId"] for e in db[name].find({"orderKey": order["_id"]})] == [customer["userId"]]


# -----------------------------
# Delete and reconcile
# -----------------------------


class TestDeleteOrder:
    def test_delete_cascades_history(self, db, customer, product, second_product) -> None:
        keep = create(db, order_payload(customer, line_item(product)))
        gone = create(db, order_payload(customer, line_item(product), line_item(second_product)))

        result = ledger.delete_order(db, gone["orderId"])

        assert result == {"orderId": gone["orderId"], "status": "deleted", "historyRemoved": 4}
        assert db["customer_history"].count_documents({"orderKey": gone["_id"]}) == 0
        assert db["product_history"].count_documents({"orderKey": keep["_id"]}) == 1
        assert ledger.find_orphaned_history(db) == {"customer_history": [], "product_history": []}

    def test_delete_does_not_roll_back_dues(self, db, customer, product) -> None:
        order = create(db, order_payload(customer, line_item(product), moneyGiven=100))
        ledger.delete_order(db, order["orderId"])
        assert db["customer"].find_one({"_id": customer["_id"]})["dues"] == 120

    def test_delete_missing_order(self, db) -> None:
        with pytest.raises(NotFound):
            ledger.delete_order(db, "01012026OR1")


class TestReconcile:
    def test_rebuild_restores_missing_history(self, db, customer, product, second_product) -> None:
        order = create(db, order_payload(customer, line_item(product), line_item(second_product)))
        db["product_history"].delete_many({})

        assert ledger.rebuild_history(db, order["orderId"]) == 2
        assert db["product_history"].count_documents({"orderKey": order["_id"]}) == 2
        assert db["customer_history"].count_documents({"orderKey": order["_id"]}) == 2

    def test_purge_removes_orphans_only(self, db, customer, product) -> None:
        order = create(db, order_payload(customer, line_item(product)))
        db["order"].delete_one({"_id": order["_id"]})
        other = create(db, order_payload(customer, line_item(product)))

        orphans = ledger.find_orphaned_history(db)
        assert len(orphans["customer_history"]) == 1
        assert ledger.purge_orphaned_history(db) == {"customer_history": 1, "product_history": 1}
        assert db["customer_history"].count_documents({"orderKey": other["_id"]}) == 1
