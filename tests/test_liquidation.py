import pytest
from datetime import date, datetime, timezone
from decimal import Decimal

from app.models.cash_advance import ApprovalLevel, ReviewAction
from app.models.liquidation import Liquidation, LiquidationAttachment, LiquidationItem
from app.services.cash_advance_service import CashAdvanceService
from app.services.liquidation_service import item_total, reconcile


@pytest.fixture
def approved_advance(db_session, employee, hr_admin, accounting_admin, auth_ctx):
    """Factory for fully approved cash advances filed by `employee`."""
    def _approved_advance(amount="5000", type="support"):
        service = CashAdvanceService(db_session)
        advance = service.file(auth_ctx(employee), type, Decimal(amount), datetime.now(timezone.utc))
        service.act(auth_ctx(hr_admin), advance.id, ApprovalLevel.LEVEL1, ReviewAction.APPROVE)
        service.act(auth_ctx(accounting_admin), advance.id, ApprovalLevel.LEVEL2, ReviewAction.APPROVE)
        return advance.id
    return _approved_advance


def _payload(advance_id, store, items, **extra):
    return {
        "cash_advance_id": advance_id,
        "store_id": store.id,
        "liquidation_date": date.today().isoformat(),
        "items": items,
        **extra,
    }


def _file(client, auth_headers, employee, payload):
    return client.post("/api/liquidations", headers=auth_headers(employee), json=payload)


def test_return_to_company(client, auth_headers, employee, store, ticket, approved_advance):
    """Advance 5000, items 4500 -> return 500, reimbursement 0."""
    advance_id = approved_advance("5000")
    items = [
        {"from_destination": "Office", "to_destination": "Store 1", "jeep": "150", "gas": "1850"},
        {"from_destination": "Store 1", "to_destination": "Office", "meals": "1000", "lodging": "1500"},
    ]
    response = _file(client, auth_headers, employee, _payload(advance_id, store, items, ticket_id=ticket.id))
    assert response.status_code == 201, response.text
    data = response.json()
    assert Decimal(str(data["total_amount"])) == Decimal("4500")
    assert Decimal(str(data["return_to_company"])) == Decimal("500")
    assert Decimal(str(data["reimbursement"])) == Decimal("0")
    assert data["status"] == "pending"
    assert [Decimal(str(i["total"])) for i in data["items"]] == [Decimal("2000"), Decimal("2500")]


def test_reimbursement(client, auth_headers, employee, store, approved_advance):
    """Advance 3000, items 3800 -> reimbursement 800, return 0."""
    advance_id = approved_advance("3000")
    items = [{"bus": "800", "toll": "200", "others": "2800"}]
    data = _file(client, auth_headers, employee, _payload(advance_id, store, items)).json()
    assert Decimal(str(data["total_amount"])) == Decimal("3800")
    assert Decimal(str(data["reimbursement"])) == Decimal("800")
    assert Decimal(str(data["return_to_company"])) == Decimal("0")


def test_exact_amount_settles_both_zero(client, auth_headers, employee, store, approved_advance):
    advance_id = approved_advance("1200")
    data = _file(client, auth_headers, employee, _payload(advance_id, store, [{"fx_van": "1200"}])).json()
    assert Decimal(str(data["return_to_company"])) == 0
    assert Decimal(str(data["reimbursement"])) == 0


def test_empty_items_rejected(client, auth_headers, employee, store, approved_advance):
    response = _file(client, auth_headers, employee, _payload(approved_advance(), store, []))
    assert response.status_code == 422
    assert response.json()["code"] == "VALIDATION_ERROR"


def test_negative_expense_rejected(client, auth_headers, employee, store, approved_advance):
    response = _file(client, auth_headers, employee, _payload(approved_advance(), store, [{"gas": "-5"}]))
    assert response.status_code == 422


def test_advance_must_be_approved_support(client, auth_headers, db_session, employee, store, auth_ctx, approved_advance):
    pending = CashAdvanceService(db_session).file(
        auth_ctx(employee), "support", Decimal("100"), datetime.now(timezone.utc)
    )
    response = _file(client, auth_headers, employee, _payload(pending.id, store, [{"gas": "10"}]))
    assert response.status_code == 409
    assert response.json()["code"] == "INVALID_TRANSITION"

    personal = approved_advance("100", type="personal")
    response = _file(client, auth_headers, employee, _payload(personal, store, [{"gas": "10"}]))
    assert response.status_code == 409


def test_one_liquidation_per_advance(client, auth_headers, employee, store, approved_advance):
    advance_id = approved_advance()
    assert _file(client, auth_headers, employee, _payload(advance_id, store, [{"gas": "10"}])).status_code == 201
    response = _file(client, auth_headers, employee, _payload(advance_id, store, [{"gas": "10"}]))
    assert response.status_code == 422
    assert "already exists" in response.json()["error"]


def test_only_requester_may_liquidate(client, auth_headers, make_employee, store, approved_advance):
    advance_id = approved_advance()
    stranger = make_employee()
    response = _file(client, auth_headers, stranger, _payload(advance_id, store, [{"gas": "10"}]))
    assert response.status_code == 403


def test_unknown_store_rejected(client, auth_headers, employee, store, approved_advance):
    payload = _payload(approved_advance(), store, [{"gas": "10"}])
    payload["store_id"] = 98765
    response = _file(client, auth_headers, employee, payload)
    assert response.status_code == 422
    assert response.json()["error"] == "Invalid store selected"


def test_review_is_single_shot(client, auth_headers, employee, store, accounting_admin, approved_advance):
    liq = _file(client, auth_headers, employee, _payload(approved_advance(), store, [{"gas": "10"}])).json()

    response = client.post(
        f"/api/liquidations/{liq['id']}/review",
        headers=auth_headers(accounting_admin),
        json={"action": "approve", "comment": "Receipts complete"},
    )
    assert response.status_code == 200
    assert response.json()["status"] == "approved"
    assert response.json()["reviewer_id"] == accounting_admin.id

    response = client.post(
        f"/api/liquidations/{liq['id']}/review",
        headers=auth_headers(accounting_admin),
        json={"action": "reject"},
    )
    assert response.status_code == 409


def test_review_requires_permission(client, auth_headers, employee, store, hr_admin, approved_advance):
    liq = _file(client, auth_headers, employee, _payload(approved_advance(), store, [{"gas": "10"}])).json()
    response = client.post(
        f"/api/liquidations/{liq['id']}/review", headers=auth_headers(hr_admin), json={"action": "approve"}
    )
    assert response.status_code == 403


def test_edit_changes_metadata_not_amounts(client, auth_headers, employee, store, ticket, accounting_admin, approved_advance):
    liq = _file(client, auth_headers, employee, _payload(approved_advance("5000"), store, [{"gas": "4500"}])).json()

    response = client.put(
        f"/api/liquidations/{liq['id']}",
        headers=auth_headers(accounting_admin),
        json={"ticket_id": ticket.id, "remarks": "Linked ticket", "status": "approved"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["ticket_id"] == ticket.id
    assert data["remarks"] == "Linked ticket"
    assert data["status"] == "approved"
    assert data["reviewer_id"] == accounting_admin.id
    assert Decimal(str(data["total_amount"])) == Decimal("4500")
    assert Decimal(str(data["return_to_company"])) == Decimal("500")

    response = client.put(
        f"/api/liquidations/{liq['id']}", headers=auth_headers(accounting_admin), json={"status": "pending"}
    )
    assert response.json()["status"] == "pending"
    assert response.json()["reviewer_id"] is None
    assert response.json()["reviewed_at"] is None


def test_empty_edit_rejected(client, auth_headers, employee, store, accounting_admin, approved_advance):
    liq = _file(client, auth_headers, employee, _payload(approved_advance(), store, [{"gas": "10"}])).json()
    response = client.put(f"/api/liquidations/{liq['id']}", headers=auth_headers(accounting_admin), json={})
    assert response.status_code == 422
    assert response.json()["error"] == "No fields provided to update."


def test_edit_requires_admin_role(client, auth_headers, make_employee, employee, store, approved_advance):
    liq = _file(client, auth_headers, employee, _payload(approved_advance(), store, [{"gas": "10"}])).json()
    # Accounting position but no ADMIN role
    clerk = make_employee(position="Accounting")
    response = client.put(f"/api/liquidations/{liq['id']}", headers=auth_headers(clerk), json={"remarks": "x"})
    assert response.status_code == 403


def test_delete_cascades_and_keeps_advance(client, auth_headers, db_session, employee, store, accounting_admin, approved_advance):
    advance_id = approved_advance()
    liq = _file(
        client, auth_headers, employee, _payload(advance_id, store, [{"gas": "10"}, {"toll": "5"}])
    ).json()
    db_session.add(LiquidationAttachment(liquidation_id=liq["id"], file_name="receipt.jpg", file_path="r/1.jpg"))
    db_session.commit()

    response = client.delete(f"/api/liquidations/{liq['id']}", headers=auth_headers(accounting_admin))
    assert response.status_code == 204

    db_session.expire_all()
    assert db_session.get(Liquidation, liq["id"]) is None
    assert db_session.query(LiquidationItem).filter_by(liquidation_id=liq["id"]).count() == 0
    assert db_session.query(LiquidationAttachment).filter_by(liquidation_id=liq["id"]).count() == 0

    advance = client.get(f"/api/cash-advances/{advance_id}", headers=auth_headers(employee))
    assert advance.status_code == 200
    assert advance.json()["status"] == "approved"


def test_list_is_scoped(client, auth_headers, employee, make_employee, store, accounting_admin, approved_advance):
    _file(client, auth_headers, employee, _payload(approved_advance(), store, [{"gas": "10"}]))
    stranger = make_employee()
    assert client.get("/api/liquidations", headers=auth_headers(stranger)).json() == []
    assert len(client.get("/api/liquidations?status=pending", headers=auth_headers(accounting_admin)).json()) == 1


def test_item_total_and_reconcile():
    assert item_total({"jeep": "1.50", "bus": 2, "others": None}) == Decimal("3.50")
    assert reconcile(Decimal("100"), Decimal("40")) == (Decimal("60"), Decimal("0"))
    assert reconcile(Decimal("100"), Decimal("140")) == (Decimal("0"), Decimal("40"))
    assert reconcile(Decimal("100"), Decimal("100")) == (Decimal("0"), Decimal("0"))


def test_sub_cent_expense_rejected(client, auth_headers, employee, store, approved_advance):
    items = [{"jeep": "1.005"}, {"jeep": "1.005"}]
    response = _file(client, auth_headers, employee, _payload(approved_advance("5000"), store, items))
    assert response.status_code == 422
    assert response.json()["code"] == "VALIDATION_ERROR"


def test_service_rejects_sub_cent_expense(db_session, employee, store, auth_ctx, approved_advance):
    from app.core.exceptions import ValidationError
    from app.services.liquidation_service import LiquidationService

    with pytest.raises(ValidationError):
        LiquidationService(db_session).create(
            auth_ctx(employee), approved_advance(), store.id, date.today(), [{"jeep": "1.005"}]
        )


def test_stored_total_matches_item_totals(client, auth_headers, db_session, employee, store, approved_advance):
    items = [{"jeep": "0.10", "bus": "0.20"}, {"meals": "1.15"}, {"others": "0.05"}]
    liq = _file(client, auth_headers, employee, _payload(approved_advance("2"), store, items)).json()

    db_session.expire_all()
    liquidation = db_session.get(Liquidation, liq["id"])
    assert Decimal(liquidation.total_amount) == sum(Decimal(i.total) for i in liquidation.items)
    assert Decimal(liquidation.total_amount) == Decimal("1.50")
    assert Decimal(liquidation.return_to_company) == Decimal("0.50")


def test_own_edit_replaces_items_and_recomputes(client, auth_headers, db_session, employee, store, approved_advance):
    advance_id = approved_advance("3000")
    liq = _file(client, auth_headers, employee, _payload(advance_id, store, [{"gas": "1000"}])).json()
    assert Decimal(str(liq["return_to_company"])) == Decimal("2000")

    response = client.put(
        f"/api/liquidations/{liq['id']}/own",
        headers=auth_headers(employee),
        json={"items": [{"gas": "2000", "toll": "300"}, {"lodging": "1500"}], "remarks": "Corrected"},
    )
    assert response.status_code == 200, response.text
    data = response.json()
    assert Decimal(str(data["total_amount"])) == Decimal("3800")
    assert Decimal(str(data["reimbursement"])) == Decimal("800")
    assert Decimal(str(data["return_to_company"])) == Decimal("0")
    assert data["remarks"] == "Corrected"
    assert [Decimal(str(i["total"])) for i in data["items"]] == [Decimal("2300"), Decimal("1500")]

    db_session.expire_all()
    assert db_session.query(LiquidationItem).filter_by(liquidation_id=liq["id"]).count() == 2


def test_own_edit_only_while_pending(client, auth_headers, employee, store, accounting_admin, approved_advance):
    liq = _file(client, auth_headers, employee, _payload(approved_advance(), store, [{"gas": "10"}])).json()
    client.post(
        f"/api/liquidations/{liq['id']}/review", headers=auth_headers(accounting_admin), json={"action": "approve"}
    )
    response = client.put(
        f"/api/liquidations/{liq['id']}/own", headers=auth_headers(employee), json={"items": [{"gas": "20"}]}
    )
    assert response.status_code == 409


def test_own_edit_hidden_from_other_employees(client, auth_headers, employee, make_employee, store, approved_advance):
    liq = _file(client, auth_headers, employee, _payload(approved_advance(), store, [{"gas": "10"}])).json()
    response = client.put(
        f"/api/liquidations/{liq['id']}/own", headers=auth_headers(make_employee()), json={"remarks": "x"}
    )
    assert response.status_code == 404


def test_own_edit_rejects_empty_items(client, auth_headers, employee, store, approved_advance):
    liq = _file(client, auth_headers, employee, _payload(approved_advance(), store, [{"gas": "10"}])).json()
    response = client.put(f"/api/liquidations/{liq['id']}/own", headers=auth_headers(employee), json={"items": []})
    assert response.status_code == 422


def test_upload_receipts(client, auth_headers, db_session, employee, store, approved_advance, tmp_path, monkeypatch):
    from app.core.config import settings
    monkeypatch.setattr(settings, "upload_dir", str(tmp_path))

    liq = _file(client, auth_headers, employee, _payload(approved_advance(), store, [{"gas": "10"}])).json()
    response = client.post(
        f"/api/liquidations/{liq['id']}/receipts",
        headers=auth_headers(employee),
        files=[
            ("files", ("Gas Receipt.JPG", b"jpeg-bytes", "image/jpeg")),
            ("files", ("toll.pdf", b"pdf-bytes", "application/pdf")),
        ],
    )
    assert response.status_code == 201, response.text
    data = response.json()
    assert [a["file_name"] for a in data] == ["Gas Receipt.JPG", "toll.pdf"]
    assert data[0]["file_path"].startswith(f"{liq['id']}/")
    assert data[0]["file_path"].endswith("gas-receipt.jpg")
    assert data[0]["file_size"] == len(b"jpeg-bytes")
    assert data[0]["uploaded_by"] == employee.id

    stored = tmp_path / "receipts" / data[0]["file_path"]
    assert stored.read_bytes() == b"jpeg-bytes"

    detail = client.get(f"/api/liquidations/{liq['id']}", headers=auth_headers(employee)).json()
    assert len(detail["attachments"]) == 2


def test_upload_receipts_owner_only(client, auth_headers, employee, accounting_admin, store, approved_advance, tmp_path, monkeypatch):
    from app.core.config import settings
    monkeypatch.setattr(settings, "upload_dir", str(tmp_path))

    liq = _file(client, auth_headers, employee, _payload(approved_advance(), store, [{"gas": "10"}])).json()
    response = client.post(
        f"/api/liquidations/{liq['id']}/receipts",
        headers=auth_headers(accounting_admin),
        files=[("files", ("r.jpg", b"x", "image/jpeg"))],
    )
    assert response.status_code == 403
    assert not (tmp_path / "receipts").exists()


def test_upload_receipts_size_limit(client, auth_headers, employee, store, approved_advance, tmp_path, monkeypatch):
    from app.core.config import settings
    monkeypatch.setattr(settings, "upload_dir", str(tmp_path))
    monkeypatch.setattr(settings, "max_receipt_bytes", 4)

    liq = _file(client, auth_headers, employee, _payload(approved_advance(), store, [{"gas": "10"}])).json()
    response = client.post(
        f"/api/liquidations/{liq['id']}/receipts",
        headers=auth_headers(employee),
        files=[("files", ("big.jpg", b"too-big", "image/jpeg"))],
    )
    assert response.status_code == 422
    assert not (tmp_path / "receipts").exists()
