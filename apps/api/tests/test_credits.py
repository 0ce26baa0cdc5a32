import asyncio

import pytest
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.future import select

from models.credit_transaction import CreditTransaction
from models.user_credits import UserCredits
from services import credits


USER_ID = "ledger-user"
API_USER_ID = "user-comprador"


async def _transactions(session_maker, **filters):
    async with session_maker() as session:
        query = select(CreditTransaction)
        for column, value in filters.items():
            query = query.where(getattr(CreditTransaction, column) == value)
        return (await session.execute(query)).scalars().all()


async def _balance(session_maker, user_id=USER_ID):
    async with session_maker() as session:
        return await credits.get_balance(user_id, session)


@pytest.mark.asyncio
async def test_balance_defaults_to_zero_without_row(session_maker):
    assert await _balance(session_maker, "nobody") == 0


@pytest.mark.asyncio
async def test_sequential_duplicate_credit_is_skipped(session_maker):
    async with session_maker() as session:
        first = await credits.credit(USER_ID, 100, "purchase", "Compra", "ref-1", session)
    async with session_maker() as session:
        second = await credits.credit(USER_ID, 100, "purchase", "Compra", "ref-1", session)

    assert (first, second) == ("applied", "skipped")
    assert await _balance(session_maker) == 100
    assert len(await _transactions(session_maker, reference_id="ref-1")) == 1


@pytest.mark.asyncio
async def test_concurrent_duplicate_credit_applies_once(session_maker):
    async def _settle():
        async with session_maker() as session:
            return await credits.credit(USER_ID, 100, "purchase", "Compra", "ref-race", session)

    outcomes = await asyncio.gather(_settle(), _settle(), _settle())

    assert sorted(outcomes) == ["applied", "skipped", "skipped"]
    assert await _balance(session_maker) == 100
    assert len(await _transactions(session_maker, reference_id="ref-race")) == 1


@pytest.mark.asyncio
async def test_uniqueness_constraint_guards_when_precheck_is_bypassed(session_maker, monkeypatch):
    async def _never_settled(db, reference_id, tx_type):
        return False

    monkeypatch.setattr(credits, "_already_settled", _never_settled)

    async with session_maker() as session:
        first = await credits.credit(USER_ID, 100, "purchase", "Compra", "ref-2", session)
    async with session_maker() as session:
        second = await credits.credit(USER_ID, 100, "purchase", "Compra", "ref-2", session)

    assert (first, second) == ("applied", "skipped")
    assert await _balance(session_maker) == 100


@pytest.mark.asyncio
async def test_purchase_and_bonus_share_reference_independently(session_maker):
    async with session_maker() as session:
        assert await credits.credit(USER_ID, 100, "purchase", "Compra", "ref-3", session) == "applied"
        assert await credits.credit(USER_ID, 10, "bonus", "Bônus", "ref-3_bonus", session) == "applied"
        assert await credits.credit(USER_ID, 10, "bonus", "Bônus", "ref-3_bonus", session) == "skipped"

    assert await _balance(session_maker) == 110


@pytest.mark.asyncio
async def test_refunds_are_not_deduplicated_by_reference(session_maker):
    async with session_maker() as session:
        await credits.credit(USER_ID, 5, "refund", "Estorno", "search-1", session)
        await credits.credit(USER_ID, 5, "refund", "Estorno", "search-1", session)

    assert await _balance(session_maker) == 10


@pytest.mark.asyncio
async def test_credit_rejects_non_positive_amounts(session_maker):
    async with session_maker() as session:
        with pytest.raises(ValueError):
            await credits.credit(USER_ID, 0, "purchase", "Compra", "ref-0", session)
        with pytest.raises(ValueError):
            await credits.credit(USER_ID, 10, "consumption", "x", None, session)


@pytest.mark.asyncio
async def test_consume_never_overdraws(session_maker):
    async with session_maker() as session:
        await credits.credit(USER_ID, 100, "purchase", "Compra", "ref-4", session)

    async with session_maker() as session:
        assert await credits.consume(USER_ID, 60, "Busca CNPJ", session) is True
        assert await credits.consume(USER_ID, 60, "Busca CNPJ", session) is False

    assert await _balance(session_maker) == 40
    consumptions = await _transactions(session_maker, type="consumption")
    assert [entry.amount for entry in consumptions] == [-60]


@pytest.mark.asyncio
async def test_consume_without_balance_row_fails_cleanly(session_maker):
    async with session_maker() as session:
        assert await credits.consume("no-balance", 1, "Busca", session) is False
    assert await _transactions(session_maker, user_id="no-balance") == []


@pytest.mark.asyncio
async def test_concurrent_consumption_respects_balance(session_maker):
    async with session_maker() as session:
        await credits.credit(USER_ID, 100, "purchase", "Compra", "ref-5", session)

    async def _spend():
        async with session_maker() as session:
            return await credits.consume(USER_ID, 40, "Busca", session)

    outcomes = await asyncio.gather(*[_spend() for _ in range(4)])

    assert outcomes.count(True) == 2
    assert await _balance(session_maker) == 20


@pytest.mark.asyncio
async def test_balance_check_constraint_rejects_negative_rows(session_maker):
    async with session_maker() as session:
        session.add(UserCredits(user_id="negative", balance=-1))
        with pytest.raises(IntegrityError):
            await session.commit()


@pytest.mark.asyncio
async def test_credit_summary_lists_recent_transactions(session_maker):
    async with session_maker() as session:
        await credits.credit(USER_ID, 100, "purchase", "Compra", "ref-6", session)
        await credits.consume(USER_ID, 30, "Busca", session)
        summary = await credits.get_credit_summary(USER_ID, session)
        total = (await session.execute(select(func.count(CreditTransaction.id)))).scalar()

    assert summary["balance"] == 70
    assert total == 2
    assert {entry["type"] for entry in summary["transactions"]} == {"purchase", "consumption"}


@pytest.mark.asyncio
async def test_billing_endpoints_expose_ledger(api_client, auth_headers, session_maker, credit_package):
    async with session_maker() as session:
        await credits.credit(API_USER_ID, 50, "purchase", "Compra", "ref-api", session)

    packages = await api_client.get("/billing/packages", headers=auth_headers)
    assert packages.status_code == 200
    assert packages.json()["packages"][0]["totalCredits"] == 110

    spent = await api_client.post(
        "/billing/consume",
        json={"amount": 20, "description": "Busca por CEP", "referenceId": "search-9"},
        headers=auth_headers,
    )
    assert spent.status_code == 200
    assert spent.json() == {"success": True, "balance": 30}

    refused = await api_client.post("/billing/consume", json={"amount": 500, "description": "Busca"}, headers=auth_headers)
    assert refused.status_code == 402
    assert refused.json()["error"] == "Créditos insuficientes"

    summary = await api_client.get("/billing/credits", headers=auth_headers)
    assert summary.json()["balance"] == 30
    assert len(summary.json()["transactions"]) == 2
