import dataclasses

import pytest

from cards_distributor.errors import PermitError
from cards_distributor.permit import PermitBuilder
from cards_distributor.results import ErrorKind
from cards_distributor.session import Participant

from conftest import ADDRESSES, CHAIN_ID, CONTRACT_ADDRESS, FakeSigner

OTHER_CONTRACT = "secret1othercontract000000000000000000000000"


def test_sign_doc_pins_fee_account_and_sequence():
    builder = PermitBuilder(FakeSigner(ADDRESSES["P2"]), CHAIN_ID)
    doc = builder.build_sign_doc([CONTRACT_ADDRESS])

    assert doc["chain_id"] == CHAIN_ID
    assert doc["account_number"] == "0"
    assert doc["sequence"] == "0"
    assert doc["fee"] == {"amount": [{"denom": "uscrt", "amount": "0"}], "gas": "1"}
    assert doc["memo"] == ""
    assert doc["msgs"] == [{"type": "query_permit", "value": {
        "permit_name": "query_cards",
        "allowed_tokens": [CONTRACT_ADDRESS],
        "permissions": ["allowance"],
    }}]


@pytest.mark.parametrize("kwargs", [
    {"fee_amount": 1},
    {"gas": 200000},
    {"account_number": 5},
    {"sequence": 1},
    {"memo": "hello"},
])
def test_sign_doc_refuses_spendable_fields(kwargs):
    builder = PermitBuilder(FakeSigner(ADDRESSES["P2"]), CHAIN_ID)
    with pytest.raises(PermitError):
        builder.build_sign_doc([CONTRACT_ADDRESS], **kwargs)


def test_sign_doc_needs_targets_and_permissions():
    builder = PermitBuilder(FakeSigner(ADDRESSES["P2"]), CHAIN_ID)
    with pytest.raises(PermitError):
        builder.build_sign_doc([])
    with pytest.raises(PermitError):
        builder.build_sign_doc([CONTRACT_ADDRESS], permissions=[])


@pytest.mark.asyncio
async def test_build_signs_and_packages_permit():
    signer = FakeSigner(ADDRESSES["P2"])
    permit = await PermitBuilder(signer, CHAIN_ID).build([CONTRACT_ADDRESS, OTHER_CONTRACT])

    assert len(signer.signed) == 1
    assert permit.signer_address == ADDRESSES["P2"]
    assert permit.covers(CONTRACT_ADDRESS) and permit.covers(OTHER_CONTRACT)
    wire = permit.to_query_dict()
    assert wire["params"]["allowed_tokens"] == sorted([CONTRACT_ADDRESS, OTHER_CONTRACT])
    assert wire["params"]["chain_id"] == CHAIN_ID
    assert set(wire["signature"]) == {"pub_key", "signature"}


@pytest.mark.asyncio
async def test_signer_failure_becomes_permit_error():
    with pytest.raises(PermitError):
        await PermitBuilder(FakeSigner(ADDRESSES["P2"], fail=True), CHAIN_ID).build([CONTRACT_ADDRESS])


@pytest.mark.asyncio
async def test_malformed_signature_is_refused():
    class SloppySigner:
        address = ADDRESSES["P2"]

        async def sign_amino(self, signer_address, sign_doc):
            return {"signature": "abc"}

    with pytest.raises(PermitError):
        await PermitBuilder(SloppySigner(), CHAIN_ID).build([CONTRACT_ADDRESS])


@pytest.mark.asyncio
async def test_permit_for_other_target_is_unauthorized_and_not_retried(contract, query_client, permit_factory):
    permit = await permit_factory("P2", targets=[OTHER_CONTRACT])
    participant = Participant("P2", ADDRESSES["P2"])

    result = await query_client.query_private_data(999, participant, permit)

    assert not result.is_ok
    assert result.error.kind is ErrorKind.UNAUTHORIZED
    assert contract.queries == []
    assert contract.executed == []


@pytest.mark.asyncio
async def test_contract_rejects_permit_whose_scope_was_widened(contract, query_client, permit_factory):
    signed_for_other = await permit_factory("P2", targets=[OTHER_CONTRACT])
    # claim the distributor without re-signing: only the contract can catch this
    tampered = dataclasses.replace(signed_for_other, allowed_targets=frozenset([CONTRACT_ADDRESS]))
    participant = Participant("P2", ADDRESSES["P2"])

    result = await query_client.query_private_data(999, participant, tampered)

    assert result.error.kind is ErrorKind.UNAUTHORIZED
    assert len(contract.queries) == 1
    assert contract.executed == []


@pytest.mark.asyncio
async def test_permit_signed_by_someone_else_is_refused(contract, query_client, permit_factory):
    permit = await permit_factory("P3")
    result = await query_client.query_private_data(999, Participant("P2", ADDRESSES["P2"]), permit)
    assert result.error.kind is ErrorKind.UNAUTHORIZED
    assert contract.queries == []
