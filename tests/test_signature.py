import pytest

from storefront.signature import canonical_message, covers_required_fields, sign, verify

SECRET = "8gBm/:&EnhH.1/q"


def test_known_esewa_signature():
    fields = {"total_amount": "100", "transaction_uuid": "11-201-13", "product_code": "EPAYTEST"}
    assert canonical_message(fields, "total_amount,transaction_uuid,product_code") == \
        "total_amount=100,transaction_uuid=11-201-13,product_code=EPAYTEST"
    assert sign(fields, "total_amount,transaction_uuid,product_code", SECRET) == \
        "5DZywcrTKD0gia/rsSMcrRHmJl+4Tbol6S+lWgdJ94E="


def test_sign_then_verify():
    msg = {
        "transaction_code": "000AWEO",
        "status": "COMPLETE",
        "total_amount": "1000.0",
        "transaction_uuid": "250610-162413",
        "product_code": "EPAYTEST",
        "signed_field_names": "transaction_code,status,total_amount,transaction_uuid,product_code,signed_field_names",
    }
    signature = sign(msg, msg["signed_field_names"], SECRET)
    assert verify(msg, signature, SECRET)
    assert not verify(msg, signature, "another-secret")


def test_field_order_matters():
    fields = {"total_amount": "100", "transaction_uuid": "abc", "product_code": "EPAYTEST"}
    assert sign(fields, "total_amount,transaction_uuid,product_code", SECRET) != \
        sign(fields, "transaction_uuid,total_amount,product_code", SECRET)


def test_integral_floats_sign_like_strings():
    as_text = {"total_amount": "100", "transaction_uuid": "abc", "product_code": "EPAYTEST"}
    as_float = dict(as_text, total_amount=100.0)
    names = "total_amount,transaction_uuid,product_code"
    assert sign(as_text, names, SECRET) == sign(as_float, names, SECRET)


def test_tampered_value_fails():
    msg = {"total_amount": "100", "transaction_uuid": "abc", "product_code": "EPAYTEST",
           "signed_field_names": "total_amount,transaction_uuid,product_code"}
    signature = sign(msg, msg["signed_field_names"], SECRET)
    assert not verify(dict(msg, total_amount="1"), signature, SECRET)


def test_unsigned_fields_are_ignored():
    msg = {"total_amount": "100", "transaction_uuid": "abc", "product_code": "EPAYTEST",
           "signed_field_names": "total_amount,transaction_uuid,product_code"}
    signature = sign(msg, msg["signed_field_names"], SECRET)
    assert verify(dict(msg, note="anything"), signature, SECRET)


def test_signature_must_cover_amount_and_uuid():
    msg = {"transaction_uuid": "abc", "product_code": "EPAYTEST", "total_amount": "1",
           "signed_field_names": "transaction_uuid,product_code"}
    signature = sign(msg, msg["signed_field_names"], SECRET)
    assert not verify(msg, signature, SECRET)
    assert not covers_required_fields("total_amount,transaction_uuid")
    assert covers_required_fields("total_amount,transaction_uuid,transaction_code")


@pytest.mark.parametrize("signed_field_names", ["", ",", "total_amount,,transaction_uuid", None])
def test_bad_field_lists_never_verify(signed_field_names):
    msg = {"total_amount": "100", "transaction_uuid": "abc", "product_code": "EPAYTEST",
           "signed_field_names": signed_field_names}
    assert not verify(msg, "c2lnbmF0dXJl", SECRET)


def test_missing_signed_value():
    msg = {"total_amount": "100", "transaction_uuid": "abc",
           "signed_field_names": "total_amount,transaction_uuid,product_code"}
    with pytest.raises(ValueError):
        sign(msg, msg["signed_field_names"], SECRET)
    assert not verify(msg, "c2lnbmF0dXJl", SECRET)


def test_empty_key_or_signature():
    msg = {"total_amount": "100", "transaction_uuid": "abc", "product_code": "EPAYTEST",
           "signed_field_names": "total_amount,transaction_uuid,product_code"}
    signature = sign(msg, msg["signed_field_names"], SECRET)
    assert not verify(msg, signature, "")
    assert not verify(msg, "", SECRET)
    assert not verify(msg, "sïgnature", SECRET)
