import pytest
from hexbytes import HexBytes

from chains.zk_stack.paymaster import get_paymaster_params

PAYMASTER = "0x0a67078A35745947A37A552174aFe724D8180c25"
TOKEN = "0x65C899B5fb8Eb9ae4da51D67E1fc417c7CB7e964"


def test_general_flow():
    params = get_paymaster_params(PAYMASTER, {"type": "General", "innerInput": b""})

    assert params == {
        "paymaster": PAYMASTER,
        "paymasterInput": HexBytes(
            "0x8c5a3445"
            "0000000000000000000000000000000000000000000000000000000000000020"
            "0000000000000000000000000000000000000000000000000000000000000000"
        ),
    }


def test_approval_based_flow():
    params = get_paymaster_params(
        PAYMASTER,
        {
            "type": "ApprovalBased",
            "token": TOKEN,
            "minimalAllowance": 1,
            "innerInput": b"",
        },
    )

    assert params == {
        "paymaster": PAYMASTER,
        "paymasterInput": HexBytes(
            "0x949431dc"
            "00000000000000000000000065c899b5fb8eb9ae4da51d67e1fc417c7cb7e964"
            "0000000000000000000000000000000000000000000000000000000000000001"
            "0000000000000000000000000000000000000000000000000000000000000060"
            "0000000000000000000000000000000000000000000000000000000000000000"
        ),
    }


def test_paymaster_address_is_checksummed():
    params = get_paymaster_params(PAYMASTER.lower(), {"type": "General"})

    assert params["paymaster"] == PAYMASTER


def test_unknown_flow():
    with pytest.raises(ValueError, match="Unknown paymaster flow"):
        get_paymaster_params(PAYMASTER, {"type": "Sponsored"})  # type: ignore[typeddict-item]
