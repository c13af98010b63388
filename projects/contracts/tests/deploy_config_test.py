"""Deploy configuration: the verifier app ID read from the environment."""

import pytest

from smart_contracts.proofmark.deploy_config import ARTIFACTS, get_verifier_app_id


def test_unset_verifier_app_id_is_zero(monkeypatch) -> None:
    monkeypatch.delenv("VERIFIER_APP_ID", raising=False)
    assert get_verifier_app_id() == 0


def test_blank_verifier_app_id_is_zero(monkeypatch) -> None:
    monkeypatch.setenv("VERIFIER_APP_ID", "   ")
    assert get_verifier_app_id() == 0


def test_verifier_app_id_parsed(monkeypatch) -> None:
    monkeypatch.setenv("VERIFIER_APP_ID", " 1234 ")
    assert get_verifier_app_id() == 1234


@pytest.mark.parametrize("value", ["abc", "12.5", "-1"])
def test_bad_verifier_app_id_raises(monkeypatch, value: str) -> None:
    monkeypatch.setenv("VERIFIER_APP_ID", value)
    with pytest.raises(ValueError, match="VERIFIER_APP_ID"):
        get_verifier_app_id()


def test_artifacts_live_beside_the_contracts() -> None:
    assert ARTIFACTS.name == "artifacts"
    assert (ARTIFACTS.parent / "proofmark" / "contract.py").is_file()
