"""MockVerifier: the switchable verifier app used on LocalNet."""

import pytest
from algopy import arc4
from algopy_testing import AlgopyTestContext

from smart_contracts.mock_verifier.contract import MockVerifier


@pytest.fixture()
def mock_verifier(context: AlgopyTestContext) -> MockVerifier:  # noqa: ARG001
    return MockVerifier()


def test_accepts_by_default(mock_verifier: MockVerifier, proof) -> None:
    assert mock_verifier.verify(*proof(42)).native is True


def test_creator_flips_result(mock_verifier: MockVerifier, proof) -> None:
    mock_verifier.set_result(arc4.Bool(False))
    assert mock_verifier.verify(*proof(42)).native is False

    mock_verifier.set_result(arc4.Bool(True))
    assert mock_verifier.verify(*proof(42)).native is True


def test_only_creator_sets_result(mock_verifier: MockVerifier, outsider, as_sender, proof) -> None:
    with as_sender(outsider), pytest.raises(AssertionError, match="Unauthorized"):
        mock_verifier.set_result(arc4.Bool(False))

    assert mock_verifier.verify(*proof(42)).native is True
