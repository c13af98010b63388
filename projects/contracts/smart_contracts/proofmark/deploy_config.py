"""
ProofMark Deploy Configuration
===============================
Deployment script for the ProofMark registry.

Usage:
    algokit project deploy localnet
    algokit project deploy testnet

Environment:
    DEPLOYER_MNEMONIC  25-word mnemonic of the deploying account (the owner)
    VERIFIER_APP_ID    App ID of the circuit's Groth16 verifier. On LocalNet it
                       may be left unset: a MockVerifier is deployed instead.

After successful deployment:
    1. Copy the printed App ID to your backend .env file as ALGORAND_APP_ID
    2. The contract is funded with 10 ALGO to cover box storage costs
"""

import logging
import os
from pathlib import Path

import algokit_utils

logger = logging.getLogger(__name__)

ARTIFACTS = Path(__file__).resolve().parent.parent / "artifacts"


def get_verifier_app_id() -> int:
    """
    Read VERIFIER_APP_ID; 0 when unset.

    Raises:
        ValueError: the value is not a non-negative integer.
    """
    raw = os.getenv("VERIFIER_APP_ID", "").strip()
    if not raw:
        return 0
    try:
        app_id = int(raw)
    except ValueError as e:
        raise ValueError(f"VERIFIER_APP_ID must be an integer app ID, got {raw!r}") from e
    if app_id < 0:
        raise ValueError(f"VERIFIER_APP_ID must not be negative, got {app_id}")
    return app_id


def _app_factory(
    algorand: algokit_utils.AlgorandClient, directory: str, name: str, sender: str
) -> algokit_utils.AppFactory:
    app_spec = (ARTIFACTS / directory / f"{name}.arc56.json").read_text(encoding="utf-8")
    return algorand.client.get_app_factory(app_spec=app_spec, default_sender=sender)


def deploy_mock_verifier(algorand: algokit_utils.AlgorandClient, sender: str) -> int:
    factory = _app_factory(algorand, "mock_verifier", "MockVerifier", sender)
    app_client, _ = factory.deploy(
        on_update=algokit_utils.OnUpdate.AppendApp,
        on_schema_break=algokit_utils.OnSchemaBreak.AppendApp,
    )
    logger.warning(f"Deployed MockVerifier app {app_client.app_id}: it accepts every proof")
    return app_client.app_id


def deploy() -> None:
    """Deploy the ProofMark registry bound to the configured verifier."""
    algorand = algokit_utils.AlgorandClient.from_environment()
    deployer_ = algorand.account.from_environment("DEPLOYER")

    verifier_app_id = get_verifier_app_id()
    if verifier_app_id == 0:
        if not algorand.client.is_localnet():
            raise ValueError("VERIFIER_APP_ID is not set. Deploy the circuit's verifier first.")
        verifier_app_id = deploy_mock_verifier(algorand, deployer_.address)

    factory = _app_factory(algorand, "proofmark", "ProofMark", deployer_.address)

    # The verifier is fixed at creation, so a new verifier means a new app.
    app_client, result = factory.deploy(
        on_update=algokit_utils.OnUpdate.AppendApp,
        on_schema_break=algokit_utils.OnSchemaBreak.AppendApp,
        create_params=algokit_utils.AppClientMethodCallCreateParams(
            method="create",
            args=[verifier_app_id],
        ),
    )

    if result.operation_performed in [
        algokit_utils.OperationPerformed.Create,
        algokit_utils.OperationPerformed.Replace,
    ]:
        # Box MBR: 2500 + 400 * (key_size + value_size) microAlgos per box.
        # A registration writes two boxes (record + index), roughly 0.06 ALGO.
        algorand.send.payment(
            algokit_utils.PaymentParams(
                amount=algokit_utils.AlgoAmount(algo=10),
                sender=deployer_.address,
                receiver=app_client.app_address,
            )
        )
        logger.info(
            f"Deployed ProofMark app {app_client.app_id} "
            f"at address {app_client.app_address} (verifier app {verifier_app_id})"
        )
        print("\n" + "=" * 60)
        print("DEPLOYMENT SUCCESSFUL — Copy this to your backend .env:")
        print(f"  ALGORAND_APP_ID={app_client.app_id}")
        print("=" * 60 + "\n")
    else:
        logger.info(f"ProofMark app already up-to-date: App ID {app_client.app_id}")
