"""Error classification and operator hints."""

import pytest

from mirrorbot.core.errors import (
    ConfirmationError,
    ErrorCategory,
    GatewayUnavailableError,
    SimulationError,
    diagnose,
)


class TestDiagnose:
    """Tests for mapping raw error text to hints."""

    @pytest.mark.parametrize("message, fragment", [
        ("TransactionExpiredBlockheightExceeded", "blockhash expired"),
        ("Transaction simulation failed: insufficient lamports 100, need 200", "Insufficient SOL"),
        ('{"InstructionError":[2,{"Custom":6001}]}', "program's execution"),
        ("Transaction confirmation failed: {'InstructionError': [2, {'Custom': 6001}]}", "program's execution"),
        ("Transaction confirmation failed: {'InsufficientFundsForRent': {'account_index': 3}}", "rent exemption"),
        ("AccountNotFound", "lookup table"),
        ("RPC node is behind by 40 slots", "lagging"),
    ])
    def test_known_patterns(self, message, fragment):
        assert fragment in diagnose(message)

    def test_unknown_message(self):
        assert diagnose("something else entirely") is None
        assert diagnose("") is None


class TestErrorContext:
    """Errors carry enough context for manual recovery."""

    def test_context_populated(self):
        error = ConfirmationError("Transaction confirmation timed out after 90s", signature="sig", stage="confirm")

        assert error.context.category == ErrorCategory.CONFIRMATION
        assert error.context.signature == "sig"
        assert error.context.stage == "confirm"
        assert error.context.suggested_action is not None
        assert str(error) == error.message

    def test_categories(self):
        assert GatewayUnavailableError("x").context.category == ErrorCategory.GATEWAY_UNAVAILABLE
        assert SimulationError("x", asset_id="mint").context.asset_id == "mint"
