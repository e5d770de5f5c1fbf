#!/usr/bin/env python3
"""Tests for ContractUtility class.

This module tests both full mode (with signing) and read-only mode
of the ContractUtility class, and the bundled contract ABIs.
"""

import unittest
from unittest.mock import MagicMock, Mock, patch

import pytest
from eth_account import Account

from src.wallet_hopper.utils.contract_utility import ContractUtility


class TestContractUtility(unittest.TestCase):
    """Test cases for ContractUtility class."""

    def setUp(self):
        """Set up test fixtures."""
        self.test_rpc_url = "https://test.rpc.url"
        self.test_private_key = "0x" + "1" * 64  # Valid test private key
        self.test_address = Account.from_key(self.test_private_key).address

    @patch('src.wallet_hopper.utils.contract_utility.AsyncWeb3')
    def test_init_read_only_mode(self, mock_web3):
        """Test initialization in read-only mode (no private key)."""
        mock_w3_instance = MagicMock()
        mock_web3.return_value = mock_w3_instance
        mock_web3.AsyncHTTPProvider = Mock(return_value="mock_provider")

        utility = ContractUtility(self.test_rpc_url)

        mock_web3.assert_called_once_with("mock_provider")
        mock_web3.AsyncHTTPProvider.assert_called_once_with(self.test_rpc_url)
        assert utility.rpc_url == self.test_rpc_url
        assert utility.w3 == mock_w3_instance
        assert utility.account is None
        # Middleware should not be added in read-only mode
        mock_w3_instance.middleware_onion.add.assert_not_called()

    @patch('src.wallet_hopper.utils.contract_utility.AsyncWeb3')
    @patch('src.wallet_hopper.utils.contract_utility.SignAndSendRawMiddlewareBuilder')
    @patch('src.wallet_hopper.utils.contract_utility.Account')
    def test_init_full_mode(self, mock_account, mock_middleware_builder, mock_web3):
        """Test initialization in full mode (with private key)."""
        mock_w3_instance = MagicMock()
        mock_web3.return_value = mock_w3_instance

        mock_account_instance = MagicMock()
        mock_account_instance.address = self.test_address
        mock_account.from_key.return_value = mock_account_instance

        mock_middleware = MagicMock()
        mock_middleware_builder.build.return_value = mock_middleware

        utility = ContractUtility(self.test_rpc_url, self.test_private_key)

        mock_account.from_key.assert_called_once_with(self.test_private_key)
        mock_middleware_builder.build.assert_called_once_with(mock_account_instance)
        mock_w3_instance.middleware_onion.add.assert_called_once_with(mock_middleware)
        assert mock_w3_instance.eth.default_account == self.test_address
        assert utility.account is mock_account_instance

    def test_init_no_rpc_url(self):
        """Test initialization fails without RPC URL."""
        with pytest.raises(ValueError, match="RPC URL is required"):
            ContractUtility("")

        with pytest.raises(ValueError, match="RPC URL is required"):
            ContractUtility(None)

    @patch('src.wallet_hopper.utils.contract_utility.AsyncWeb3')
    def test_add_signing_middleware_no_secret(self, mock_web3):
        """Test adding signing middleware fails without secret."""
        utility = ContractUtility(self.test_rpc_url)

        with pytest.raises(ValueError, match="Private key is required for signing transactions"):
            utility._add_signing_middleware("")

    def test_get_contract_abi_erc20(self):
        """Test loading the ERC20 ABI."""
        abi = ContractUtility.get_contract_abi("ERC20")

        names = {entry["name"] for entry in abi if entry.get("type") == "function"}
        assert {"approve", "transfer", "allowance", "balanceOf"} <= names

    def test_get_contract_abi_spoke_pool(self):
        """Test that the bridge deposit takes eight arguments and is payable."""
        abi = ContractUtility.get_contract_abi("SpokePool")

        deposit = next(entry for entry in abi if entry.get("name") == "deposit")
        assert len(deposit["inputs"]) == 8
        assert deposit["stateMutability"] == "payable"

    def test_get_contract_abi_registry(self):
        """Test loading the pointer registry ABI."""
        abi = ContractUtility.get_contract_abi("WalletHopper")

        set_pointer = next(entry for entry in abi if entry.get("name") == "setPointer")
        assert [i["type"] for i in set_pointer["inputs"]] == ["string"]

    def test_get_contract_abi_missing(self):
        """Test that an unknown contract name raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            ContractUtility.get_contract_abi("NonExistent")

    @patch('src.wallet_hopper.utils.contract_utility.AsyncWeb3')
    def test_get_contract_checksums_address(self, mock_web3):
        """Test that contracts are bound to checksummed addresses."""
        mock_w3_instance = MagicMock()
        mock_web3.return_value = mock_w3_instance
        utility = ContractUtility(self.test_rpc_url)

        utility.get_contract("0x85bfe05492afc3d04ff3b2ca6771acf6f853d90d", abi=[])

        mock_w3_instance.eth.contract.assert_called_once_with(
            address="0x85BfE05492aFC3D04Ff3B2ca6771ACF6f853d90d", abi=[]
        )


if __name__ == "__main__":
    unittest.main()
