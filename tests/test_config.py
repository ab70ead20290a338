import os
import unittest
from unittest import mock

from autosell.config import EngineConfig, Settings
from autosell.errors import ConfigError

from fakes import MINT


class EngineConfigTests(unittest.TestCase):
    def test_wire_names_are_accepted(self) -> None:
        config = EngineConfig.from_dict({
            "mint": MINT,
            "timeWindowSeconds": 60,
            "sellPercentageOfNetFlow": 50,
            "cooldownSeconds": 20,
            "slippageBps": 100,
            "cooldownScope": "per_account",
        })
        self.assertEqual(config.window_seconds, 60.0)
        self.assertEqual(config.sell_fraction, 0.5)
        self.assertEqual(config.cooldown_seconds, 20.0)
        self.assertEqual(config.slippage_bps, 100)
        self.assertEqual(config.cooldown_scope, "per_account")
        config.validate()

    def test_asset_alias_and_defaults(self) -> None:
        config = EngineConfig.from_dict({"asset": f" {MINT} "})
        self.assertEqual(config.mint, MINT)
        self.assertEqual(config.window_seconds, 30.0)
        self.assertEqual(config.sell_fraction, 0.25)
        self.assertEqual(config.min_net_flow_usd, 0.0)
        self.assertEqual(config.slippage_bps, 300)

    def test_unknown_keys_are_ignored(self) -> None:
        config = EngineConfig.from_dict({"mint": MINT, "theme": "dark"})
        config.validate()

    def test_invalid_values(self) -> None:
        cases = [
            {},
            {"mint": MINT, "timeWindowSeconds": 0},
            {"mint": MINT, "cooldownSeconds": -1},
            {"mint": MINT, "sellPercentageOfNetFlow": 0},
            {"mint": MINT, "sellPercentageOfNetFlow": 150},
            {"mint": MINT, "minSellFraction": 0.5, "maxSellFraction": 0.1},
            {"mint": MINT, "slippageBps": 0},
            {"mint": MINT, "cooldownScope": "sometimes"},
            {"mint": MINT, "flowSource": "carrier-pigeon"},
        ]
        for body in cases:
            with self.subTest(body=body):
                with self.assertRaises(ConfigError):
                    EngineConfig.from_dict(body).validate()

    def test_non_numeric_value_is_config_error(self) -> None:
        with self.assertRaises(ConfigError):
            EngineConfig.from_dict({"mint": MINT, "timeWindowSeconds": "soon"})

    def test_accumulate_flag_parsing(self) -> None:
        for raw, expected in ((True, True), (False, False), ("true", True), ("false", False),
                              ("0", False), ("On", True), (1, True), (0, False)):
            with self.subTest(raw=raw):
                config = EngineConfig.from_dict({"mint": MINT, "accumulateVolumes": raw})
                self.assertIs(config.accumulate_volumes, expected)

        for raw in ("maybe", 2, [True]):
            with self.subTest(raw=raw):
                with self.assertRaises(ConfigError):
                    EngineConfig.from_dict({"mint": MINT, "accumulateVolumes": raw})


class SettingsTests(unittest.TestCase):
    def test_from_env(self) -> None:
        env = {
            "RPC_URL": "https://rpc.example",
            "BITQUERY_TOKEN": "tok",
            "BITQUERY_INVERTED": "1",
            "BLOXROUTE_AUTH": "auth",
            "POOL_ADDRESSES": "PoolA, PoolB",
            "SOURCE_TIMEOUT_SECONDS": "9",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            settings = Settings.from_env(dotenv=False)
        self.assertEqual(settings.rpc_url, "https://rpc.example")
        self.assertEqual(settings.bitquery_token, "tok")
        self.assertTrue(settings.bitquery_inverted)
        self.assertEqual(settings.pool_addresses, ["PoolA", "PoolB"])
        self.assertEqual(settings.source_timeout, 9.0)

    def test_missing_optionals_disable_capabilities(self) -> None:
        with mock.patch.dict(os.environ, {}, clear=True):
            settings = Settings.from_env(dotenv=False)
        report = settings.to_dict()
        self.assertFalse(report["bitquery_enabled"])
        self.assertFalse(report["relay_enabled"])
        self.assertFalse(report["trade_log_enabled"])
        self.assertEqual(settings.rpc_url, "https://api.mainnet-beta.solana.com")

    def test_settings_dict_has_no_secrets(self) -> None:
        settings = Settings(bitquery_token="secret-token", bloxroute_auth="secret-auth",
                            webhook_secret="secret-hook")
        self.assertNotIn("secret", str(settings.to_dict()))

    def test_bad_timeout_is_config_error(self) -> None:
        with mock.patch.dict(os.environ, {"SWAP_TIMEOUT_SECONDS": "fast"}, clear=True):
            with self.assertRaises(ConfigError):
                Settings.from_env(dotenv=False)


if __name__ == "__main__":
    unittest.main()
