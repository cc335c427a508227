import json
import tempfile
import unittest
from pathlib import Path

from trustcore.config import CoreConfig, invalidate_config_cache, load_core_config, load_json_cached


class TestLoadCoreConfig(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = Path(self.tmp.name) / "trustcore.json"
        invalidate_config_cache()

    def tearDown(self):
        invalidate_config_cache()
        self.tmp.cleanup()

    def write(self, data):
        self.path.write_text(json.dumps(data), encoding="utf-8")

    def test_defaults_without_overrides(self):
        self.assertEqual(load_core_config(), CoreConfig())

    def test_overrides_applied(self):
        self.write({"network_id": "net-prod", "issuer_allowlist": ["notary-a", "notary-b"], "max_batch_size": 10})
        config = load_core_config(str(self.path))
        self.assertEqual(config.network_id, "net-prod")
        self.assertEqual(config.issuer_allowlist, frozenset({"notary-a", "notary-b"}))
        self.assertEqual(config.max_batch_size, 10)
        self.assertEqual(config.verifier_id, CoreConfig().verifier_id)

    def test_unknown_field_rejected(self):
        self.write({"trust_everyone": True})
        with self.assertRaises(TypeError):
            load_core_config(str(self.path))

    def test_cached_until_invalidated(self):
        self.write({"network_id": "first"})
        self.assertEqual(load_json_cached(str(self.path))["network_id"], "first")
        self.write({"network_id": "second"})
        self.assertEqual(load_core_config(str(self.path)).network_id, "first")
        invalidate_config_cache()
        self.assertEqual(load_core_config(str(self.path)).network_id, "second")


if __name__ == "__main__":
    unittest.main()
