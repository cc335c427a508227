"""
Capability namespace tests.

The permission check is exercised exhaustively over the low 8 bits (which
include the admin bit) and by sampling bits far above them.
"""

import unittest

from trustcore.capabilities import (
    CAPABILITIES,
    CAPABILITY_MASK,
    CAPABILITY_WIDTH,
    CORE_ADMIN,
    CORE_CLAIM,
    CORE_VIEW,
    DOC_SIGN,
    FIN_WITHDRAW,
    RENTAL_EXTEND,
    add,
    capability_names,
    compose,
    from_names,
    has_capability,
    remove,
)


class TestHasCapability(unittest.TestCase):

    def test_exhaustive_low_byte(self):
        for granted in range(256):
            for required in range(256):
                expected = bool(granted & CORE_ADMIN) or (granted & required) == required
                self.assertEqual(
                    has_capability(granted, required), expected,
                    f"granted={granted:#04x} required={required:#04x}",
                )

    def test_admin_bit_is_bit_seven(self):
        self.assertEqual(CORE_ADMIN, 1 << 7)

    def test_admin_implies_high_bits(self):
        for bit in (8, 31, 64, 200, CAPABILITY_WIDTH - 1):
            self.assertTrue(has_capability(CORE_ADMIN, 1 << bit))

    def test_high_bits_need_exact_match(self):
        high = 1 << 200
        self.assertTrue(has_capability(high | CORE_VIEW, high))
        self.assertFalse(has_capability(CORE_VIEW, high))
        self.assertFalse(has_capability(1 << 201, high))

    def test_empty_requirement_always_satisfied(self):
        self.assertTrue(has_capability(0, 0))
        self.assertTrue(has_capability(DOC_SIGN, 0))

    def test_bits_beyond_width_are_ignored(self):
        self.assertTrue(has_capability(0, 1 << CAPABILITY_WIDTH))
        self.assertFalse(has_capability(1 << (CAPABILITY_WIDTH + 7), DOC_SIGN))


class TestComposition(unittest.TestCase):

    def test_compose_is_or_fold(self):
        self.assertEqual(compose([CORE_VIEW, CORE_CLAIM, DOC_SIGN]), CORE_VIEW | CORE_CLAIM | DOC_SIGN)
        self.assertEqual(compose([]), 0)

    def test_add_and_remove(self):
        mask = add(CORE_VIEW, DOC_SIGN)
        self.assertTrue(has_capability(mask, DOC_SIGN))
        mask = remove(mask, DOC_SIGN)
        self.assertFalse(has_capability(mask, DOC_SIGN))
        self.assertEqual(mask, CORE_VIEW)

    def test_remove_absent_bit_is_noop(self):
        self.assertEqual(remove(CORE_VIEW, FIN_WITHDRAW), CORE_VIEW)

    def test_results_stay_within_width(self):
        self.assertEqual(add(0, 1 << CAPABILITY_WIDTH), 0)
        self.assertEqual(remove(CAPABILITY_MASK, 0), CAPABILITY_MASK)


class TestNames(unittest.TestCase):

    def test_published_bits_are_distinct_single_bits(self):
        bits = list(CAPABILITIES.values())
        self.assertEqual(len(bits), len(set(bits)))
        for bit in bits:
            self.assertEqual(bin(bit).count("1"), 1)

    def test_names_of_mask(self):
        self.assertEqual(capability_names(CORE_VIEW | DOC_SIGN), ["CORE_VIEW", "DOC_SIGN"])
        self.assertEqual(capability_names(0), [])

    def test_from_names(self):
        self.assertEqual(from_names(["core_view", "RENTAL_EXTEND"]), CORE_VIEW | RENTAL_EXTEND)

    def test_from_names_rejects_unknown(self):
        with self.assertRaises(ValueError):
            from_names(["CORE_VIEW", "CORE_TELEPORT"])


if __name__ == "__main__":
    unittest.main()
