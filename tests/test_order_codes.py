import random
import re
import unittest

from luckydraw.draw.order_codes import (
    allocate_order_code,
    generate_order_code,
    timestamp_order_code,
)

CODE_PATTERN = re.compile(r"^[0-9]{7}$")


class OrderCodeTests(unittest.TestCase):
    def test_generated_codes_are_seven_digits(self):
        rng = random.Random(7)
        for _ in range(500):
            self.assertRegex(generate_order_code(rng), CODE_PATTERN)

    def test_small_values_are_zero_padded(self):
        rng = random.Random()
        rng.randrange = lambda n: 42
        self.assertEqual(generate_order_code(rng), "0000042")

    def test_allocation_skips_taken_codes(self):
        rng = random.Random(99)
        taken = {generate_order_code(random.Random(99))}

        code = allocate_order_code(lambda c: c in taken, rng=rng)

        self.assertNotIn(code, taken)
        self.assertRegex(code, CODE_PATTERN)

    def test_falls_back_to_timestamp_after_max_attempts(self):
        calls = []

        def always_taken(code):
            calls.append(code)
            return True

        code = allocate_order_code(always_taken, max_attempts=3, clock=lambda: 1700000123.4567)

        self.assertEqual(len(calls), 3)
        self.assertEqual(code, "0123456")

    def test_timestamp_code_shape(self):
        self.assertRegex(timestamp_order_code(), CODE_PATTERN)
        self.assertEqual(timestamp_order_code(lambda: 0.001), "0000001")


if __name__ == "__main__":
    unittest.main()
