import unittest

from quotewatch.errors import InvalidSymbolError
from quotewatch.services.symbols import is_valid_symbol, normalize_symbol
from quotewatch.services.watchlist import Watchlist


class SymbolValidationTest(unittest.TestCase):
    def test_valid_symbols(self):
        for symbol in ("AAPL", "msft", " tsla ", "BRK.B", "A", "X1"):
            self.assertTrue(is_valid_symbol(symbol), symbol)

    def test_invalid_symbols(self):
        for symbol in (None, "", "   ", "TOOLONG", "AA-PL", "AB CD", "$SPY"):
            self.assertFalse(is_valid_symbol(symbol), symbol)

    def test_normalize_upper_cases_and_strips(self):
        self.assertEqual(normalize_symbol(" brk.b "), "BRK.B")

    def test_normalize_rejects_invalid(self):
        with self.assertRaises(InvalidSymbolError):
            normalize_symbol("AA-PL")


class WatchlistTest(unittest.TestCase):
    def test_initial_symbols_are_normalized(self):
        watchlist = Watchlist(["msft", "aapl", "MSFT"])

        self.assertEqual(watchlist.snapshot(), ["AAPL", "MSFT"])
        self.assertEqual(len(watchlist), 2)

    def test_add_reports_whether_symbol_was_new(self):
        watchlist = Watchlist()

        self.assertTrue(watchlist.add("tsla"))
        self.assertFalse(watchlist.add("TSLA"))
        self.assertTrue(watchlist.contains("tsla"))

    def test_add_invalid_symbol_raises(self):
        with self.assertRaises(InvalidSymbolError):
            Watchlist().add("not a symbol")

    def test_remove_notifies_listeners_only_when_present(self):
        removed: list[str] = []
        watchlist = Watchlist(["AAPL"])
        watchlist.add_remove_listener(removed.append)

        self.assertTrue(watchlist.remove("aapl"))
        self.assertFalse(watchlist.remove("AAPL"))

        self.assertEqual(removed, ["AAPL"])
        self.assertEqual(watchlist.snapshot(), [])

    def test_snapshot_is_a_copy(self):
        watchlist = Watchlist(["AAPL"])
        snapshot = watchlist.snapshot()
        watchlist.add("MSFT")

        self.assertEqual(snapshot, ["AAPL"])


if __name__ == "__main__":
    unittest.main()
