from decimal import Decimal

from pharmacy_checker.change_detector import ChangeDetector, compute_hash
from pharmacy_checker.engines.base import ScanStatus


class TestComputeHash:
    def test_key_order_does_not_matter(self):
        a = compute_hash(ScanStatus.OK, Decimal("3.99"), {"name": "Ibalgin", "raw": {"x": "1", "y": "2"}})
        b = compute_hash(ScanStatus.OK, Decimal("3.99"), {"raw": {"y": "2", "x": "1"}, "name": "Ibalgin"})
        assert a == b

    def test_status_string_and_enum_agree(self):
        assert compute_hash("ok", None, None) == compute_hash(ScanStatus.OK, None, None)

    def test_equal_prices_hash_equal(self):
        assert compute_hash("ok", Decimal("12.5"), {}) == compute_hash("ok", Decimal("12.50"), {})

    def test_price_change_changes_digest(self):
        assert compute_hash("ok", Decimal("3.99"), {}) != compute_hash("ok", Decimal("4.19"), {})

    def test_status_change_changes_digest(self):
        assert compute_hash("ok", None, {}) != compute_hash("not_found", None, {})

    def test_missing_price_differs_from_zero(self):
        assert compute_hash("ok", None, {}) != compute_hash("ok", Decimal("0"), {})


class TestIsChangedAndUpdate:
    def test_starts_empty(self):
        assert len(ChangeDetector()) == 0

    def test_same_digest_twice(self):
        detector = ChangeDetector()
        assert detector.is_changed_and_update("site:p", "d1") is True
        assert detector.is_changed_and_update("site:p", "d1") is False

    def test_different_digests(self):
        detector = ChangeDetector()
        assert detector.is_changed_and_update("site:p", "d1") is True
        assert detector.is_changed_and_update("site:p", "d2") is True
        assert detector.get("site:p").digest == "d2"

    def test_keys_do_not_interfere(self):
        detector = ChangeDetector()
        assert detector.is_changed_and_update("a", "d") is True
        assert detector.is_changed_and_update("b", "d") is True
        assert detector.is_changed_and_update("a", "d") is False
        assert detector.is_changed_and_update("b", "other") is True
        assert detector.get("a").digest == "d"

    def test_unchanged_leaves_record_untouched(self):
        detector = ChangeDetector()
        detector.is_changed_and_update("k", "d")
        before = detector.get("k")
        detector.is_changed_and_update("k", "d")
        assert detector.get("k") is before


class TestSnapshots:
    def test_save_and_load(self, tmp_path):
        path = tmp_path / "state" / "last_hashes.json"
        first = ChangeDetector()
        first.is_changed_and_update("a", "d1")
        first.is_changed_and_update("b", "d2")
        first.save(path)

        second = ChangeDetector()
        assert second.load(path) == 2
        assert second.is_changed_and_update("a", "d1") is False
        assert second.is_changed_and_update("b", "changed") is True

    def test_missing_snapshot_starts_empty(self, tmp_path):
        detector = ChangeDetector()
        assert detector.load(tmp_path / "nope.json") == 0
        assert len(detector) == 0

    def test_corrupt_snapshot_is_ignored(self, tmp_path):
        path = tmp_path / "last_hashes.json"
        path.write_text("{not json", encoding="utf-8")
        detector = ChangeDetector()
        assert detector.load(path) == 0
        assert detector.is_changed_and_update("a", "d") is True
