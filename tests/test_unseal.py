"""Tests for the unseal executor and key-file loading."""

from __future__ import annotations

import pytest

from autounseal.errors import UnsealError
from autounseal.unseal import UnsealExecutor, load_local_keys

from conftest import FakeVault


@pytest.fixture
def executor(clients):
    return UnsealExecutor(clients)


def _sealed(keys=("a", "b", "c", "d", "e")) -> FakeVault:
    return FakeVault("vault-0", initialized=True, sealed=True, keys=list(keys), threshold=3)


class TestUnsealExecutor:

    def test_applies_keys_in_order(self, fleet, executor):
        vault = _sealed()
        addr = fleet.add("10.0.0.1", vault)

        outcome = executor.unseal(addr, ["a", "b", "c"])

        assert vault.unseal_calls == ["a", "b", "c"]
        assert outcome.applied == 3
        assert outcome.sealed is False

    def test_transport_failure_stops_the_sequence(self, fleet, executor):
        vault = _sealed()
        vault.unseal_failures.add("b")
        addr = fleet.add("10.0.0.1", vault)

        with pytest.raises(UnsealError) as exc_info:
            executor.unseal(addr, ["a", "b", "c"])

        assert vault.unseal_calls == ["a", "b"]
        assert exc_info.value.key_index == 2
        assert exc_info.value.applied == 1
        assert vault.sealed is True

    def test_rejected_key_stops_the_sequence(self, fleet, executor):
        vault = _sealed()
        addr = fleet.add("10.0.0.1", vault)

        with pytest.raises(UnsealError):
            executor.unseal(addr, ["a", "wrong", "c"])

        assert vault.unseal_calls == ["a", "wrong"]

    def test_already_unsealed_is_a_no_op(self, fleet, executor):
        vault = FakeVault("vault-0", initialized=True, sealed=False, keys=["a", "b", "c"])
        addr = fleet.add("10.0.0.1", vault)

        outcome = executor.unseal(addr, ["x", "y", "z"])

        assert vault.unseal_calls == []
        assert outcome.already_unsealed is True
        assert outcome.sealed is False
        assert outcome.applied == 0

    def test_threshold_flips_seal_state(self, fleet, executor, clients):
        vault = _sealed()
        addr = fleet.add("10.0.0.1", vault)

        executor.unseal(addr, ["a", "b", "c"])

        assert clients(addr).health().sealed is False

    def test_fewer_than_threshold_stays_sealed(self, fleet, executor, clients):
        vault = _sealed()
        addr = fleet.add("10.0.0.1", vault)

        outcome = executor.unseal(addr, ["a", "b"])

        assert outcome.sealed is True
        assert outcome.applied == 2
        assert clients(addr).health().sealed is True

    def test_stops_once_unsealed(self, fleet, executor):
        vault = _sealed()
        addr = fleet.add("10.0.0.1", vault)

        outcome = executor.unseal(addr, ["a", "b", "c", "d", "e"], source="secret")

        assert vault.unseal_calls == ["a", "b", "c"]
        assert outcome.applied == 3
        assert outcome.source == "secret"

    def test_resumes_partial_progress(self, fleet, executor):
        vault = _sealed()
        vault.accepted = ["a"]
        addr = fleet.add("10.0.0.1", vault)

        outcome = executor.unseal(addr, ["a", "b", "c"])

        assert outcome.sealed is False

    def test_unreachable_instance(self, fleet, executor):
        vault = _sealed()
        vault.unreachable = True
        addr = fleet.add("10.0.0.1", vault)

        with pytest.raises(UnsealError) as exc_info:
            executor.unseal(addr, ["a", "b", "c"])
        assert exc_info.value.key_index == 0


class TestLoadLocalKeys:

    def test_reads_three_files(self, tmp_path):
        for i, key in enumerate(["a", "b", "c"], start=1):
            (tmp_path / f"key{i}").write_text(f"{key}\n")
        (tmp_path / "key4").write_text("d")

        assert load_local_keys(tmp_path) == ["a", "b", "c"]

    def test_missing_file(self, tmp_path):
        (tmp_path / "key1").write_text("a")
        (tmp_path / "key3").write_text("c")
        with pytest.raises(UnsealError, match="key 2"):
            load_local_keys(tmp_path)

    def test_empty_file(self, tmp_path):
        for i in (1, 2, 3):
            (tmp_path / f"key{i}").write_text("  \n" if i == 2 else "k")
        with pytest.raises(UnsealError, match="empty"):
            load_local_keys(tmp_path)

    def test_file_not_utf8(self, tmp_path):
        (tmp_path / "key1").write_bytes(b"\xff\xfe")
        with pytest.raises(UnsealError, match="key 1"):
            load_local_keys(tmp_path)

    def test_custom_count(self, tmp_path):
        for i in range(1, 6):
            (tmp_path / f"key{i}").write_text(f"k{i}")
        assert load_local_keys(tmp_path, count=5) == ["k1", "k2", "k3", "k4", "k5"]
