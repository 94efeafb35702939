from __future__ import annotations

import json
import math

import pytest

from trix.common.cipher import CipherMaterial, CryptoError, Envelope
from trix.state.models import SAVE_FAILED, TYPE_MISMATCH, UNSUPPORTED_OPERATOR
from trix.state.store import NOT_SERIALIZABLE, Store


KEY = bytes(range(32))
IV = bytes(range(16))


def _material(key: bytes = KEY, iv: bytes = IV) -> CipherMaterial:
    return CipherMaterial(key=key, iv=iv)


@pytest.fixture
def store(tmp_path):
    return Store(tmp_path / "t.json", encrypt=True, material=_material())


@pytest.fixture
def plain(tmp_path):
    return Store(tmp_path / "plain.json", encrypt=False)


class _SaveCounter:
    def __init__(self, store: Store) -> None:
        self.calls = 0
        self._save = store.save

    def __call__(self) -> bool:
        self.calls += 1
        return self._save()


def test_missing_file_is_initialised_empty(tmp_path):
    path = tmp_path / "fresh.json"
    s = Store(path, encrypt=False)
    assert s.document() == {}
    assert json.loads(path.read_text(encoding="utf-8")) == {}


def test_plain_file_is_pretty_json(plain):
    plain.set("a", 1)
    assert plain.path.read_text(encoding="utf-8") == json.dumps({"a": 1}, indent=2)


def test_encrypted_file_is_envelope(store):
    store.set("secret", "value")
    raw = json.loads(store.path.read_text(encoding="utf-8"))
    assert set(raw) == {"iv", "encryptedData"}
    assert raw["iv"] == IV.hex()
    assert "secret" not in store.path.read_text(encoding="utf-8")


def test_set_get_has_delete(store):
    assert store.set("name", "trix").ok
    assert store.get("name") == "trix"
    assert store.has("name")
    assert "name" in store

    assert store.delete("name").ok
    assert not store.has("name")
    assert store.get("name") is None
    assert store.get("name", "fallback") == "fallback"


def test_delete_missing_key_is_noop(store):
    result = store.delete("nope")
    assert result.applied and result.persisted
    assert store.document() == {}


def test_set_detaches_and_normalizes_value(store):
    value = {"items": (1, 2)}
    store.set("k", value)
    value["items"] = "changed"
    assert store.get("k") == {"items": [1, 2]}


def test_set_rejects_unserializable_value(store):
    result = store.set("k", object())
    assert not result.applied
    assert result.reason == NOT_SERIALIZABLE
    assert not store.has("k")


def test_add_and_subtract(store):
    store.set("n", 10)
    assert store.add("n", 5).ok
    assert store.subtract("n", 3).ok
    assert store.get("n") == 12


def test_add_on_string_is_skipped_without_write(store):
    store.set("k", "x")
    counter = _SaveCounter(store)
    store.save = counter

    result = store.add("k", 5)
    assert not result.applied
    assert result.reason == TYPE_MISMATCH
    assert counter.calls == 0
    assert store.get("k") == "x"


def test_add_on_bool_or_missing_is_skipped(store):
    store.set("flag", True)
    assert store.add("flag", 1).reason == TYPE_MISMATCH
    assert store.add("missing", 1).reason == TYPE_MISMATCH
    assert store.get("flag") is True
    assert not store.has("missing")


def test_add_with_non_numeric_operand_is_skipped(store):
    store.set("n", 1)
    assert store.add("n", "2").reason == TYPE_MISMATCH
    assert store.get("n") == 1


@pytest.mark.parametrize(
    "op, n, expected",
    [("+", 4, 14), ("-", 4, 6), ("*", 4, 40), ("/", 4, 2.5)],
)
def test_math_operators(store, op, n, expected):
    store.set("n", 10)
    assert store.math("n", op, n).ok
    assert store.get("n") == expected


def test_math_division_by_zero_follows_float_semantics(store):
    store.set("pos", 3)
    store.set("neg", -3)
    store.set("zero", 0)
    store.math("pos", "/", 0)
    store.math("neg", "/", 0)
    store.math("zero", "/", 0)
    assert store.get("pos") == math.inf
    assert store.get("neg") == -math.inf
    assert math.isnan(store.get("zero"))


def _strict_loads(text: str):
    def _reject(name):
        raise ValueError(f"non-standard JSON constant {name}")

    return json.loads(text, parse_constant=_reject)


def test_non_finite_numbers_are_written_as_null(plain, tmp_path):
    plain.set("n", 1)
    plain.math("n", "/", 0)
    plain.set("nested", {"xs": [float("-inf"), float("nan")]})

    on_disk = _strict_loads(plain.path.read_text(encoding="utf-8"))
    assert on_disk == {"n": None, "nested": {"xs": [None, None]}}
    # In memory the IEEE value is kept until the next reload
    assert plain.get("n") == math.inf

    reopened = Store(tmp_path / "plain.json", encrypt=False)
    assert reopened.get("n") is None


def test_non_finite_numbers_are_null_inside_encrypted_file(store):
    store.set("n", -1)
    store.math("n", "/", 0)
    plaintext = store.cipher.decrypt(
        Envelope.from_json(store.path.read_text(encoding="utf-8"))
    ).decode("utf-8")
    assert _strict_loads(plaintext) == {"n": None}


def test_math_unknown_operator_is_skipped(store):
    store.set("n", 2)
    counter = _SaveCounter(store)
    store.save = counter
    result = store.math("n", "%", 2)
    assert result.reason == UNSUPPORTED_OPERATOR
    assert counter.calls == 0
    assert store.get("n") == 2


def test_push_coerces_non_list(store):
    store.set("k", "not an array")
    assert store.push("k", 1).ok
    assert store.get("k") == [1]


def test_push_appends(store):
    store.push("k", 1)
    store.push("k", {"two": 2})
    assert store.get("k") == [1, {"two": 2}]


def test_push_array_and_remove_from_array(store):
    store.push_array("list", [1, 2, 3])
    assert store.remove_from_array("list", [2]).ok
    assert store.get("list") == [1, 3]


def test_remove_from_array_removes_every_match(store):
    store.push_array("list", ["a", "b", "a", "c"])
    store.remove_from_array("list", ["a", "c", "zzz"])
    assert store.get("list") == ["b"]


def test_remove_from_array_keeps_bools_and_numbers_apart(store):
    store.push_array("l", [1, True, 0, False, 1.0])
    store.remove_from_array("l", [True])
    assert store.get("l") == [1, 0, False, 1.0]
    assert [type(x) for x in store.get("l")] == [int, int, bool, float]

    store.remove_from_array("l", [0])
    assert store.get("l") == [1, False, 1.0]
    assert store.get("l")[1] is False

    # int and float compare by value
    store.remove_from_array("l", [1.0])
    assert store.get("l") == [False]


def test_remove_from_array_matches_nested_values_strictly(store):
    store.push_array("l", [[1, 2], [True, 2], {"a": 1}, {"a": True}])
    store.remove_from_array("l", [[1, 2], {"a": True}])
    assert store.get("l") == [[True, 2], {"a": 1}]


def test_remove_from_array_on_non_list_is_skipped(store):
    store.set("k", 5)
    assert store.remove_from_array("k", [5]).reason == TYPE_MISMATCH
    assert store.get("k") == 5


def test_reset_is_idempotent(store):
    store.set("a", 1)
    store.set("b", [1])
    for _ in range(2):
        assert store.reset().ok
        assert store.document() == {}
        assert not store.has("a")
        assert not store.has("b")


def test_reload_with_same_material(store, tmp_path):
    store.set("count", 1)
    store.math("count", "+", 4)

    again = Store(tmp_path / "t.json", encrypt=True, material=_material())
    assert again.get("count") == 5


def test_wrong_key_load_keeps_memory_and_reports(store, tmp_path):
    store.set("a", 1)

    other = Store(tmp_path / "t.json", encrypt=True, material=_material(key=bytes(32)))
    assert other.document() == {}
    assert other.last_error is not None

    # A failed reload keeps what is already in memory
    other.set("mine", True)
    store.set("a", 2)
    assert other.load() is False
    assert other.get("mine") is True


def test_corrupt_plain_file_load_fails_without_raising(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text("{not json", encoding="utf-8")
    s = Store(path, encrypt=False)
    assert s.document() == {}
    assert isinstance(s.last_error, ValueError)


def test_non_object_root_is_rejected(tmp_path):
    path = tmp_path / "list.json"
    path.write_text("[1, 2]", encoding="utf-8")
    s = Store(path, encrypt=False)
    assert s.load() is False
    assert s.document() == {}


def test_encrypted_mode_on_plain_file_reports_missing_iv(tmp_path):
    path = tmp_path / "plain.json"
    path.write_text(json.dumps({"a": 1}), encoding="utf-8")
    s = Store(path, encrypt=True, material=_material())
    assert isinstance(s.last_error, CryptoError)
    assert s.document() == {}


def test_toggle_encryption_reloads_without_converting(tmp_path):
    path = tmp_path / "t.json"
    s = Store(path, encrypt=False, material=_material())
    s.set("a", 1)

    # File is plain JSON, so the encrypted reload fails and memory is kept
    assert s.enable_encryption() is False
    assert s.encrypted
    assert s.get("a") == 1

    # Rewrite under encryption; flipping back reads the envelope itself as the document
    s.save()
    assert s.disable_encryption() is True
    assert set(s.document()) == {"iv", "encryptedData"}
    assert not s.has("a")


def test_rotate_key_requires_resave(store, tmp_path):
    store.set("a", 1)
    new_key = bytes(reversed(range(32)))
    new_iv = bytes(16)

    assert store.rotate_key(new_key, new_iv) is False
    assert store.get("a") == 1

    assert store.save()
    fresh = Store(tmp_path / "t.json", encrypt=True, material=_material(new_key, new_iv))
    assert fresh.get("a") == 1

    stale = Store(tmp_path / "t.json", encrypt=True, material=_material())
    assert stale.document() == {}


def test_rotate_key_rejects_bad_length(store):
    with pytest.raises(CryptoError):
        store.rotate_key(b"short")


def test_save_failure_is_reported(tmp_path):
    target = tmp_path / "dir_in_the_way"
    target.mkdir()
    s = Store(target, encrypt=False, autoload=False)
    result = s.set("a", 1)
    assert result.applied
    assert not result.persisted
    assert result.reason == SAVE_FAILED
    assert not result


def test_journal_receives_errors(tmp_path):
    lines = []

    class _Journal:
        def log(self, message: str, channel: str = "default") -> None:
            lines.append(message)

    path = tmp_path / "bad.json"
    path.write_text("garbage", encoding="utf-8")
    Store(path, encrypt=False, journal=_Journal())
    assert any("Error loading data" in line for line in lines)
