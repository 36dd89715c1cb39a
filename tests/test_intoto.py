import json

import pytest

from attestkit import intoto


class NamedDigests:
    def __init__(self, mapping):
        self.mapping = mapping

    def to_name_map(self):
        return dict(self.mapping)


class BrokenDigests:
    def to_name_map(self):
        raise ValueError("unsupported hash")


def test_new_statement_fields():
    st = intoto.new_statement("example/predicate", b'{"a": 1}', {"file": {"sha256": "abc"}})
    assert st.type == intoto.STATEMENT_TYPE
    assert st.predicate_type == "example/predicate"
    assert st.predicate == b'{"a": 1}'
    assert st.subject == [intoto.Subject(name="file", digest={"sha256": "abc"})]


def test_new_statement_accepts_text_predicate():
    st = intoto.new_statement("p", '{"k": "v"}', {})
    assert st.predicate == b'{"k": "v"}'
    assert st.to_dict()["predicate"] == {"k": "v"}


def test_new_statement_without_subjects():
    st = intoto.new_statement("p", b"{}", {})
    assert st.subject == []
    assert st.to_dict()["subject"] == []


def test_new_statement_multiple_subjects():
    subjects = {"one": {"sha256": "11"}, "two": NamedDigests({"sha1": "22"})}
    st = intoto.new_statement("p", b"{}", subjects)
    assert {s.name for s in st.subject} == {"one", "two"}


def test_digest_set_to_subject_uses_name_map():
    subj = intoto.digest_set_to_subject("artifact", NamedDigests({"sha256": "deadbeef"}))
    assert subj == intoto.Subject(name="artifact", digest={"sha256": "deadbeef"})


def test_digest_set_error_propagates():
    with pytest.raises(ValueError, match="unsupported hash"):
        intoto.new_statement("p", b"{}", {"bad": BrokenDigests()})


def test_to_dict_key_order_matches_format():
    st = intoto.new_statement("p", b"{}", {"f": {"sha256": "x"}})
    assert list(st.to_dict()) == ["_type", "subject", "predicateType", "predicate"]


def test_to_json_round_trip():
    st = intoto.new_statement("p", b'{"z": [1, 2], "a": null}', {"f": {"sha256": "x"}})
    decoded = json.loads(st.to_json())
    assert decoded == st.to_dict()
    assert decoded["_type"] == intoto.STATEMENT_TYPE
    assert decoded["predicate"] == {"z": [1, 2], "a": None}


def test_to_json_is_compact():
    st = intoto.new_statement("p", b'{"a": 1}', {})
    assert b" " not in st.to_json()


def test_subject_digest_keys_sorted():
    st = intoto.new_statement("p", b"{}", {"f": {"sha256": "x", "gitoid:sha1": "y", "md5": "z"}})
    keys = list(st.to_dict()["subject"][0]["digest"])
    assert keys == sorted(keys)


def test_empty_predicate_serialises_as_null():
    st = intoto.new_statement("p", b"", {})
    assert st.to_dict()["predicate"] is None
    assert json.loads(st.to_json())["predicate"] is None


def test_invalid_predicate_raises():
    st = intoto.new_statement("p", b"{not json", {})
    with pytest.raises(ValueError):
        st.to_json()