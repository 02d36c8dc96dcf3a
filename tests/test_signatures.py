# tests/test_signatures.py
"""
Tests for callee path normalisation and the S-expression signature
configuration.
"""

import pytest

from mirdata_shims.errors import SignatureConfigError
from mirdata_shims.signatures import (
    BALANCE_READ,
    CLOCK_SOURCE,
    RANDOMNESS_SOURCE,
    TABLE_NAMES,
    VALUE_TRANSFER,
    SignatureTables,
    default_signatures,
    load_signatures,
    normalize_path,
    parse_signatures,
)
from tests.builders import BORROW_LAMPORTS, CLOCK_GET, F64_ROUND, GET_MUT, RAND_RANDOM


class TestNormalizePath:
    """Test callee path normalisation."""

    @pytest.mark.parametrize("raw,expected", [
        ("rand::random", "rand::random"),
        ("std::collections::HashMap::<K, V, S>::get_mut",
         "std::collections::HashMap::get_mut"),
        ("std::collections::HashMap::<Pubkey, Vec<u8>>::get_mut",
         "std::collections::HashMap::get_mut"),
        ("AccountInfo::<'a>::try_borrow_mut_lamports",
         "AccountInfo::try_borrow_mut_lamports"),
        ("HashMap<K, V>::get", "HashMap::get"),
        ("std::f64::<impl f64>::round", "std::f64::<impl f64>::round"),
        ("  rand::random  ", "rand::random"),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_path(raw) == expected


class TestDefaults:
    """Test the built-in Solana signature tables."""

    def test_every_table_present(self):
        tables = default_signatures()
        for name in TABLE_NAMES:
            assert len(tables.table(name)) >= 1

    @pytest.mark.parametrize("table,callee", [
        (BALANCE_READ, GET_MUT),
        (VALUE_TRANSFER, BORROW_LAMPORTS),
        (CLOCK_SOURCE, CLOCK_GET),
        (RANDOMNESS_SOURCE, RAND_RANDOM),
        ("rounding-function", F64_ROUND),
    ])
    def test_default_matches(self, table, callee):
        assert default_signatures().matches(table, callee)

    def test_clock_is_not_randomness(self):
        tables = default_signatures()
        assert not tables.randomness_source.matches(CLOCK_GET)
        assert not tables.clock_source.matches(RAND_RANDOM)

    def test_default_is_cached(self):
        assert default_signatures() is SignatureTables.default()


class TestParseSignatures:
    """Test the S-expression signature format."""

    def test_replaces_defaults(self):
        tables = parse_signatures(
            '(signatures (value-transfer "vault::pay_out" "vault::refund"))'
        )
        assert tables.value_transfer.matches("vault::pay_out")
        assert tables.value_transfer.matches("vault::refund")
        assert not tables.value_transfer.matches(BORROW_LAMPORTS)
        assert len(tables.balance_read) == 0

    def test_extends_defaults(self):
        tables = parse_signatures(
            '(signatures (extends default) (value-transfer "vault::pay_out"))'
        )
        assert tables.value_transfer.matches("vault::pay_out")
        assert tables.value_transfer.matches(BORROW_LAMPORTS)
        assert tables.balance_read.matches(GET_MUT)

    def test_repeated_clauses_accumulate(self):
        tables = parse_signatures(
            '(signatures (balance-read "a::get") (balance-read "b::get"))'
        )
        assert list(tables.balance_read) == ["a::get", "b::get"]

    @pytest.mark.parametrize("text", [
        '(signatures (balance-read "a::get")) ; trailing comment',
        '; leading comment\n(signatures (balance-read "a::get"))',
        '(signatures\n  ; the vault map\n  (balance-read "a::get"))',
    ])
    def test_comments(self, text):
        assert parse_signatures(text).balance_read.matches("a::get")

    def test_symbol_entry_rejected(self):
        with pytest.raises(SignatureConfigError, match="quoted strings"):
            parse_signatures("(signatures (balance-read foo::bar))")

    @pytest.mark.parametrize("text", [
        '(signatures (balance-read "a::get")',
        '(balance-read "a::get")',
        '(signatures) (signatures)',
        '(signatures (no-such-table "x"))',
        '(signatures (balance-read 42))',
        '(signatures (balance-read ""))',
        '(signatures (value-transfer "x") (extends default))',
        '(signatures (extends everything))',
        '(signatures value-transfer)',
        '(signatures (balance-read foo::bar))',
    ])
    def test_malformed(self, text):
        with pytest.raises(SignatureConfigError):
            parse_signatures(text)

    def test_error_names_source(self):
        with pytest.raises(SignatureConfigError, match="custom.sexp"):
            parse_signatures("(signatures (bogus))", source="custom.sexp")


class TestLoadSignatures:
    """Test reading signature files."""

    def test_load_file(self, tmp_path):
        path = tmp_path / "sigs.sexp"
        path.write_text('(signatures (clock-source "my::clock::now"))', encoding="utf-8")
        tables = load_signatures(path)
        assert tables.clock_source.matches("my::clock::now")

    def test_missing_file(self, tmp_path):
        with pytest.raises(SignatureConfigError):
            load_signatures(tmp_path / "absent.sexp")


class TestSignatureTables:
    """Test table lookup and merging."""

    def test_unknown_table_name(self):
        with pytest.raises(SignatureConfigError):
            SignatureTables({"balance": ["x"]})
        with pytest.raises(SignatureConfigError):
            SignatureTables().table("balance")

    def test_contains_and_merge(self):
        a = SignatureTables({VALUE_TRANSFER: ["a::pay"]})
        b = SignatureTables({VALUE_TRANSFER: ["b::pay"]})
        merged = a.merged(b)
        assert "a::pay" in merged.value_transfer
        assert "b::pay" in merged.value_transfer
        assert 42 not in merged.value_transfer
        assert merged.as_dict()[VALUE_TRANSFER] == ["a::pay", "b::pay"]
