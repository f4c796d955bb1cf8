"""Tests for secrets file parsing and resolution."""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest

from rollout.core.errors import MissingSecretError, SecretsFormatError
from rollout.core.secrets import (
    DictSecretBackend,
    EnvSecretBackend,
    SecretsFileBackend,
    SecretsResolver,
    SecretValue,
    load_secrets_file,
    parse_secrets,
    render_secrets_template,
)


class TestSecretValue:
    def test_redacted(self):
        secret = SecretValue("hunter2")
        assert str(secret) == "[REDACTED]"
        assert "hunter2" not in repr(secret)
        assert f"{secret}" == "[REDACTED]"

    def test_get_secret(self):
        assert SecretValue("hunter2").get_secret() == "hunter2"

    def test_equality(self):
        assert SecretValue("a") == SecretValue("a")
        assert SecretValue("a") != SecretValue("b")
        assert SecretValue("a") != "a"

    def test_bool_and_len(self):
        assert not SecretValue("")
        assert len(SecretValue("abc")) == 3


class TestParseSecrets:
    def test_basic_pairs(self):
        text = "A=1\nB=two words\n"
        assert parse_secrets(text) == {"A": "1", "B": "two words"}

    def test_comments_and_blank_lines(self):
        text = "# header\n\n   \nA=1\n  # indented comment\n"
        assert parse_secrets(text) == {"A": "1"}

    def test_split_on_first_equals(self):
        assert parse_secrets("URL=postgres://h/db?sslmode=require") == {
            "URL": "postgres://h/db?sslmode=require"
        }

    def test_empty_value(self):
        assert parse_secrets("A=") == {"A": ""}

    def test_quotes_stripped(self):
        text = "A=\"double\"\nB='single'\nC=\"unbalanced'\n"
        assert parse_secrets(text) == {"A": "double", "B": "single", "C": "\"unbalanced'"}

    def test_export_prefix(self):
        assert parse_secrets("export TOKEN=abc") == {"TOKEN": "abc"}

    def test_expansion_from_earlier_keys(self):
        text = "PW=s3cr3t\nURL=postgres://app:${PW}@db/app\nALT=$PW-x\n"
        values = parse_secrets(text)
        assert values["URL"] == "postgres://app:s3cr3t@db/app"
        assert values["ALT"] == "s3cr3t-x"

    def test_expansion_from_environment(self):
        with patch.dict(os.environ, {"HOST_FROM_ENV": "db.internal"}):
            assert parse_secrets("URL=pg://${HOST_FROM_ENV}")["URL"] == "pg://db.internal"

    def test_unknown_variable_left_as_is(self):
        with patch.dict(os.environ, {}, clear=True):
            assert parse_secrets("A=${NOPE}")["A"] == "${NOPE}"

    def test_single_quotes_disable_expansion(self):
        text = "PW=x\nLITERAL='${PW}'\n"
        assert parse_secrets(text)["LITERAL"] == "${PW}"

    def test_duplicate_key_last_wins(self):
        assert parse_secrets("A=1\nA=2\n") == {"A": "2"}

    def test_missing_equals_reports_line(self):
        with pytest.raises(SecretsFormatError) as exc_info:
            parse_secrets("A=1\n# fine\nnot a pair\n", source="secrets")
        assert exc_info.value.line_no == 3
        assert str(exc_info.value).startswith("secrets:3:")

    @pytest.mark.parametrize("line", ["1ABC=x", "MY-KEY=x", "=x"])
    def test_invalid_key(self, line):
        with pytest.raises(SecretsFormatError, match="invalid key"):
            parse_secrets(line)


class TestLoadSecretsFile:
    def test_missing_file_is_empty(self, tmp_path):
        assert load_secrets_file(tmp_path / "absent") == {}

    def test_reads_file(self, tmp_path):
        path = tmp_path / "secrets"
        path.write_text("A=1\n", encoding="utf-8")
        assert load_secrets_file(path) == {"A": "1"}

    def test_error_names_path(self, tmp_path):
        path = tmp_path / "secrets"
        path.write_text("garbage\n", encoding="utf-8")
        with pytest.raises(SecretsFormatError, match=str(path)):
            load_secrets_file(path)


class TestBackends:
    def test_file_backend_cached_until_reload(self, tmp_path):
        path = tmp_path / "secrets"
        path.write_text("A=1\n", encoding="utf-8")
        backend = SecretsFileBackend(path)
        assert backend.get("A") == "1"

        path.write_text("A=2\n", encoding="utf-8")
        assert backend.get("A") == "1"
        backend.reload()
        assert backend.get("A") == "2"

    def test_env_backend_prefixed_fallback(self):
        with patch.dict(os.environ, {"ROLLOUT_SECRET_API_KEY": "k"}, clear=True):
            backend = EnvSecretBackend()
            assert backend.get("API_KEY") == "k"
            assert backend.get("OTHER") is None

    def test_env_backend_plain_name_first(self):
        with patch.dict(
            os.environ, {"API_KEY": "plain", "ROLLOUT_SECRET_API_KEY": "prefixed"}, clear=True
        ):
            assert EnvSecretBackend().get("API_KEY") == "plain"

    def test_dict_backend(self):
        backend = DictSecretBackend({"A": "1"})
        backend.set("B", "2")
        assert backend.contains("B")
        assert not backend.contains("C")


class TestSecretsResolver:
    def test_backends_tried_in_order(self):
        resolver = SecretsResolver(
            [DictSecretBackend({"A": "first"}), DictSecretBackend({"A": "second", "B": "b"})]
        )
        assert resolver.get("A").get_secret() == "first"
        assert resolver.get("B").get_secret() == "b"
        assert resolver.get("C") is None

    def test_from_file_prefers_file_over_env(self, tmp_path):
        path = tmp_path / "secrets"
        path.write_text("TOKEN=from-file\n", encoding="utf-8")
        with patch.dict(os.environ, {"TOKEN": "from-env", "ONLY_ENV": "e"}):
            resolver = SecretsResolver.from_file(path)
            assert resolver.backend_names == ["file", "env"]
            assert resolver.get("TOKEN").get_secret() == "from-file"
            assert resolver.get("ONLY_ENV").get_secret() == "e"

    def test_from_file_without_env(self, tmp_path):
        resolver = SecretsResolver.from_file(tmp_path / "secrets", use_env=False)
        assert resolver.backend_names == ["file"]

    def test_missing_deduplicated_in_order(self):
        resolver = SecretsResolver([DictSecretBackend({"B": "b"})])
        assert resolver.missing(["C", "A", "B", "C"]) == ["C", "A"]

    def test_resolve_many(self):
        resolver = SecretsResolver([DictSecretBackend({"A": "1", "B": "2"})])
        resolved = resolver.resolve_many(["A", "B"])
        assert {k: v.get_secret() for k, v in resolved.items()} == {"A": "1", "B": "2"}

    def test_resolve_many_reports_all_missing(self):
        resolver = SecretsResolver([DictSecretBackend({"A": "1"})])
        with pytest.raises(MissingSecretError) as exc_info:
            resolver.resolve_many(["A", "B", "C"])
        assert exc_info.value.names == ["B", "C"]
        assert exc_info.value.tried == ["dict"]


class TestRenderTemplate:
    def test_one_line_per_unique_name(self):
        assert render_secrets_template(["A", "B", "A"]) == "A=\nB=\n"

    def test_header_commented(self):
        text = render_secrets_template(["A"], header="Copy me\n\nthen fill in")
        assert text == "# Copy me\n#\n# then fill in\nA=\n"


class TestEmptyValues:
    def test_empty_value_counts_as_missing(self):
        resolver = SecretsResolver([DictSecretBackend({"A": "", "B": "b"})])
        assert resolver.get("A") is None
        assert resolver.missing(["A", "B"]) == ["A"]

    def test_empty_value_falls_through_to_next_backend(self):
        resolver = SecretsResolver(
            [DictSecretBackend({"TOKEN": ""}), DictSecretBackend({"TOKEN": "from-env"})]
        )
        assert resolver.get("TOKEN").get_secret() == "from-env"

    def test_unfilled_template_reports_every_name(self, tmp_path):
        path = tmp_path / "secrets"
        path.write_text(render_secrets_template(["A", "B"], header="fill me"), encoding="utf-8")
        resolver = SecretsResolver.from_file(path, use_env=False)
        with pytest.raises(MissingSecretError) as exc_info:
            resolver.resolve_many(["A", "B"])
        assert exc_info.value.names == ["A", "B"]
