import pytest

from tabrelay.cli import build_parser, coerce, parse_params


class TestCli:
    @pytest.mark.parametrize(
        "raw, expected",
        [("42", 42), ("true", True), ("false", False), ("-3", "-3"), ("1.5", "1.5"), ("https://x", "https://x")],
    )
    def test_coerce(self, raw, expected):
        assert coerce(raw) == expected

    def test_parse_params(self):
        params = parse_params(["--url", "https://example.com", "--limit", "20", "--clear", "true", "--dangling"])
        assert params == {"url": "https://example.com", "limit": 20, "clear": True}

    def test_parser_keeps_remainder(self):
        args = build_parser().parse_args(["type", "--selector", "input", "--text", "hello"])
        assert args.command == "type"
        assert parse_params(args.params) == {"selector": "input", "text": "hello"}
