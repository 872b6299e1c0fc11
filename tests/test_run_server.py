import pytest

from privchat.run_server import _parse_bind, build_parser


@pytest.mark.parametrize(
    "bind, expected",
    [
        ("ws://localhost:4000", ("localhost", 4000)),
        ("ws://localhost", ("localhost", 3001)),
        ("127.0.0.1:5000", ("127.0.0.1", 5000)),
        (":5001", ("0.0.0.0", 5001)),
        ("5002", ("0.0.0.0", 5002)),
    ],
)
def test_parse_bind(bind, expected):
    assert _parse_bind(bind, 3001) == expected


def test_parser_defaults_come_from_environment(monkeypatch):
    monkeypatch.setenv("HISTORY_LIMIT", "20")
    monkeypatch.setenv("MAX_RETAINED", "100")
    monkeypatch.setenv("HTTP_BIND", "off")
    args = build_parser().parse_args([])
    assert args.history_limit == 20
    assert args.max_retained == 100
    assert args.http == "off"


def test_cli_overrides_environment(monkeypatch):
    monkeypatch.setenv("BIND", "ws://0.0.0.0:9000")
    args = build_parser().parse_args(["--bind", "ws://127.0.0.1:9100", "--log-level", "debug"])
    assert args.bind == "ws://127.0.0.1:9100"
    assert args.log_level == "DEBUG"


def test_log_level_defaults_to_info(monkeypatch):
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    assert build_parser().parse_args([]).log_level == "INFO"


def test_invalid_log_level_is_a_usage_error(capsys):
    with pytest.raises(SystemExit) as exc:
        build_parser().parse_args(["--log-level", "loud"])
    assert exc.value.code == 2
    assert "invalid level 'loud'" in capsys.readouterr().err


def test_invalid_log_level_from_environment_is_a_usage_error(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "verbose")
    with pytest.raises(SystemExit):
        build_parser().parse_args([])
