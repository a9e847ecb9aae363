from click.testing import CliRunner

from lbcollect import __version__
from lbcollect.cli import main
from lbcollect.models import CollectionSummary

NO_ENV_KEYS = {"GLOBALPING_API_KEYS": ""}


def invoke(args, env=NO_ENV_KEYS):
    return CliRunner().invoke(main, args, env=env)


def test_missing_hosts_is_a_configuration_error():
    result = invoke(["--keys", "k", "--locations", "Berlin"])

    assert result.exit_code == 1
    assert "No hosts provided" in result.output


def test_missing_keys_is_a_configuration_error():
    result = invoke(["--hosts", "example.com", "--locations", "Berlin"])

    assert result.exit_code == 1
    assert "No API keys provided" in result.output


def test_unknown_protocol_is_rejected_by_click():
    result = invoke(["--hosts", "example.com", "--protocol", "QUIC"])

    assert result.exit_code == 2


def test_version():
    result = invoke(["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_options_reach_the_engine(monkeypatch, tmp_path):
    captured = {}

    async def fake_run_collection(config, coverage=None):
        captured["config"] = config
        return CollectionSummary(output_file=str(tmp_path / "x_results.csv"))

    monkeypatch.setattr("lbcollect.engine.run_collection", fake_run_collection)

    result = invoke(
        [
            "--hosts", "https://a.example, b.example",
            "--locations", "Berlin,Paris",
            "-n", "5",
            "--protocol", "http2",
            "-o", str(tmp_path),
            "-q",
        ],
        env={"GLOBALPING_API_KEYS": "one,two"},
    )

    assert result.exit_code == 0, result.output
    config = captured["config"]
    assert config.hosts == ["https://a.example", "b.example"]
    assert config.api_keys == ["one", "two"]
    assert config.locations == ["Berlin", "Paris"]
    assert config.runs == 5
    assert config.protocol == "HTTP2"
    assert config.mode == "session"
    assert config.output_dir == str(tmp_path)
