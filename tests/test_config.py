import os
import textwrap

import pytest

from dirreconciler.core.config import ConfigError, load_config


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    # no stray DREC_* variables or .env files from the developer machine
    for key in list(os.environ):
        if key.startswith("DREC_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


def _write(tmp_path, text, name="reconciler.yml"):
    path = tmp_path / name
    path.write_text(textwrap.dedent(text), encoding="utf-8")
    return str(path)


def test_defaults_when_validation_is_off(tmp_path):
    cfg = load_config(files=(str(tmp_path / "missing.yml"),), validate=False)
    assert cfg.api.base_url == ""
    assert cfg.api.retries == 3
    assert cfg.poller.interval_sec == 5.0
    assert cfg.poller.timeout_sec == 300.0
    assert cfg.logging.base_dir == "logs"
    assert cfg.kinds == {}
    assert len(cfg.run_id) == 12
    assert cfg.run_id == cfg.run_id


def test_missing_required_settings_raise(tmp_path):
    with pytest.raises(ConfigError) as ei:
        load_config(files=(str(tmp_path / "missing.yml"),))
    assert "api.base_url" in str(ei.value)
    assert "api.api_key" in str(ei.value)


def test_precedence_cli_over_env_over_file(tmp_path, monkeypatch):
    path = _write(
        tmp_path,
        """
        api:
          base_url: https://file.example
          api_key: from-file
          retries: 1
        poller:
          interval_sec: 2
        """,
    )
    monkeypatch.setenv("DREC_API__API_KEY", "from-env")
    monkeypatch.setenv("DREC_API__RETRIES", "7")

    cfg = load_config({"api": {"retries": 9}}, files=(path,))

    assert cfg.api.base_url == "https://file.example"
    assert cfg.api.api_key == "from-env"
    assert cfg.api.retries == 9
    assert cfg.poller.interval_sec == 2.0


def test_env_values_are_coerced(tmp_path, monkeypatch):
    monkeypatch.setenv("DREC_API__BASE_URL", "https://env.example")
    monkeypatch.setenv("DREC_API__API_KEY", "k")
    monkeypatch.setenv("DREC_API__VERIFY_TLS", "false")
    monkeypatch.setenv("DREC_API__TIMEOUT_SEC", "12.5")
    monkeypatch.setenv("DREC_POLLER__TIMEOUT_SEC", "60")
    # no "__": not a config path
    monkeypatch.setenv("DREC_IGNORED", "x")

    cfg = load_config(files=(str(tmp_path / "missing.yml"),))

    assert cfg.api.verify_tls is False
    assert cfg.api.timeout_sec == 12.5
    assert cfg.poller.timeout_sec == 60.0


def test_bad_number_is_a_config_error(tmp_path, monkeypatch):
    monkeypatch.setenv("DREC_API__RETRIES", "many")
    with pytest.raises(ConfigError) as ei:
        load_config(files=(str(tmp_path / "missing.yml"),), validate=False)
    assert "api.retries" in str(ei.value)


def test_env_interpolation(tmp_path, monkeypatch):
    monkeypatch.setenv("DIRECTORY_API_KEY", "interpolated")
    path = _write(
        tmp_path,
        """
        api:
          base_url: https://file.example
          api_key: ${DIRECTORY_API_KEY}
        """,
    )
    assert load_config(files=(path,)).api.api_key == "interpolated"


def test_dotenv_file_is_loaded_without_overriding_environment(tmp_path, monkeypatch):
    (tmp_path / ".env").write_text(
        "DREC_API__BASE_URL=https://dotenv.example\nDREC_API__API_KEY=dotenv-key\n", encoding="utf-8"
    )
    monkeypatch.setenv("DREC_API__API_KEY", "real-env")
    # load_dotenv writes into os.environ; let monkeypatch restore it afterwards
    monkeypatch.setenv("DREC_API__BASE_URL", "")
    monkeypatch.delenv("DREC_API__BASE_URL")

    cfg = load_config(files=(str(tmp_path / "missing.yml"),))

    assert cfg.api.base_url == "https://dotenv.example"
    assert cfg.api.api_key == "real-env"


def test_kind_overrides_keep_reset_defaults_verbatim(tmp_path):
    path = _write(
        tmp_path,
        """
        api: {base_url: "https://x", api_key: "k"}
        kinds:
          user_group:
            precheck: "no"
          mfa_settings:
            reset_defaults:
              exclusionWindowDays: 0
              enabledMethods: []
              timeout_sec: "not coerced"
        """,
    )
    cfg = load_config(files=(path,))
    assert cfg.kinds["user_group"]["precheck"] is False
    assert cfg.kinds["mfa_settings"]["reset_defaults"]["timeout_sec"] == "not coerced"


def test_invalid_yaml_and_sections(tmp_path):
    broken = _write(tmp_path, "api: [unclosed\n", name="broken.yml")
    with pytest.raises(ConfigError):
        load_config(files=(broken,), validate=False)

    listing = _write(tmp_path, "- a\n- b\n", name="list.yml")
    with pytest.raises(ConfigError):
        load_config(files=(listing,), validate=False)

    extra = _write(tmp_path, "api:\n  base_url: https://x\n  api_key: k\n  colour: red\n", name="extra.yml")
    with pytest.raises(ConfigError):
        load_config(files=(extra,))
