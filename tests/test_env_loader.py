import os

from sitecrawler.utils.env_loader import load_environment


def test_load_environment_from_custom_file(monkeypatch, tmp_path):
    env_file = tmp_path / "custom.env"
    env_file.write_text("SEED_URL=https://example.com\nWORKERS=4\n")

    monkeypatch.delenv("SEED_URL", raising=False)
    monkeypatch.delenv("WORKERS", raising=False)

    loaded = load_environment(env_file, override=True)

    assert loaded is True
    assert os.getenv("SEED_URL") == "https://example.com"
    assert os.getenv("WORKERS") == "4"


def test_load_environment_from_env_variable(monkeypatch, tmp_path):
    env_file = tmp_path / "crawler.env"
    env_file.write_text("MAX_DEPTH=3\n")
    monkeypatch.setenv("CRAWLER_ENV_FILE", str(env_file))
    monkeypatch.delenv("MAX_DEPTH", raising=False)

    assert load_environment() is True
    assert os.getenv("MAX_DEPTH") == "3"


def test_existing_variables_win_without_override(monkeypatch, tmp_path):
    env_file = tmp_path / "custom.env"
    env_file.write_text("WORKERS=4\n")
    monkeypatch.setenv("WORKERS", "9")

    load_environment(env_file)

    assert os.getenv("WORKERS") == "9"


def test_load_environment_missing_file(tmp_path):
    missing_file = tmp_path / "missing.env"

    loaded = load_environment(missing_file)

    assert loaded is False
