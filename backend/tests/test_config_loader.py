from backend.config_loader import load_settings, persist_settings


def test_missing_file_gives_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    settings = load_settings(str(tmp_path / "missing.yaml"))
    assert settings.thresholds.yaw_distracted_deg == 25.0
    assert settings.escalation.reset_focus_seconds == 30.0
    assert settings.messages.api_key == ""


def test_yaml_overrides_and_env_key(tmp_path, monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "from-env")
    path = tmp_path / "cfg.yaml"
    persist_settings(str(path), {"escalation": {"level_1_delay_seconds": 8}, "detection": {"fps": 15}})

    settings = load_settings(str(path))
    assert settings.escalation.level_1_delay_seconds == 8.0
    assert settings.escalation.level_2_delay_seconds == 10.0
    assert settings.detection.fps == 15.0
    assert settings.messages.api_key == "from-env"


def test_yaml_key_wins_over_env(tmp_path, monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "from-env")
    path = tmp_path / "cfg.yaml"
    persist_settings(str(path), {"messages": {"api_key": "from-file"}})
    assert load_settings(str(path)).messages.api_key == "from-file"
