import pytest

from project_planner.core.config import ConfigError, PlannerConfig, load_config


def test_defaults_without_file_or_env():
    cfg = load_config(env={})
    assert cfg == PlannerConfig()
    assert cfg.max_iterations == 3
    assert cfg.consistency_threshold == 85.0
    assert cfg.acceptance == "best"


def test_file_then_env_then_overrides(tmp_path):
    p = tmp_path / "planner.yaml"
    p.write_text(
        "model: file-model\nworkers: 5\nacceptance: latest\ndisabled_rules: [prd_coverage]\n",
        encoding="utf-8",
    )
    cfg = load_config(
        str(p),
        env={"PLANNER_WORKERS": "7", "PLANNER_CONSISTENCY_THRESHOLD": "90"},
        overrides={"model": "cli-model", "max_iterations": None},
    )
    assert cfg.model == "cli-model"
    assert cfg.workers == 7
    assert cfg.consistency_threshold == 90.0
    assert cfg.max_iterations == 3
    assert cfg.acceptance == "latest"
    assert cfg.disabled_rules == ("prd_coverage",)


def test_openai_model_env_is_a_fallback():
    assert load_config(env={"OPENAI_MODEL": "m1"}).model == "m1"
    assert load_config(env={"OPENAI_MODEL": "m1", "PLANNER_MODEL": "m2"}).model == "m2"


def test_unknown_key_rejected(tmp_path):
    p = tmp_path / "planner.yaml"
    p.write_text("temperature: 0.2\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(str(p), env={})


@pytest.mark.parametrize(
    "body",
    [
        "workers: 0\n",
        "acceptance: sometimes\n",
        "consistency_threshold: 150\n",
        "disabled_rules: [no_such_rule]\n",
        "group_by_category: 'yes'\n",
        "- not a mapping\n",
    ],
)
def test_invalid_values_rejected(tmp_path, body):
    p = tmp_path / "planner.yaml"
    p.write_text(body, encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(str(p), env={})


def test_bad_env_number():
    with pytest.raises(ConfigError):
        load_config(env={"PLANNER_MAX_ITERATIONS": "many"})


def test_missing_config_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "nope.yaml"), env={})


def test_malformed_yaml_is_a_config_error(tmp_path):
    p = tmp_path / "planner.yaml"
    p.write_text("workers: [3\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="invalid YAML"):
        load_config(str(p), env={})
