import json

import pytest
from click.testing import CliRunner

from assessmatch.cli import main

from .conftest import CATALOG_CSV


@pytest.fixture
def runner(isolated_config):
    isolated_config.config["reranker"]["enabled"] = False
    return CliRunner()


def flat(output):
    """Console output with rich line wrapping undone."""
    return " ".join(output.split())


def parse_json_output(output):
    return json.loads(output[output.index("{"):])


def test_recommend_json(runner, catalog_file):
    result = runner.invoke(main, [
        "recommend", "Java developer with coding skills",
        "--catalog", str(catalog_file), "--backend", "hashing", "--limit", "2", "--json",
    ])
    assert result.exit_code == 0, result.output
    body = parse_json_output(result.output)
    assert len(body["recommendations"]) == 2
    assert body["recommendations"][0]["id"] == "java-dev"
    assert body["wasFirstLoad"] is True
    assert body["reranked"] is False


def test_recommend_table_from_file(runner, catalog_file, tmp_path):
    job = tmp_path / "job.txt"
    job.write_text("<p>Python developer for data pipelines</p>", encoding="utf-8")
    result = runner.invoke(main, [
        "recommend", "--file", str(job), "--catalog", str(catalog_file),
        "--backend", "hashing", "--remote-only",
    ])
    assert result.exit_code == 0, result.output
    assert "Recommended Assessments" in flat(result.output)
    assert "Verbal Comprehension" not in flat(result.output)


def test_recommend_rejects_blank_text(runner, catalog_file):
    result = runner.invoke(main, ["recommend", "   ", "--catalog", str(catalog_file), "--backend", "hashing"])
    assert result.exit_code == 1
    assert "Please enter a job description" in flat(result.output)


def test_recommend_requires_text(runner):
    result = runner.invoke(main, ["recommend"], input="")
    assert result.exit_code == 1


def test_catalog_validate(runner, catalog_file, tmp_path):
    result = runner.invoke(main, ["catalog", "validate", str(catalog_file)])
    assert result.exit_code == 0
    assert "is valid" in flat(result.output)

    broken = tmp_path / "broken.csv"
    broken.write_text(CATALOG_CSV.replace("https://example.com/opq", ""), encoding="utf-8")
    result = runner.invoke(main, ["catalog", "validate", str(broken)])
    assert result.exit_code == 1
    assert "row 5" in flat(result.output)


def test_catalog_list(runner, catalog_file):
    result = runner.invoke(main, ["catalog", "list", str(catalog_file), "--limit", "2"])
    assert result.exit_code == 0
    assert "java-dev" in result.output
    assert "opq" not in result.output


def test_config_set_and_show(runner, isolated_config):
    result = runner.invoke(main, ["config", "set", "engine", "max_results", "5"])
    assert result.exit_code == 0
    assert isolated_config.get("engine", "max_results") == 5

    result = runner.invoke(main, ["config", "show", "--section", "engine"])
    assert "max_results: 5" in flat(result.output)


def test_config_set_rejects_wrong_type(runner, isolated_config):
    result = runner.invoke(main, ["config", "set", "engine", "max_results", "many"])
    assert result.exit_code == 1
    assert isolated_config.get("engine", "max_results") == 10


def test_config_template(runner, tmp_path):
    output = tmp_path / "template.env"
    result = runner.invoke(main, ["config", "template", "--output", str(output)])
    assert result.exit_code == 0
    assert "ASSESSMATCH_CATALOG_PATH" in output.read_text()
