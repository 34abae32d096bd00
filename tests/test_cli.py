import pytest

import run_analysis


@pytest.fixture
def input_files(tmp_path, abundance, metadata, taxonomy):
    abundance.to_csv(tmp_path / "otu_table.csv")
    metadata.to_csv(tmp_path / "metadata.csv")
    taxonomy.to_csv(tmp_path / "taxonomy.csv")
    return tmp_path


def base_args(path):
    return [
        "--abundance", str(path / "otu_table.csv"),
        "--metadata", str(path / "metadata.csv"),
        "--taxonomy", str(path / "taxonomy.csv"),
        "--output-dir", str(path / "results"),
        "--log-dir", str(path / "logs"),
    ]


def test_build_config_from_args():
    args = run_analysis.parse_args([
        "--clr", "--power", "8", "--min-module-size", "12",
        "--env-variables", "Nox", "NH4", "--r2-threshold", "0.6"
    ])

    config = run_analysis.build_config(args)

    assert config['TRANSFORM'] == 'clr'
    assert config['POWER_OVERRIDE'] == 8
    assert config['MIN_MODULE_SIZE'] == 12
    assert config['ENV_VARIABLES'] == ['Nox', 'NH4']
    assert config['PLS_R2_THRESHOLD'] == 0.6


def test_power_help_describes_override(capsys):
    with pytest.raises(SystemExit):
        run_analysis.parse_args(["--help"])

    help_text = " ".join(capsys.readouterr().out.split())
    assert "overrides the estimate" in help_text


def test_main_success(input_files):
    code = run_analysis.main(base_args(input_files) + ["--power", "6", "--min-module-size", "5"])

    assert code == 0
    assert (input_files / "results" / "module_composition.csv").exists()
    assert any((input_files / "logs").glob("otu_network_*.log"))


def test_main_invalid_config(input_files):
    assert run_analysis.main(base_args(input_files) + ["--min-module-size", "0"]) == 2


def test_main_failure(input_files):
    assert run_analysis.main(base_args(input_files) + ["--min-module-size", "16", "--power", "6"]) == 1
