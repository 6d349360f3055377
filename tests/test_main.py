import json
import pytest
import openpyxl
from unittest.mock import Mock, patch
import typer
from typer.testing import CliRunner
from epic_planner.main import app, load_json_file

runner = CliRunner()

@pytest.fixture
def config_dir(tmp_path):
    """Fixture para diretório de configuração completo"""
    config = tmp_path / "config"
    config.mkdir()
    (config / "setup.json").write_text(json.dumps({
        "planner": {
            "initial_sprint_start_date": "2024-01-01",
            "initial_sprint_number": 3,
            "sprint_days": 14,
            "sprint_capacity_days": 10,
            "max_sprint_count": 3
        },
        "files": {
            "epics_file": "epics.json",
            "resources_file": "resources.json",
            "planned_hours_file": "planned.json",
            "output_dir": str(tmp_path / "output")
        },
        "log_dir": str(tmp_path / "logs")
    }), encoding="utf-8")
    (config / "resources.json").write_text(json.dumps({
        "resources": [{"name": "Alice", "development": 20}, {"name": "Bob", "development": 10}]
    }), encoding="utf-8")
    (config / "epics.json").write_text(json.dumps({
        "epics": [
            {"name": "2024-01 Login", "state": "In development", "remaining": 30, "assigned_to": "Alice"},
            {"name": "2024-02 Profile", "state": "In development", "remaining": 10,
             "assigned_to": "Bob", "dependencies": "Login"}
        ]
    }), encoding="utf-8")
    (config / "planned.json").write_text(json.dumps({
        "resources": {"Alice": {"epic_hours": 20}},
        "epics": [{"epic": "2024-01 Login", "planned_capacity": 20, "consumed": 15, "remaining": 15}]
    }), encoding="utf-8")
    return config

def test_load_json_file(tmp_path):
    """Testa a leitura de um arquivo JSON"""
    path = tmp_path / "data.json"
    path.write_text('{"a": 1}', encoding="utf-8")
    assert load_json_file(path) == {"a": 1}

def test_load_json_file_invalid(tmp_path):
    """Testa a leitura de um arquivo JSON inválido"""
    path = tmp_path / "data.json"
    path.write_text("{invalido", encoding="utf-8")

    with pytest.raises(typer.Exit):
        load_json_file(path)

def test_planejar_success(config_dir, tmp_path):
    """Testa o fluxo de planejamento com sucesso"""
    result = runner.invoke(app, ["planejar", "--config-dir", str(config_dir)])

    assert result.exit_code == 0
    output = tmp_path / "output"
    assert (output / "planejamento.md").exists()
    assert (output / "planejamento.pdf").exists()
    assert (output / "planejamento.xlsx").exists()
    assert list((tmp_path / "logs").glob("planejador_*.log"))

    content = (output / "planejamento.md").read_text(encoding="utf-8")
    assert "- **Primeira sprint:** 3 (01/01/2024)" in content

def test_planejar_calls_services(config_dir):
    """Testa a orquestração dos serviços no planejamento"""
    mock_report = Mock()
    with patch("epic_planner.main.ReportGenerator", return_value=mock_report) as report_cls:
        result = runner.invoke(app, ["planejar", "--config-dir", str(config_dir)])

    assert result.exit_code == 0
    report_cls.assert_called_once()
    simulation = report_cls.call_args.args[0]
    assert simulation.sprint_offset == 3
    assert {a.epic for a in simulation.allocations} == {"2024-01 Login", "2024-02 Profile"}
    mock_report.generate.assert_called_once()

def test_planejar_without_setup(tmp_path):
    """Testa o planejamento sem o setup.json"""
    result = runner.invoke(app, ["planejar", "--config-dir", str(tmp_path)])
    assert result.exit_code == 1

def test_planejar_with_invalid_setup(config_dir):
    """Testa o planejamento com configuração inválida"""
    (config_dir / "setup.json").write_text(json.dumps({"planner": {}}), encoding="utf-8")

    result = runner.invoke(app, ["planejar", "--config-dir", str(config_dir)])
    assert result.exit_code == 1

def test_planejar_with_missing_input(config_dir):
    """Testa o planejamento sem o arquivo de epics"""
    (config_dir / "epics.json").unlink()

    result = runner.invoke(app, ["planejar", "--config-dir", str(config_dir)])
    assert result.exit_code == 1

def test_planejar_with_dependency_cycle(config_dir, tmp_path):
    """Testa que ciclos de dependência interrompem o planejamento"""
    (config_dir / "epics.json").write_text(json.dumps({
        "epics": [
            {"name": "A", "state": "In development", "remaining": 5, "dependencies": "B"},
            {"name": "B", "state": "In development", "remaining": 5, "dependencies": "A"}
        ]
    }), encoding="utf-8")

    result = runner.invoke(app, ["planejar", "--config-dir", str(config_dir)])

    assert result.exit_code == 1
    assert not (tmp_path / "output" / "planejamento.xlsx").exists()

def test_verificar_comparacao(config_dir, tmp_path):
    """Testa a verificação de recursos"""
    result = runner.invoke(app, ["verificar", "--config-dir", str(config_dir)])

    assert result.exit_code == 0
    path = tmp_path / "output" / "CheckerReport_Comparison.xlsx"
    wb = openpyxl.load_workbook(path)
    assert wb.sheetnames == ["Sprint3Comparison"]

def test_verificar_epicos(config_dir, tmp_path):
    """Testa a verificação dos epics"""
    result = runner.invoke(app, ["verificar", "--config-dir", str(config_dir), "--modo", "epicos"])

    assert result.exit_code == 0
    wb = openpyxl.load_workbook(tmp_path / "output" / "CheckerReport_EpicStates.xlsx")
    rows = list(wb["Sprint3EpicCheck"].iter_rows(values_only=True))
    assert rows[1][:2] == ("2024-01 Login", 30)

def test_verificar_invalid_mode(config_dir):
    """Testa a verificação com modo desconhecido"""
    result = runner.invoke(app, ["verificar", "--config-dir", str(config_dir), "--modo", "outro"])
    assert result.exit_code != 0

@pytest.mark.parametrize("file_name", ["plano.xlsx", "plano.txt"])
def test_verificar_with_invalid_planned_capacity_file(config_dir, file_name):
    """Testa a verificação com planilha de capacity planejada ilegível"""
    (config_dir / file_name).write_text("não é uma planilha", encoding="utf-8")
    setup = json.loads((config_dir / "setup.json").read_text(encoding="utf-8"))
    setup["files"]["planned_capacity_file"] = file_name
    (config_dir / "setup.json").write_text(json.dumps(setup), encoding="utf-8")

    result = runner.invoke(app, ["verificar", "--config-dir", str(config_dir), "--modo", "epicos"])

    assert result.exit_code == 1
    assert isinstance(result.exception, SystemExit)

def test_planejar_with_output_permission_error(config_dir):
    """Testa o planejamento quando o diretório de saída não pode ser escrito"""
    mock_report = Mock()
    mock_report.generate.side_effect = PermissionError("sem permissão")
    with patch("epic_planner.main.ReportGenerator", return_value=mock_report):
        result = runner.invoke(app, ["planejar", "--config-dir", str(config_dir)])

    assert result.exit_code == 1
    assert isinstance(result.exception, SystemExit)
