import pytest
from datetime import datetime
from pydantic import ValidationError
from epic_planner.models.config import (
    Absence,
    EpicEntry,
    FilesConfig,
    PlannedHoursConfig,
    PlannerConfig,
    ResourceEntry,
    SetupConfig,
)

@pytest.fixture
def setup_data():
    """Fixture para conteúdo do setup.json"""
    return {
        "planner": {
            "initial_sprint_start_date": "2024-01-01",
            "initial_sprint_number": 42,
            "sprint_days": 14,
            "sprint_capacity_days": 10,
            "max_sprint_count": 5,
            "holidays": ["2024-01-01", "2024-01-02"]
        },
        "files": {
            "epics_file": "epics.json",
            "resources_file": "resources.json"
        }
    }

def test_setup_config_creation(setup_data):
    """Testa a criação da configuração principal"""
    setup = SetupConfig(**setup_data)

    assert setup.planner.initial_sprint_start_date == datetime(2024, 1, 1)
    assert setup.planner.initial_sprint_number == 42
    assert setup.planner.holidays == [datetime(2024, 1, 1), datetime(2024, 1, 2)]
    assert setup.planner.only_development_epics is False
    assert setup.files.absences_file is None
    assert setup.files.output_dir == "output"
    assert setup.log_dir == "logs"

def test_planner_config_invalid_date():
    """Testa a validação da data inicial da sprint"""
    with pytest.raises(ValidationError, match="Data inválida"):
        PlannerConfig(initial_sprint_start_date="01/01/2024")

def test_planner_config_invalid_holiday():
    """Testa a validação das datas de feriado"""
    with pytest.raises(ValidationError, match="Data inválida"):
        PlannerConfig(initial_sprint_start_date="2024-01-01", holidays=["2024-13-01"])

@pytest.mark.parametrize("field", ["sprint_days", "sprint_capacity_days", "max_sprint_count"])
def test_planner_config_positive_values(field):
    """Testa que as durações precisam ser positivas"""
    with pytest.raises(ValidationError):
        PlannerConfig(initial_sprint_start_date="2024-01-01", **{field: 0})

def test_files_config_required_fields():
    """Testa os arquivos obrigatórios"""
    with pytest.raises(ValidationError):
        FilesConfig(epics_file="epics.json")

def test_absence_creation():
    """Testa a criação de uma ausência"""
    absence = Absence(start_date="2024-01-03", end_date="2024-01-05")

    assert absence.start_date == datetime(2024, 1, 3)
    assert absence.end_date == datetime(2024, 1, 5)

def test_resource_entry_validation():
    """Testa a validação de um recurso"""
    entry = ResourceEntry(name=" Alice ", development=30)

    assert entry.name == "Alice"
    assert entry.maintenance == 0
    with pytest.raises(ValidationError):
        ResourceEntry(name="Bob", development=-1)

def test_epic_entry_charge():
    """Testa a carga do epic a partir das horas restantes ou da estimativa"""
    assert EpicEntry(name="A", remaining=10, rough_estimate=50).charge == 10
    assert EpicEntry(name="B", remaining=0, rough_estimate=50).charge == 50
    assert EpicEntry(name="C").charge == 0

def test_epic_entry_end_of_analysis():
    """Testa a leitura da data de fim de análise"""
    assert EpicEntry(name="A", end_of_analysis="").end_of_analysis is None
    assert EpicEntry(name="A", end_of_analysis="2024-02-01").end_of_analysis == datetime(2024, 2, 1)
    with pytest.raises(ValidationError):
        EpicEntry(name="A", end_of_analysis="amanhã")

def test_planned_hours_config():
    """Testa a leitura das horas planejadas"""
    config = PlannedHoursConfig(
        resources={"Alice": {"epic_hours": 20, "outside_epic_hours": 5}},
        epics=[{"epic": "E", "planned_capacity": 20, "consumed": 10, "remaining": 15}]
    )

    assert config.resources["Alice"].total_hours == 25
    assert config.epics[0].expected_remaining == 5
