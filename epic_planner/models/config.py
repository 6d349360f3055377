from datetime import datetime
from typing import Dict, List, Optional, Union
from pydantic import BaseModel, Field, field_validator

from .entities import ResourcePlannedHours, SprintEpicSummary


def _parse_date(v: Union[str, datetime]) -> datetime:
    """Valida e converte a string de data para datetime"""
    if isinstance(v, datetime):
        return v
    try:
        return datetime.strptime(v, "%Y-%m-%d")
    except ValueError as e:
        raise ValueError(f"Data inválida: {v}. Formato esperado: YYYY-MM-DD") from e


class PlannerConfig(BaseModel):
    """Configuração da simulação de sprints"""

    initial_sprint_start_date: datetime
    initial_sprint_number: int = 0
    sprint_days: int = Field(default=21, gt=0)
    sprint_capacity_days: int = Field(default=15, gt=0)
    max_sprint_count: int = Field(default=20, gt=0)
    holidays: List[datetime] = Field(default_factory=list)
    only_development_epics: bool = False

    @field_validator("initial_sprint_start_date", mode="before")
    @classmethod
    def validate_date(cls, v: Union[str, datetime]) -> datetime:
        return _parse_date(v)

    @field_validator("holidays", mode="before")
    @classmethod
    def validate_holidays(cls, v: List[Union[str, datetime]]) -> List[datetime]:
        """Valida e converte as datas de feriados"""
        return [_parse_date(d) for d in v or []]


class FilesConfig(BaseModel):
    """Arquivos de entrada e diretório de saída"""

    epics_file: str
    resources_file: str
    absences_file: Optional[str] = None
    planned_hours_file: Optional[str] = None
    planned_capacity_file: Optional[str] = None
    output_dir: str = "output"


class SetupConfig(BaseModel):
    """Configuração principal do sistema"""

    planner: PlannerConfig
    files: FilesConfig
    log_dir: str = "logs"


class Absence(BaseModel):
    """Modelo para ausências (período contínuo, datas inclusivas)"""

    start_date: datetime
    end_date: datetime

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def validate_date(cls, v: Union[str, datetime]) -> datetime:
        return _parse_date(v)


class ResourceEntry(BaseModel):
    """Capacity base de um recurso por sprint"""

    name: str
    development: float = Field(default=0.0, ge=0)
    maintenance: float = Field(default=0.0, ge=0)
    analysis: float = Field(default=0.0, ge=0)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip()


class ResourcesConfig(BaseModel):
    """Arquivo de recursos"""

    resources: List[ResourceEntry]


class EpicEntry(BaseModel):
    """Linha bruta de epic como vem da exportação do backlog"""

    name: str
    state: str = ""
    remaining: Optional[float] = None
    rough_estimate: Optional[float] = None
    assigned_to: str = ""
    will_be_assigned: str = ""
    priority: str = "Normal"
    dependencies: Union[str, List[str]] = Field(default_factory=list)
    end_of_analysis: Optional[datetime] = None
    group: str = ""

    @field_validator("end_of_analysis", mode="before")
    @classmethod
    def validate_date(cls, v: Optional[Union[str, datetime]]) -> Optional[datetime]:
        if v is None or v == "":
            return None
        return _parse_date(v)

    @property
    def charge(self) -> float:
        """Carga do epic: horas restantes, ou estimativa grosseira na falta delas"""
        if self.remaining and self.remaining > 0:
            return self.remaining
        if self.rough_estimate and self.rough_estimate > 0:
            return self.rough_estimate
        return 0.0


class EpicsConfig(BaseModel):
    """Arquivo de epics"""

    epics: List[EpicEntry]


class PlannedHoursConfig(BaseModel):
    """Horas planejadas na sprint corrente (entrada do verificador)"""

    resources: Dict[str, ResourcePlannedHours] = Field(default_factory=dict)
    epics: List[SprintEpicSummary] = Field(default_factory=list)
