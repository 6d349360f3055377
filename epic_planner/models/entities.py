from datetime import datetime
from typing import Dict, List, Optional
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Limites numéricos compartilhados por todo o motor de simulação
REMAINING_EPS = 1e-6
ALLOC_EPS = 1e-9


def normalize_name(name: str) -> str:
    """Normaliza um nome (epic ou recurso) para comparação sem diferenciar maiúsculas"""
    return (name or "").strip().lower()


class EpicStatus(str, Enum):
    """Classificação do estado de um epic, resolvida uma única vez na carga"""
    IN_DEVELOPMENT = "in_development"
    PENDING_DEVELOPMENT = "pending_development"
    IN_ANALYSIS = "in_analysis"
    PENDING_ANALYSIS = "pending_analysis"
    OTHER = "other"

    @classmethod
    def from_text(cls, state: str) -> "EpicStatus":
        """
        Classifica o texto livre do estado do epic

        Args:
            state: Estado como vem da planilha/tracker (ex: "In development")

        Returns:
            EpicStatus: Classificação fechada do estado
        """
        text = (state or "").strip().lower()
        if "pending" in text and "analysis" in text:
            return cls.PENDING_ANALYSIS
        if "pending" in text:
            return cls.PENDING_DEVELOPMENT
        if "develop" in text:
            return cls.IN_DEVELOPMENT
        if "analysis" in text:
            return cls.IN_ANALYSIS
        return cls.OTHER


class EpicPriority(int, Enum):
    """Níveis de prioridade (Urgent > High > Normal)"""
    NORMAL = 0
    HIGH = 1
    URGENT = 2

    @classmethod
    def from_text(cls, value: Optional[str]) -> "EpicPriority":
        """Converte o texto da prioridade, assumindo Normal quando desconhecido"""
        text = (value or "").strip().lower()
        if text == "urgent":
            return cls.URGENT
        if text == "high":
            return cls.HIGH
        return cls.NORMAL

    @property
    def label(self) -> str:
        return self.name.capitalize()


class Wish(BaseModel):
    """Percentual desejado da capacity de um recurso para um epic"""
    resource: str
    percentage: float = Field(..., ge=0, le=1)


class Allocation(BaseModel):
    """Registro imutável de horas concedidas a um epic em uma sprint"""
    model_config = ConfigDict(frozen=True)

    epic: str
    sprint: int
    resource: str
    hours: float
    sprint_start: datetime


class ResourceCapacity(BaseModel):
    """Horas disponíveis de um recurso em uma sprint, por tipo de atividade"""
    development: float = 0.0
    maintenance: float = 0.0
    analysis: float = 0.0

    def scale(self, factor: float) -> None:
        """Aplica um fator de escala (sprints parciais, feriados)"""
        self.development *= factor
        self.maintenance *= factor
        self.analysis *= factor

    def adapt_to_absences(self, working_days: float, absent_days: float) -> None:
        """
        Reduz a capacity proporcionalmente aos dias úteis de ausência

        Args:
            working_days: Dias úteis da sprint
            absent_days: Dias úteis de ausência dentro da sprint
        """
        if working_days <= 0:
            return
        self.development -= self.development / working_days * absent_days
        self.maintenance -= self.maintenance / working_days * absent_days
        self.analysis -= self.analysis / working_days * absent_days

    def round_up(self) -> None:
        """Zera valores negativos e arredonda para 2 casas decimais"""
        self.development = round(max(self.development, 0.0), 2)
        self.maintenance = round(max(self.maintenance, 0.0), 2)
        self.analysis = round(max(self.analysis, 0.0), 2)


class Epic(BaseModel):
    """Modelo de um epic"""
    name: str
    state: str = ""
    charge: float
    remaining: Optional[float] = None
    priority: EpicPriority = EpicPriority.NORMAL
    end_analysis: Optional[datetime] = None
    dependencies: List[str] = Field(default_factory=list)
    wishes: List[Wish] = Field(default_factory=list)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    history: List[Allocation] = Field(default_factory=list)
    group: str = ""
    status: Optional[EpicStatus] = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return (v or "").strip()

    @field_validator("state")
    @classmethod
    def normalize_state(cls, v: str) -> str:
        return (v or "").strip().lower()

    @field_validator("priority", mode="before")
    @classmethod
    def parse_priority(cls, v):
        """Aceita a prioridade como texto (ex: "Urgent")"""
        if isinstance(v, str):
            return EpicPriority.from_text(v)
        return v

    @model_validator(mode="after")
    def initialize_state(self) -> "Epic":
        """Resolve a classificação do estado e inicializa as horas restantes"""
        if self.status is None:
            self.status = EpicStatus.from_text(self.state)
        # Epic sem carga já nasce concluído
        if self.charge <= 0:
            self.remaining = 0.0
        elif self.remaining is None:
            self.remaining = self.charge
        return self

    def __hash__(self) -> int:
        """Retorna o hash do epic baseado no nome em lowercase"""
        return hash(normalize_name(self.name))

    def __eq__(self, other: object) -> bool:
        """Compara dois epics baseado no nome em lowercase"""
        if not isinstance(other, Epic):
            return NotImplemented
        return normalize_name(self.name) == normalize_name(other.name)

    @property
    def key(self) -> str:
        return normalize_name(self.name)

    @property
    def is_in_development(self) -> bool:
        """Verifica se o epic está em desenvolvimento"""
        return self.status == EpicStatus.IN_DEVELOPMENT

    @property
    def is_other_allowed(self) -> bool:
        """Verifica se o epic pode consumir capacity fora do desenvolvimento (análise/pendente)"""
        return self.status in (
            EpicStatus.IN_ANALYSIS,
            EpicStatus.PENDING_ANALYSIS,
            EpicStatus.PENDING_DEVELOPMENT,
        )

    @property
    def is_pre_completed(self) -> bool:
        return self.charge <= 0

    @property
    def is_done(self) -> bool:
        return self.remaining <= REMAINING_EPS

    @property
    def allocated_hours(self) -> float:
        """Total de horas concedidas ao epic (soma do histórico)"""
        return sum(a.hours for a in self.history)

    def wishes_resource(self, resource: str) -> bool:
        """Verifica se o epic deseja um determinado recurso"""
        key = normalize_name(resource)
        return any(normalize_name(w.resource) == key for w in self.wishes)


class Underutilization(BaseModel):
    """Capacity não utilizada de um recurso em uma sprint"""
    model_config = ConfigDict(frozen=True)

    sprint: int
    resource: str
    unused: float
    reason: str


class ResourcePlannedHours(BaseModel):
    """Horas planejadas de um recurso na sprint, separadas entre epics e fora de epics"""
    epic_hours: float = 0.0
    outside_epic_hours: float = 0.0

    @property
    def total_hours(self) -> float:
        return self.epic_hours + self.outside_epic_hours


class SprintEpicSummary(BaseModel):
    """Resumo realizado de um epic na sprint corrente"""
    epic: str
    planned_capacity: float = 0.0
    consumed: float = 0.0
    remaining: float = 0.0

    @property
    def expected_remaining(self) -> float:
        expected = (self.consumed + self.remaining) - self.planned_capacity
        return expected if expected > 0 else 0.0

    @property
    def overhead_hours(self) -> float:
        return (self.consumed + self.remaining) - self.planned_capacity

    @property
    def overhead_ratio(self) -> float:
        if self.planned_capacity > ALLOC_EPS:
            return self.overhead_hours / self.planned_capacity
        return 0.0


# Tabela de capacity: índice da sprint -> recurso -> capacity
CapacityTable = Dict[int, Dict[str, ResourceCapacity]]
