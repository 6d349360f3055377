import json
import re
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Union
from loguru import logger
import openpyxl

from ..models.entities import CapacityTable, Epic, ResourceCapacity, Wish, normalize_name
from ..models.config import (
    Absence,
    EpicEntry,
    EpicsConfig,
    PlannedHoursConfig,
    ResourcesConfig,
    SetupConfig,
)
from .calendar import build_sprint_capacities
from .dependencies import EpicGraph
from .simulator import PlanningSimulator

PERCENTAGE_PATTERN = re.compile(r"(\d{1,3})\s*%$")
SEPARATOR_PATTERN = re.compile(r"[,;]")


def parse_assignments(assigned: str, will_be_assigned: str, resource_names: List[str]) -> List[Wish]:
    """
    Converte os campos de atribuição em desejos de capacity

    Cada item tem o formato "Nome NN%" (sem percentual equivale a 100%) e é
    associado ao primeiro recurso cujo nome é igual ou contém o nome informado.

    Args:
        assigned: Recursos já atribuídos ao epic
        will_be_assigned: Recursos que serão atribuídos
        resource_names: Nomes dos recursos conhecidos

    Returns:
        List[Wish]: Desejos reconhecidos, na ordem em que aparecem
    """
    wishes = []
    raw = f"{assigned or ''},{will_be_assigned or ''}"
    for token in SEPARATOR_PATTERN.split(raw):
        candidate = token.strip()
        if not candidate:
            continue

        percentage = 1.0
        name = candidate
        match = PERCENTAGE_PATTERN.search(candidate)
        if match:
            percentage = int(match.group(1)) / 100.0
            name = candidate[:match.start()].strip()

        key = normalize_name(name)
        resource = next(
            (r for r in resource_names if key and (normalize_name(r) == key or key in normalize_name(r))),
            None,
        )
        if resource is None:
            logger.warning(f"Recurso '{name}' não encontrado, atribuição ignorada")
            continue

        if percentage > 1.0:
            logger.warning(f"Percentual de {name} acima de 100%, limitado a 100%")
            percentage = 1.0

        wishes.append(Wish(resource=resource, percentage=percentage))
    return wishes


def split_dependencies(raw: Union[str, List[str], None]) -> List[str]:
    """Separa as dependências informadas como lista ou texto com vírgula/ponto e vírgula"""
    if not raw:
        return []
    items = raw if isinstance(raw, list) else SEPARATOR_PATTERN.split(raw)
    return [item.strip() for item in items if item and item.strip()]


def read_planned_capacity_by_epic(path: Path, sprint_number: int) -> Dict[str, float]:
    """
    Lê as horas planejadas por epic de uma planilha de planejamento anterior

    Args:
        path: Planilha gerada pelo relatório de planejamento
        sprint_number: Número real da sprint a considerar

    Returns:
        Dict[str, float]: Horas planejadas por nome normalizado do epic
    """
    result: Dict[str, float] = {}
    if not path.exists():
        logger.warning(f"Planilha de capacity planejada não encontrada: {path}")
        return result

    wb = openpyxl.load_workbook(path, read_only=True, data_only=True)
    try:
        if "AllocationsByEpicPerSprint" not in wb.sheetnames:
            logger.warning(f"Aba AllocationsByEpicPerSprint não encontrada em {path}")
            return result

        rows = wb["AllocationsByEpicPerSprint"].iter_rows(values_only=True)
        header = next(rows, None)
        if not header:
            return result

        columns = {str(h).strip(): i for i, h in enumerate(header) if h is not None}
        total_col = columns.get("Total_Hours", columns.get("Total Hours"))
        if "Epic" not in columns or "Sprint" not in columns or total_col is None:
            return result

        for row in rows:
            epic_name = row[columns["Epic"]]
            if not epic_name or not str(epic_name).strip():
                continue
            try:
                sprint = int(round(float(row[columns["Sprint"]])))
            except (TypeError, ValueError):
                continue
            if sprint != sprint_number:
                continue
            try:
                hours = max(float(row[total_col] or 0.0), 0.0)
            except (TypeError, ValueError):
                hours = 0.0
            key = normalize_name(str(epic_name))
            result[key] = result.get(key, 0.0) + hours
    finally:
        wb.close()

    logger.info(f"Capacity planejada lida para {len(result)} epics da sprint {sprint_number}")
    return result


class PlanningSnapshot:
    """Entrada validada de uma execução: epics, capacity por sprint e datas"""

    def __init__(
        self,
        epics: List[Epic],
        capacities: CapacityTable,
        initial_sprint_date: datetime,
        sprint_days: int,
        max_sprint_count: int,
        sprint_offset: int = 0,
        only_development_epics: bool = False,
        graph: Optional[EpicGraph] = None,
        planned_hours: Optional[PlannedHoursConfig] = None,
        planned_capacity_by_epic: Optional[Dict[str, float]] = None,
    ):
        self.epics = epics
        self.capacities = capacities
        self.initial_sprint_date = initial_sprint_date
        self.sprint_days = sprint_days
        self.max_sprint_count = max_sprint_count
        self.sprint_offset = sprint_offset
        self.only_development_epics = only_development_epics
        self.graph = graph
        self.planned_hours = planned_hours or PlannedHoursConfig()
        self.planned_capacity_by_epic = planned_capacity_by_epic or {}

    def create_simulator(self) -> PlanningSimulator:
        return PlanningSimulator(
            self.epics,
            self.capacities,
            self.initial_sprint_date,
            self.sprint_days,
            self.max_sprint_count,
            only_development_epics=self.only_development_epics,
            sprint_offset=self.sprint_offset,
        )


class PlanningDataLoader:
    """Serviço responsável pela leitura dos arquivos de entrada"""

    def __init__(self, setup: SetupConfig, base_dir: Path = Path(".")):
        """
        Inicializa o carregador

        Args:
            setup: Configuração principal
            base_dir: Diretório base para caminhos relativos
        """
        self.setup = setup
        self.base_dir = Path(base_dir)

    def _resolve(self, path: str) -> Path:
        candidate = Path(path)
        if candidate.is_absolute():
            return candidate
        return self.base_dir / candidate

    def _read_json(self, path: str) -> dict:
        file_path = self._resolve(path)
        if not file_path.exists():
            raise FileNotFoundError(f"Arquivo não encontrado: {file_path}")
        return json.loads(file_path.read_text(encoding="utf-8"))

    def load_resources(self) -> Dict[str, ResourceCapacity]:
        """Carrega a capacity base dos recursos"""
        config = ResourcesConfig(**self._read_json(self.setup.files.resources_file))
        resources: Dict[str, ResourceCapacity] = {}
        seen = set()
        for entry in config.resources:
            if not entry.name:
                continue
            key = normalize_name(entry.name)
            if key in seen:
                logger.warning(f"Recurso {entry.name} duplicado, mantendo a primeira ocorrência")
                continue
            seen.add(key)
            resources[entry.name] = ResourceCapacity(
                development=entry.development,
                maintenance=entry.maintenance,
                analysis=entry.analysis,
            )
        logger.info(f"{len(resources)} recursos carregados")
        return resources

    def load_absences(self) -> Dict[str, List[Absence]]:
        """Carrega as ausências por recurso (arquivo opcional)"""
        if not self.setup.files.absences_file:
            return {}
        data = self._read_json(self.setup.files.absences_file)
        absences = {
            name: [Absence(**a) for a in periods]
            for name, periods in data.items()
        }
        logger.info(f"Ausências carregadas para {len(absences)} recursos")
        return absences

    def _build_epic(self, entry: EpicEntry, resource_names: List[str]) -> Epic:
        epic = Epic(
            name=entry.name,
            state=entry.state,
            charge=entry.charge,
            priority=entry.priority,
            end_analysis=entry.end_of_analysis,
            dependencies=split_dependencies(entry.dependencies),
            wishes=parse_assignments(entry.assigned_to, entry.will_be_assigned, resource_names),
            group=entry.group,
        )
        if epic.is_pre_completed:
            # Concluído antes do planejamento: fim da análise ou início da primeira sprint
            done_at = entry.end_of_analysis or self.setup.planner.initial_sprint_start_date
            epic.start_date = done_at
            epic.end_date = done_at
        return epic

    def load_epics(self, resource_names: List[str]) -> List[Epic]:
        """Carrega os epics, com desejos e dependências ainda não resolvidas"""
        config = EpicsConfig(**self._read_json(self.setup.files.epics_file))
        epics = [
            self._build_epic(entry, resource_names)
            for entry in config.epics
            if entry.name.strip()
        ]
        logger.info(f"{len(epics)} epics carregados")
        return epics

    def load_planned_hours(self) -> PlannedHoursConfig:
        """Carrega as horas planejadas da sprint corrente (arquivo opcional)"""
        if not self.setup.files.planned_hours_file:
            return PlannedHoursConfig()
        return PlannedHoursConfig(**self._read_json(self.setup.files.planned_hours_file))

    def load_planned_capacity(self) -> Dict[str, float]:
        if not self.setup.files.planned_capacity_file:
            return {}
        return read_planned_capacity_by_epic(
            self._resolve(self.setup.files.planned_capacity_file),
            self.setup.planner.initial_sprint_number,
        )

    def load(self, include_planned_hours: bool = False) -> PlanningSnapshot:
        """
        Carrega todos os arquivos e monta o snapshot da execução

        Args:
            include_planned_hours: Carrega também as horas planejadas (verificador)

        Returns:
            PlanningSnapshot: Snapshot pronto para simulação
        """
        planner = self.setup.planner
        resources = self.load_resources()
        epics = self.load_epics(list(resources.keys()))
        graph = EpicGraph.build(epics)

        capacities = build_sprint_capacities(
            resources,
            self.load_absences(),
            planner.initial_sprint_start_date,
            planner.sprint_days,
            planner.sprint_capacity_days,
            planner.max_sprint_count,
            planner.holidays,
        )

        planned_hours = None
        planned_capacity = None
        if include_planned_hours:
            planned_hours = self.load_planned_hours()
            planned_capacity = self.load_planned_capacity()

        return PlanningSnapshot(
            epics=epics,
            capacities=capacities,
            initial_sprint_date=planner.initial_sprint_start_date,
            sprint_days=planner.sprint_days,
            max_sprint_count=planner.max_sprint_count,
            sprint_offset=planner.initial_sprint_number,
            only_development_epics=planner.only_development_epics,
            graph=graph,
            planned_hours=planned_hours,
            planned_capacity_by_epic=planned_capacity,
        )
