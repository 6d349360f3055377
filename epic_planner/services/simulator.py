from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple
from loguru import logger

from ..models.entities import (
    ALLOC_EPS,
    REMAINING_EPS,
    Allocation,
    CapacityTable,
    Epic,
    ResourceCapacity,
    Underutilization,
    normalize_name,
)
from .dependencies import ReadinessGate

REASON_NO_ASSIGNED_EPICS = "no assigned epics"
REASON_NO_REMAINING_HOURS = "no remaining hours on assigned epics"


class SimulationResult:
    """Resultado de uma simulação: epics atualizados, ledger de alocações e subutilização"""

    def __init__(
        self,
        epics: List[Epic],
        allocations: List[Allocation],
        underutilization: List[Underutilization],
        completed: Dict[str, datetime],
        capacities: CapacityTable,
        initial_sprint_date: datetime,
        sprint_days: int,
        sprint_offset: int = 0,
    ):
        self.epics = epics
        self.allocations = allocations
        self.underutilization = underutilization
        self.completed = completed
        self.capacities = capacities
        self.initial_sprint_date = initial_sprint_date
        self.sprint_days = sprint_days
        self.sprint_offset = sprint_offset

    def sprint_start(self, sprint: int) -> datetime:
        return self.initial_sprint_date + timedelta(days=sprint * self.sprint_days)

    def sprint_end(self, sprint: int) -> datetime:
        return self.sprint_start(sprint) + timedelta(days=self.sprint_days - 1)

    def sprint_indexes(self) -> List[int]:
        """Sprints que receberam alguma alocação (ao menos a sprint 0)"""
        indexes = sorted({a.sprint for a in self.allocations})
        return indexes or [0]

    def resources(self) -> List[str]:
        """Nomes de todos os recursos da tabela de capacity, em ordem alfabética"""
        names: Dict[str, str] = {}
        for sprint_capacities in self.capacities.values():
            for name in sprint_capacities:
                names.setdefault(normalize_name(name), name)
        return sorted(names.values(), key=str.lower)

    def capacity_of(self, sprint: int, resource: str) -> ResourceCapacity:
        key = normalize_name(resource)
        for name, capacity in self.capacities.get(sprint, {}).items():
            if normalize_name(name) == key:
                return capacity
        return ResourceCapacity()

    def hours_by_epic_sprint_resource(self) -> Dict[Tuple[str, int, str], float]:
        """Agrega o ledger por (epic, sprint, recurso)"""
        totals: Dict[Tuple[str, int, str], float] = defaultdict(float)
        for a in self.allocations:
            totals[(a.epic, a.sprint, a.resource)] += a.hours
        return dict(totals)

    def hours_by_epic_sprint(self) -> Dict[Tuple[str, int], float]:
        """Agrega o ledger por (epic, sprint)"""
        totals: Dict[Tuple[str, int], float] = defaultdict(float)
        for a in self.allocations:
            totals[(a.epic, a.sprint)] += a.hours
        return dict(totals)

    def allocated_by_sprint_resource(self) -> Dict[Tuple[int, str], float]:
        """Agrega o ledger por (sprint, recurso normalizado)"""
        totals: Dict[Tuple[int, str], float] = defaultdict(float)
        for a in self.allocations:
            totals[(a.sprint, normalize_name(a.resource))] += a.hours
        return dict(totals)

    def wish_overbooking(self) -> List[Tuple[str, float, List[str]]]:
        """
        Soma os percentuais desejados por recurso

        Returns:
            List[Tuple[str, float, List[str]]]: (recurso, percentual total, detalhes "epic:NN%")
        """
        by_resource: Dict[str, List[Tuple[str, float]]] = {}
        display: Dict[str, str] = {}
        for epic in self.epics:
            for wish in epic.wishes:
                key = normalize_name(wish.resource)
                display.setdefault(key, wish.resource)
                by_resource.setdefault(key, []).append((epic.name, wish.percentage))

        rows = []
        for key in sorted(by_resource):
            entries = by_resource[key]
            total = sum(pct for _, pct in entries)
            details = [f"{name}:{int(pct * 100)}%" for name, pct in entries]
            rows.append((display[key], total, details))
        return rows


class PlanningSimulator:
    """Simulador de alocação de capacity sprint a sprint"""

    def __init__(
        self,
        epics: List[Epic],
        capacities: CapacityTable,
        initial_sprint_date: datetime,
        sprint_days: int,
        max_sprint_count: int,
        only_development_epics: bool = False,
        sprint_offset: int = 0,
    ):
        """
        Inicializa o simulador

        Args:
            epics: Epics a planejar (atualizados in-place durante a simulação)
            capacities: Capacity por sprint e por recurso, já ajustada
            initial_sprint_date: Data de início da sprint 0
            sprint_days: Duração da sprint em dias corridos
            max_sprint_count: Número máximo de sprints simuladas
            only_development_epics: Simula apenas epics em desenvolvimento
            sprint_offset: Número real da sprint 0 (usado nos relatórios)
        """
        self.epics = epics
        self.capacities = capacities
        self.initial_sprint_date = initial_sprint_date
        self.sprint_days = sprint_days
        self.max_sprint_count = max_sprint_count
        self.only_development_epics = only_development_epics
        self.sprint_offset = sprint_offset

        self.gate = ReadinessGate(epics, only_development_epics)
        self.allocations: List[Allocation] = []
        self.underutilization: List[Underutilization] = []
        self.completed: Dict[str, datetime] = {}

        # Epics sem carga entram direto no mapa de conclusão
        for epic in epics:
            if epic.is_done:
                epic.remaining = 0.0
                self.completed[epic.key] = epic.end_date or (
                    initial_sprint_date - timedelta(days=1)
                )

        self._wished_resources = {
            normalize_name(w.resource) for e in epics for w in e.wishes
        }

    def run(self) -> SimulationResult:
        """Executa a simulação completa e retorna o resultado"""
        logger.info(
            f"Iniciando simulação de {len(self.epics)} epics em até {self.max_sprint_count} sprints"
        )

        for sprint in range(self.max_sprint_count):
            if all(e.remaining <= REMAINING_EPS for e in self.epics):
                logger.info(f"Todos os epics concluídos antes da sprint {sprint}")
                break
            self._simulate_sprint(sprint)

        pending = [e.name for e in self.epics if e.remaining > REMAINING_EPS]
        logger.info(
            f"Simulação concluída: {len(self.allocations)} alocações, "
            f"{len(pending)} epics com horas restantes"
        )

        return SimulationResult(
            epics=self.epics,
            allocations=self.allocations,
            underutilization=self.underutilization,
            completed=dict(self.completed),
            capacities=self.capacities,
            initial_sprint_date=self.initial_sprint_date,
            sprint_days=self.sprint_days,
            sprint_offset=self.sprint_offset,
        )

    def sprint_start(self, sprint: int) -> datetime:
        return self.initial_sprint_date + timedelta(days=sprint * self.sprint_days)

    def _simulate_sprint(self, sprint: int) -> None:
        """
        Simula uma sprint: desenvolvimento primeiro, depois análise/pendentes

        Args:
            sprint: Índice da sprint
        """
        sprint_start = self.sprint_start(sprint)
        sprint_end = sprint_start + timedelta(days=self.sprint_days - 1)

        # Cópia da capacity da sprint, indexada pelo nome normalizado do recurso
        resource_remaining: Dict[str, ResourceCapacity] = {}
        resource_names: Dict[str, str] = {}
        for name, capacity in self.capacities.get(sprint, {}).items():
            key = normalize_name(name)
            resource_remaining[key] = capacity.model_copy()
            resource_names[key] = name

        # Os dois conjuntos são calculados antes de qualquer alocação da sprint
        active_dev = [
            e for e in self.epics
            if e.remaining > REMAINING_EPS
            and e.is_in_development
            and self.gate.is_ready(e, sprint_start, self.completed)
        ]
        if self.only_development_epics:
            active_others: List[Epic] = []
        else:
            active_others = [
                e for e in self.epics
                if e.remaining > REMAINING_EPS
                and not e.is_in_development
                and e.is_other_allowed
                and self.gate.is_ready(e, sprint_start, self.completed)
            ]

        logger.debug(
            f"Sprint {sprint} ({sprint_start:%Y-%m-%d} a {sprint_end:%Y-%m-%d}): "
            f"{len(active_dev)} epics em desenvolvimento, {len(active_others)} outros"
        )

        for pool in (active_dev, active_others):
            self._allocate_pool(pool, sprint, sprint_start, resource_remaining, resource_names)

        for key, capacity in resource_remaining.items():
            if capacity.development > REMAINING_EPS:
                reason = (
                    REASON_NO_REMAINING_HOURS
                    if key in self._wished_resources
                    else REASON_NO_ASSIGNED_EPICS
                )
                self.underutilization.append(
                    Underutilization(
                        sprint=sprint,
                        resource=resource_names[key],
                        unused=round(capacity.development, 2),
                        reason=reason,
                    )
                )

    def _allocate_pool(
        self,
        pool: List[Epic],
        sprint: int,
        sprint_start: datetime,
        resource_remaining: Dict[str, ResourceCapacity],
        resource_names: Dict[str, str],
    ) -> None:
        """Distribui a capacity restante entre os epics de um conjunto"""
        if not pool:
            return

        # Pedidos por recurso, na ordem em que aparecem
        requests: Dict[str, List[Tuple[Epic, float]]] = {}
        for epic in pool:
            for wish in epic.wishes:
                key = normalize_name(wish.resource)
                if key not in resource_remaining or wish.percentage <= 0:
                    continue
                desired = resource_remaining[key].development * wish.percentage
                requests.setdefault(key, []).append((epic, desired))

        for key, reqs in requests.items():
            available = resource_remaining[key].development
            tiers: Dict[int, List[Tuple[Epic, float]]] = {}
            for epic, desired in reqs:
                tiers.setdefault(epic.priority.value, []).append((epic, desired))

            for priority in sorted(tiers, reverse=True):
                if available <= REMAINING_EPS:
                    break

                tier = tiers[priority]
                if len(tier) == 1:
                    epic, _ = tier[0]
                    hours = min(available, epic.remaining)
                    if hours > ALLOC_EPS:
                        self._commit(epic, sprint, resource_names[key], hours, sprint_start)
                        available -= hours
                        resource_remaining[key].development -= hours
                    continue

                # Divisão proporcional ao desejado, sobre a disponibilidade do início do nível
                tier_available = available
                total_desired = sum(desired for _, desired in tier)
                for epic, desired in tier:
                    if available <= REMAINING_EPS:
                        break
                    if total_desired > ALLOC_EPS:
                        share = desired / total_desired
                    else:
                        share = 1.0 / len(tier)
                    hours = min(tier_available * share, epic.remaining, available)
                    if hours <= ALLOC_EPS:
                        continue
                    self._commit(epic, sprint, resource_names[key], hours, sprint_start)
                    available -= hours
                    resource_remaining[key].development -= hours

        # Sobras vão para quem ainda deseja o recurso, na ordem do conjunto
        for key, capacity in resource_remaining.items():
            leftover = capacity.development
            if leftover <= REMAINING_EPS:
                continue

            candidates = [
                e for e in pool
                if e.wishes_resource(key) and e.remaining > REMAINING_EPS
            ]
            for epic in candidates:
                if leftover <= REMAINING_EPS:
                    break
                hours = min(leftover, epic.remaining)
                if hours <= ALLOC_EPS:
                    continue
                self._commit(epic, sprint, resource_names[key], hours, sprint_start)
                leftover -= hours
                capacity.development -= hours

    def _commit(
        self,
        epic: Epic,
        sprint: int,
        resource: str,
        hours: float,
        sprint_start: datetime,
    ) -> None:
        """Registra uma alocação e atualiza o estado do epic"""
        allocation = Allocation(
            epic=epic.name,
            sprint=sprint,
            resource=resource,
            hours=hours,
            sprint_start=sprint_start,
        )
        epic.remaining -= hours
        epic.history.append(allocation)
        self.allocations.append(allocation)

        if epic.start_date is None:
            epic.start_date = sprint_start

        if epic.remaining <= REMAINING_EPS:
            epic.remaining = 0.0
            epic.end_date = sprint_start
            self.completed[epic.key] = sprint_start
            logger.info(f"Epic {epic.name} concluído na sprint {sprint} ({sprint_start:%Y-%m-%d})")


def simulate(
    epics: List[Epic],
    capacities: CapacityTable,
    initial_sprint_date: datetime,
    sprint_days: int,
    max_sprint_count: int,
    only_development_epics: bool = False,
    sprint_offset: int = 0,
) -> SimulationResult:
    """Executa uma simulação completa sobre um snapshot de entrada"""
    simulator = PlanningSimulator(
        epics,
        capacities,
        initial_sprint_date,
        sprint_days,
        max_sprint_count,
        only_development_epics=only_development_epics,
        sprint_offset=sprint_offset,
    )
    return simulator.run()
