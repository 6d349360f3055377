from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional
from loguru import logger

from ..models.entities import CapacityTable, ResourceCapacity, normalize_name
from ..models.config import Absence


def is_weekend(date: datetime) -> bool:
    """Verifica se a data cai em um sábado ou domingo"""
    # 5 = Sábado, 6 = Domingo
    return date.weekday() >= 5


def is_holiday(date: datetime, holidays: Optional[Iterable[datetime]]) -> bool:
    """Verifica se a data é um feriado"""
    if not holidays:
        return False
    return any(h.date() == date.date() for h in holidays)


def count_working_days(
    start_date: datetime,
    end_date: datetime,
    holidays: Optional[Iterable[datetime]] = None,
) -> int:
    """
    Conta o número de dias úteis entre duas datas (inclusivas), excluindo finais de semana e feriados

    Args:
        start_date: Data inicial
        end_date: Data final
        holidays: Feriados a desconsiderar

    Returns:
        int: Número de dias úteis
    """
    holidays = list(holidays or [])
    if end_date.date() < start_date.date():
        return 0

    working_days = 0
    current_date = datetime.combine(start_date.date(), datetime.min.time())
    while current_date.date() <= end_date.date():
        if not is_weekend(current_date) and not is_holiday(current_date, holidays):
            working_days += 1
        current_date += timedelta(days=1)
    return working_days


def count_working_days_overlap(
    absence_start: datetime,
    absence_end: datetime,
    sprint_start: datetime,
    sprint_end: datetime,
    holidays: Optional[Iterable[datetime]] = None,
) -> int:
    """Conta os dias úteis de uma ausência que caem dentro da sprint"""
    start = max(absence_start.date(), sprint_start.date())
    end = min(absence_end.date(), sprint_end.date())
    if end < start:
        return 0
    return count_working_days(
        datetime.combine(start, datetime.min.time()),
        datetime.combine(end, datetime.min.time()),
        holidays,
    )


def build_sprint_capacities(
    base_capacities: Dict[str, ResourceCapacity],
    absences: Dict[str, List[Absence]],
    initial_sprint_date: datetime,
    sprint_days: int,
    sprint_capacity_days: int,
    max_sprint_count: int,
    holidays: Optional[List[datetime]] = None,
) -> CapacityTable:
    """
    Monta a tabela de capacity por sprint, ajustada por feriados e ausências

    A capacity base de cada recurso corresponde a uma sprint cheia de
    `sprint_capacity_days` dias úteis; sprints com menos dias úteis são
    reduzidas proporcionalmente e cada ausência desconta seus dias úteis.

    Args:
        base_capacities: Capacity base por recurso
        absences: Ausências por recurso
        initial_sprint_date: Data de início da primeira sprint
        sprint_days: Duração da sprint em dias corridos
        sprint_capacity_days: Dias úteis de referência da capacity base
        max_sprint_count: Quantidade de sprints a gerar
        holidays: Feriados

    Returns:
        CapacityTable: Capacity por sprint e por recurso
    """
    holidays = holidays or []
    # Normaliza as chaves do dicionário de ausências para lowercase
    absences_by_key = {normalize_name(k): v for k, v in absences.items()}

    table: CapacityTable = {}
    for sprint in range(max_sprint_count):
        sprint_start = initial_sprint_date + timedelta(days=sprint * sprint_days)
        sprint_end = sprint_start + timedelta(days=sprint_days - 1)
        working_days = count_working_days(sprint_start, sprint_end, holidays)
        scale = working_days / sprint_capacity_days

        sprint_capacities: Dict[str, ResourceCapacity] = {}
        for name, base in base_capacities.items():
            capacity = base.model_copy()
            capacity.scale(scale)

            for absence in absences_by_key.get(normalize_name(name), []):
                absent_days = count_working_days_overlap(
                    absence.start_date, absence.end_date, sprint_start, sprint_end, holidays
                )
                if absent_days > 0 and working_days > 0:
                    capacity.adapt_to_absences(working_days, absent_days)

            capacity.round_up()
            sprint_capacities[name] = capacity

        table[sprint] = sprint_capacities
        logger.debug(
            f"Sprint {sprint} ({sprint_start:%Y-%m-%d}): {working_days} dias úteis, "
            f"escala {scale:.2f}"
        )

    return table
