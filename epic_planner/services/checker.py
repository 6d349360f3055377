from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional
from loguru import logger
import openpyxl
from openpyxl.formatting.rule import FormulaRule
from openpyxl.styles import PatternFill, Font

from ..models.entities import ResourcePlannedHours, SprintEpicSummary, normalize_name
from .report import write_table
from .simulator import SimulationResult

UNDER_THRESHOLD = 0.05
OVER_THRESHOLD = 0.15
RELIABILITY_THRESHOLD = 0.8
USAGE_RANGE = (0.8, 1.2)

RED_FILL = PatternFill(start_color='F08080', end_color='F08080', fill_type='solid')
YELLOW_FILL = PatternFill(start_color='FFFFE0', end_color='FFFFE0', fill_type='solid')


class CheckerMode(str, Enum):
    """Tipos de verificação disponíveis"""
    COMPARISON = "comparacao"
    EPICS = "epicos"


class ResourceComparison:
    """Capacity de um recurso na sprint corrente contra as horas planejadas"""

    def __init__(self, resource: str, capacity: float, planned: Optional[ResourcePlannedHours]):
        self.resource = resource
        self.capacity = capacity
        self.planned_epic = planned.epic_hours if planned else 0.0
        self.planned_non_epic = planned.outside_epic_hours if planned else 0.0
        self.planned_total = planned.total_hours if planned else 0.0

    @property
    def diff(self) -> float:
        return self.capacity - self.planned_total

    @property
    def is_under(self) -> bool:
        """Planejado acima da capacity em mais de 5%"""
        return self.diff < 0 and self.capacity > 0 and abs(self.diff) / self.capacity > UNDER_THRESHOLD

    @property
    def is_over(self) -> bool:
        """Capacity ociosa acima de 15%"""
        return self.diff > 0 and self.capacity > 0 and self.diff / self.capacity > OVER_THRESHOLD


class EpicCheck:
    """Linha da verificação de epics (previsto x realizado na sprint corrente)"""

    def __init__(self, summary: SprintEpicSummary, initial_remaining: Optional[float], planned_capacity: float):
        self.epic = summary.epic
        self.initial_remaining = round(initial_remaining, 2) if initial_remaining is not None else None
        self.planned_capacity = round(planned_capacity, 2)
        self.consumed = round(summary.consumed, 2)
        self.actual_remaining = round(summary.remaining, 2)
        self.expected_remaining = round(summary.expected_remaining, 2)
        self.overhead_hours = round(summary.overhead_hours, 2)
        self.overhead_ratio = round(summary.overhead_ratio, 4)

    @property
    def projected_remaining(self) -> float:
        if self.initial_remaining is None:
            return self.actual_remaining
        return max(0.0, self.initial_remaining - self.planned_capacity)

    @property
    def delta_remaining(self) -> Optional[float]:
        if self.initial_remaining is None:
            return None
        return self.initial_remaining - self.actual_remaining

    @property
    def reliability_rate(self) -> Optional[float]:
        if self.initial_remaining is None:
            return None
        error = abs(self.projected_remaining - self.actual_remaining)
        if self.planned_capacity <= 0:
            base = max(abs(self.projected_remaining), 0.0001)
        else:
            base = self.planned_capacity
        return min(1.0, max(0.0, 1.0 - error / base))

    @property
    def usage_rate(self) -> float:
        if self.planned_capacity <= 0:
            return 1.0 if self.consumed <= 0 else 2.0
        return self.consumed / self.planned_capacity

    @property
    def is_unreliable(self) -> bool:
        rate = self.reliability_rate
        return rate is not None and rate < RELIABILITY_THRESHOLD

    @property
    def is_usage_off(self) -> bool:
        low, high = USAGE_RANGE
        return not low <= self.usage_rate <= high


class PlanChecker:
    """Compara o planejamento simulado com as horas planejadas e consumidas da sprint corrente"""

    def __init__(
        self,
        result: SimulationResult,
        planned_hours: Optional[Dict[str, ResourcePlannedHours]] = None,
        epic_summaries: Optional[List[SprintEpicSummary]] = None,
        sprint_offset: Optional[int] = None,
        planned_capacity_by_epic: Optional[Dict[str, float]] = None,
    ):
        """
        Inicializa o verificador

        Args:
            result: Resultado da simulação
            planned_hours: Horas planejadas por recurso
            epic_summaries: Resumo realizado de cada epic na sprint
            sprint_offset: Número real da sprint 0 (padrão: o da simulação)
            planned_capacity_by_epic: Capacity planejada por epic lida de um planejamento anterior
        """
        self.result = result
        self.planned_hours = {normalize_name(k): v for k, v in (planned_hours or {}).items()}
        self.epic_summaries = epic_summaries or []
        self.sprint_offset = result.sprint_offset if sprint_offset is None else sprint_offset
        self.planned_capacity_by_epic = {
            normalize_name(k): v for k, v in (planned_capacity_by_epic or {}).items()
        }

    def compare_resources(self) -> List[ResourceComparison]:
        """Compara a capacity da primeira sprint com as horas planejadas de cada recurso"""
        rows = []
        for name, capacity in sorted(self.result.capacities.get(0, {}).items(), key=lambda kv: kv[0].lower()):
            planned = self.planned_hours.get(normalize_name(name))
            rows.append(ResourceComparison(name, capacity.development, planned))
        return rows

    def check_epics(self) -> List[EpicCheck]:
        """Calcula os indicadores de cada epic com resumo na sprint corrente"""
        initial_by_epic: Dict[str, float] = {}
        for epic in self.result.epics:
            initial_by_epic.setdefault(epic.key, epic.charge)

        warned = set()
        rows = []
        for summary in sorted(self.epic_summaries, key=lambda s: s.epic.lower()):
            key = normalize_name(summary.epic)
            planned_capacity = summary.planned_capacity
            if self.planned_capacity_by_epic:
                if key in self.planned_capacity_by_epic:
                    planned_capacity = self.planned_capacity_by_epic[key]
                elif key not in warned:
                    warned.add(key)
                    logger.warning(
                        f"Capacity planejada do epic {summary.epic} não encontrada no planejamento, "
                        f"usando a estimativa informada"
                    )
            if planned_capacity != summary.planned_capacity:
                summary = summary.model_copy(update={"planned_capacity": planned_capacity})
            rows.append(EpicCheck(summary, initial_by_epic.get(key), planned_capacity))
        return rows

    def _write_comparison(self, wb: openpyxl.Workbook) -> None:
        ws = wb.active
        ws.title = f"Sprint{self.sprint_offset}Comparison"
        rows = self.compare_resources()
        write_table(
            ws,
            ["Resource", "Capacity_h", "Planned_epic_h", "Planned_non_epic_h", "Planned_total_h", "Diff_h"],
            [
                [r.resource, r.capacity, r.planned_epic, r.planned_non_epic, r.planned_total, round(r.diff, 2)]
                for r in rows
            ],
        )

        if not rows:
            ws.cell(row=2, column=1, value="Nenhuma hora planejada disponível.")
            return

        last_row = len(rows) + 1
        ws.conditional_formatting.add(
            f"F2:F{last_row}",
            FormulaRule(formula=["AND(F2<0,ABS(F2)/B2>0.05)"], fill=RED_FILL, font=Font(color='8B0000')),
        )
        ws.conditional_formatting.add(
            f"F2:F{last_row}",
            FormulaRule(formula=["AND(F2>0,F2/B2>0.15)"], fill=YELLOW_FILL, font=Font(color='FF8C00')),
        )

    def _write_epics(self, wb: openpyxl.Workbook) -> None:
        ws = wb.active
        ws.title = f"Sprint{self.sprint_offset}EpicCheck"
        rows = self.check_epics()
        write_table(
            ws,
            ["Epic", "Initial_remaining_h", "Planned_capacity_h", "Consumed_h", "Actual_remaining_h",
             "Projected_remaining_h", "Delta_remaining_h", "Planning_reliability_rate", "Capacity_usage_rate",
             "Expected_remaining_h", "Overhead_h", "Overhead_ratio"],
            [
                [r.epic, r.initial_remaining, r.planned_capacity, r.consumed, r.actual_remaining,
                 r.projected_remaining, r.delta_remaining, r.reliability_rate, r.usage_rate,
                 r.expected_remaining, r.overhead_hours, r.overhead_ratio]
                for r in rows
            ],
        )

        if not rows:
            ws.cell(row=2, column=1, value="Nenhum dado de epic disponível para a sprint.")
            return

        last_row = len(rows) + 1
        for row in range(2, last_row + 1):
            ws.cell(row=row, column=8).number_format = '0.00%'
            ws.cell(row=row, column=9).number_format = '0.00%'
            ws.cell(row=row, column=12).number_format = '0.00%'
        ws.conditional_formatting.add(
            f"H2:H{last_row}",
            FormulaRule(formula=['AND($H2<>"",$H2<0.8)'], fill=YELLOW_FILL, font=Font(color='FF8C00')),
        )
        ws.conditional_formatting.add(
            f"I2:I{last_row}",
            FormulaRule(formula=['AND($I2<>"",OR($I2<0.8,$I2>1.2))'], fill=RED_FILL, font=Font(color='8B0000')),
        )

    def export(self, output_dir: str, mode: CheckerMode) -> Path:
        """
        Exporta a planilha de verificação

        Args:
            output_dir: Diretório de saída
            mode: Tipo de verificação

        Returns:
            Path: Caminho da planilha gerada
        """
        output = Path(output_dir)
        output.mkdir(parents=True, exist_ok=True)

        wb = openpyxl.Workbook()
        if mode == CheckerMode.COMPARISON:
            self._write_comparison(wb)
            path = output / "CheckerReport_Comparison.xlsx"
        else:
            self._write_epics(wb)
            path = output / "CheckerReport_EpicStates.xlsx"

        wb.save(str(path))
        logger.info(f"Relatório de verificação gerado em {path}")
        return path
