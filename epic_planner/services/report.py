import re
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from xml.sax.saxutils import escape
from loguru import logger
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import cm
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, TableStyle, LongTable
from reportlab.lib.enums import TA_LEFT, TA_CENTER
import openpyxl
from openpyxl.styles import PatternFill, Font, Alignment
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from ..models.entities import Epic, normalize_name
from .simulator import SimulationResult

EPIC_KEY_PATTERN = re.compile(r"(\d{4})[-_ ]+(\d{1,3})")
EPIC_YEAR_PATTERN = re.compile(r"(\d{4})")

HEADER_FILL = PatternFill(start_color='FF6B00', end_color='FF6B00', fill_type='solid')  # Laranja
HEADER_FONT = Font(bold=True, color='FFFFFF')


def extract_epic_key(name: str) -> Tuple[int, int]:
    """
    Extrai a chave de ordenação (ano, número) do nome do epic

    Exemplos: "2024-12 Login" -> (2024, 12); "Epic 2023" -> (2023, 0);
    nomes sem ano vão para o fim -> (9999, 9999).
    """
    match = EPIC_KEY_PATTERN.search(name or "")
    if match:
        return int(match.group(1)), int(match.group(2))
    match = EPIC_YEAR_PATTERN.search(name or "")
    if match:
        return int(match.group(1)), 0
    return 9999, 9999


def _format_date(date: Optional[datetime], fmt: str = '%d/%m/%Y') -> str:
    return date.strftime(fmt) if date else '-'


def write_table(ws: Worksheet, headers: List[str], rows: List[List]) -> None:
    """Escreve cabeçalho e linhas em uma aba, ajustando a largura das colunas"""
    ws.append(headers)
    for col in range(1, len(headers) + 1):
        header_cell = ws.cell(row=1, column=col)
        header_cell.fill = HEADER_FILL
        header_cell.font = HEADER_FONT
        header_cell.alignment = Alignment(horizontal='center')

    for row in rows:
        ws.append(row)

    for col, header in enumerate(headers, start=1):
        values = [header] + [row[col - 1] for row in rows]
        width = max(len(str(v)) for v in values if v is not None) + 2
        ws.column_dimensions[get_column_letter(col)].width = min(width, 60)


class ReportGenerator:
    """Serviço responsável pela geração dos relatórios de planejamento"""

    def __init__(self, result: SimulationResult, output_dir: str, sprint_offset: Optional[int] = None):
        """
        Inicializa o gerador de relatórios

        Args:
            result: Resultado da simulação
            output_dir: Diretório de saída dos relatórios
            sprint_offset: Número real da sprint 0 (padrão: o da simulação)
        """
        self.result = result
        self.output_dir = Path(output_dir)
        self.sprint_offset = result.sprint_offset if sprint_offset is None else sprint_offset

        # Cria o diretório de saída se não existir
        self.output_dir.mkdir(parents=True, exist_ok=True)

        # Define os estilos do PDF
        self.styles = getSampleStyleSheet()
        self._setup_styles()

    def _setup_styles(self):
        """Configura estilos personalizados para o relatório"""
        self.styles.add(ParagraphStyle(
            name='CustomTitle',
            parent=self.styles['Title'],
            fontSize=16,
            spaceAfter=30,
            textColor=colors.HexColor('#FF6B00'),  # Laranja
            alignment=TA_CENTER
        ))

        self.styles.add(ParagraphStyle(
            name='CustomHeading1',
            parent=self.styles['Heading1'],
            fontSize=14,
            spaceAfter=12,
            textColor=colors.HexColor('#FF6B00'),
            alignment=TA_LEFT
        ))

        self.styles.add(ParagraphStyle(
            name='NormalWrap',
            parent=self.styles['Normal'],
            fontSize=10,
            leading=12,
            spaceAfter=6,
            alignment=TA_LEFT
        ))

        self.styles.add(ParagraphStyle(
            name='TableCell',
            parent=self.styles['Normal'],
            fontSize=8,
            leading=10,
            alignment=TA_LEFT
        ))

        self.styles.add(ParagraphStyle(
            name='TableHeader',
            parent=self.styles['Normal'],
            fontSize=8,
            leading=10,
            alignment=TA_LEFT,
            fontName='Helvetica-Bold',
            textColor=colors.white
        ))

    def _create_table_style(self, header_bg_color=colors.HexColor('#FF6B00')):
        """Cria um estilo padrão para as tabelas"""
        return TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), header_bg_color),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
            ('ALIGN', (0, 0), (-1, -1), 'LEFT'),
            ('GRID', (0, 0), (-1, -1), 1, colors.black),
            ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
            ('LEFTPADDING', (0, 0), (-1, -1), 4),
            ('RIGHTPADDING', (0, 0), (-1, -1), 4),
            ('TOPPADDING', (0, 0), (-1, -1), 4),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 4),
            ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, colors.HexColor('#FFF5EB')]),  # Branco e laranja muito claro
        ])

    def _sprint_number(self, sprint: int) -> int:
        return sprint + self.sprint_offset

    def _sorted_epics(self) -> List[Epic]:
        """Epics ordenados por data de início e depois pela chave extraída do nome"""
        return sorted(
            self.result.epics,
            key=lambda e: (e.start_date or datetime.max, extract_epic_key(e.name)),
        )

    def final_schedule_rows(self) -> List[Tuple]:
        """Linhas do cronograma final: epic, estado, prioridade, carga, alocado, restante, início, fim"""
        rows = []
        for epic in self._sorted_epics():
            rows.append((
                epic.name,
                epic.state,
                epic.priority.label,
                epic.charge,
                round(epic.allocated_hours, 2),
                round(max(0.0, epic.remaining), 2),
                epic.start_date,
                epic.end_date,
            ))
        return rows

    def per_sprint_rows(self) -> List[Tuple[int, datetime, datetime, float, float, float]]:
        """Utilização total de desenvolvimento por sprint: (sprint, início, fim, alocado, capacity, %)"""
        allocated = self.result.allocated_by_sprint_resource()
        rows = []
        for sprint in self.result.sprint_indexes():
            total_allocated = round(sum(h for (s, _), h in allocated.items() if s == sprint), 2)
            total_capacity = round(
                sum(c.development for c in self.result.capacities.get(sprint, {}).values()), 2
            )
            pct = round(total_allocated / total_capacity * 100.0, 2) if total_capacity > 0 else 0.0
            rows.append((
                sprint,
                self.result.sprint_start(sprint),
                self.result.sprint_end(sprint),
                total_allocated,
                total_capacity,
                pct,
            ))
        return rows

    def _sorted_underutilization(self):
        return sorted(self.result.underutilization, key=lambda u: (u.sprint, u.resource.lower()))

    def _generate_markdown(self) -> str:
        """Gera o conteúdo do relatório em Markdown"""
        result = self.result
        last_sprint = max(result.sprint_indexes())
        report = []

        report.append("# Relatório de Planejamento de Epics")
        report.append("")

        # 1. Resumo Geral
        pending = [e for e in result.epics if e.remaining > 0]
        report.append("## 1. Resumo Geral")
        report.append("")
        report.append(f"- **Primeira sprint:** {self._sprint_number(0)} ({_format_date(result.sprint_start(0))})")
        report.append(f"- **Última sprint com alocação:** {self._sprint_number(last_sprint)} ({_format_date(result.sprint_end(last_sprint))})")
        report.append(f"- **Total de Epics:** {len(result.epics)}")
        report.append(f"- **Epics sem conclusão prevista:** {len(pending)}")
        report.append("")

        # 2. Cronograma Final
        report.append("## 2. Cronograma Final")
        report.append("")
        report.append("| Epic | Estado | Prioridade | Carga | Alocado | Restante | Início | Fim |")
        report.append("|------|--------|------------|-------|---------|----------|--------|-----|")
        for name, state, priority, charge, allocated, remaining, start, end in self.final_schedule_rows():
            report.append(
                f"| {name} | {state or '-'} | {priority} | {charge:.1f}h | {allocated:.1f}h | "
                f"{remaining:.1f}h | {_format_date(start)} | {_format_date(end)} |"
            )
        report.append("")

        # 3. Utilização por Sprint
        report.append("## 3. Utilização por Sprint")
        report.append("")
        report.append("| Sprint | Início | Fim | Alocado | Capacity | Utilização |")
        report.append("|--------|--------|-----|---------|----------|------------|")
        for sprint, start, end, allocated, capacity, pct in self.per_sprint_rows():
            report.append(
                f"| {self._sprint_number(sprint)} | {_format_date(start)} | {_format_date(end)} | "
                f"{allocated:.1f}h | {capacity:.1f}h | {pct:.2f}% |"
            )
        report.append("")

        # 4. Capacity não utilizada
        underutilization = self._sorted_underutilization()
        if underutilization:
            report.append("## 4. Capacity Não Utilizada")
            report.append("")
            report.append("| Sprint | Recurso | Horas | Motivo |")
            report.append("|--------|---------|-------|--------|")
            for entry in underutilization:
                report.append(
                    f"| {self._sprint_number(entry.sprint)} | {entry.resource} | {entry.unused:.2f}h | {entry.reason} |"
                )
            report.append("")

        # 5. Recursos com desejos acima de 100%
        overbooked = [row for row in result.wish_overbooking() if row[1] > 1.0]
        if overbooked:
            report.append("## 5. Recursos Sobrecarregados")
            report.append("")
            report.append("| Recurso | Total Desejado | Epics |")
            report.append("|---------|----------------|-------|")
            for resource, total, details in overbooked:
                report.append(f"| {resource} | {total * 100:.1f}% | {'; '.join(details)} |")
            report.append("")

        return "\n".join(report)

    def _generate_pdf(self, pdf_path: Path) -> None:
        """Gera o relatório em PDF com as mesmas seções do Markdown"""
        doc = SimpleDocTemplate(
            str(pdf_path),
            pagesize=landscape(A4),
            rightMargin=1.5*cm,
            leftMargin=1.5*cm,
            topMargin=1.5*cm,
            bottomMargin=1.5*cm
        )
        available_width = doc.width
        cell = self.styles['TableCell']
        header = self.styles['TableHeader']

        elements = []
        elements.append(Paragraph("Relatório de Planejamento de Epics", self.styles['CustomTitle']))
        elements.append(Spacer(1, 12))

        # 1. Resumo Geral
        result = self.result
        last_sprint = max(result.sprint_indexes())
        elements.append(Paragraph("1. Resumo Geral", self.styles['CustomHeading1']))
        elements.append(Paragraph(
            f"Período: sprint {self._sprint_number(0)} ({_format_date(result.sprint_start(0))}) "
            f"a sprint {self._sprint_number(last_sprint)} ({_format_date(result.sprint_end(last_sprint))})",
            self.styles['NormalWrap']
        ))
        elements.append(Paragraph(f"Total de Epics: {len(result.epics)}", self.styles['NormalWrap']))
        elements.append(Spacer(1, 12))

        # 2. Cronograma Final
        elements.append(Paragraph("2. Cronograma Final", self.styles['CustomHeading1']))
        schedule_data = [[Paragraph(h, header) for h in (
            'Epic', 'Estado', 'Prioridade', 'Carga', 'Alocado', 'Restante', 'Início', 'Fim'
        )]]
        for name, state, priority, charge, allocated, remaining, start, end in self.final_schedule_rows():
            schedule_data.append([
                Paragraph(escape(name), cell),
                Paragraph(escape(state or "-"), cell),
                priority,
                f"{charge:.1f}h",
                f"{allocated:.1f}h",
                f"{remaining:.1f}h",
                _format_date(start),
                _format_date(end),
            ])
        schedule_table = LongTable(
            schedule_data,
            colWidths=[available_width * w for w in (0.30, 0.14, 0.09, 0.08, 0.08, 0.08, 0.115, 0.115)],
            repeatRows=1
        )
        schedule_table.setStyle(self._create_table_style())
        elements.append(schedule_table)
        elements.append(Spacer(1, 12))

        # 3. Utilização por Sprint
        elements.append(Paragraph("3. Utilização por Sprint", self.styles['CustomHeading1']))
        sprint_data = [[Paragraph(h, header) for h in (
            'Sprint', 'Início', 'Fim', 'Alocado', 'Capacity', 'Utilização'
        )]]
        for sprint, start, end, allocated, capacity, pct in self.per_sprint_rows():
            sprint_data.append([
                str(self._sprint_number(sprint)),
                _format_date(start),
                _format_date(end),
                f"{allocated:.1f}h",
                f"{capacity:.1f}h",
                f"{pct:.2f}%",
            ])
        sprint_table = LongTable(sprint_data, colWidths=[available_width / 6] * 6, repeatRows=1)
        sprint_table.setStyle(self._create_table_style())
        elements.append(sprint_table)
        elements.append(Spacer(1, 12))

        # 4. Capacity não utilizada
        underutilization = self._sorted_underutilization()
        if underutilization:
            elements.append(Paragraph("4. Capacity Não Utilizada", self.styles['CustomHeading1']))
            under_data = [[Paragraph(h, header) for h in ('Sprint', 'Recurso', 'Horas', 'Motivo')]]
            for entry in underutilization:
                under_data.append([
                    str(self._sprint_number(entry.sprint)),
                    Paragraph(escape(entry.resource), cell),
                    f"{entry.unused:.2f}h",
                    Paragraph(entry.reason, cell),
                ])
            under_table = LongTable(
                under_data,
                colWidths=[available_width * w for w in (0.1, 0.3, 0.15, 0.45)],
                repeatRows=1
            )
            under_table.setStyle(self._create_table_style())
            elements.append(under_table)
            elements.append(Spacer(1, 12))

        # 5. Recursos com desejos acima de 100%
        overbooked = [row for row in result.wish_overbooking() if row[1] > 1.0]
        if overbooked:
            elements.append(Paragraph("5. Recursos Sobrecarregados", self.styles['CustomHeading1']))
            over_data = [[Paragraph(h, header) for h in ('Recurso', 'Total Desejado', 'Epics')]]
            for resource, total, details in overbooked:
                over_data.append([
                    Paragraph(escape(resource), cell),
                    f"{total * 100:.1f}%",
                    Paragraph(escape("; ".join(details)), cell),
                ])
            over_table = LongTable(
                over_data,
                colWidths=[available_width * w for w in (0.25, 0.15, 0.6)],
                repeatRows=1
            )
            over_table.setStyle(self._create_table_style())
            elements.append(over_table)

        doc.build(elements)
        logger.info(f"Relatório PDF gerado em {pdf_path}")

    def _generate_excel(self, excel_path: Path) -> None:
        """Gera a planilha de planejamento com todas as visões do ledger"""
        result = self.result
        wb = openpyxl.Workbook()
        ws_final = wb.active
        ws_final.title = "FinalSchedule"

        write_table(
            ws_final,
            ["Epic", "State", "Priority", "Initial_Charge_h", "Allocated_total_h",
             "Remaining_after_h", "Start_date", "End_date"],
            [
                [name, state, priority, charge, allocated, remaining,
                 start.strftime('%Y-%m-%d') if start else "",
                 end.strftime('%Y-%m-%d') if end else ""]
                for name, state, priority, charge, allocated, remaining, start, end
                in self.final_schedule_rows()
            ],
        )

        by_resource = sorted(
            result.hours_by_epic_sprint_resource().items(),
            key=lambda kv: (kv[0][1], extract_epic_key(kv[0][0]), kv[0][2].lower()),
        )
        write_table(
            wb.create_sheet("AllocationsByEpicAndSprint"),
            ["Epic", "Sprint", "Resource", "Hours"],
            [
                [epic, self._sprint_number(sprint), resource, round(hours, 2)]
                for (epic, sprint, resource), hours in by_resource
            ],
        )

        by_sprint = sorted(
            result.hours_by_epic_sprint().items(),
            key=lambda kv: (kv[0][1], extract_epic_key(kv[0][0])),
        )
        write_table(
            wb.create_sheet("AllocationsByEpicPerSprint"),
            ["Epic", "Sprint", "Sprint_start", "Total_Hours"],
            [
                [epic, self._sprint_number(sprint),
                 result.sprint_start(sprint).strftime('%Y-%m-%d'), round(hours, 2)]
                for (epic, sprint), hours in by_sprint
            ],
        )

        verification = []
        for epic in self._sorted_epics():
            allocated = round(epic.allocated_hours, 2)
            verification.append([epic.name, epic.charge, allocated, round(epic.charge - allocated, 2)])
        write_table(
            wb.create_sheet("Verification"),
            ["Epic", "Initial_Charge_h", "Allocated_total_h", "Delta_h"],
            verification,
        )

        resources = result.resources()
        sprint_indexes = result.sprint_indexes()
        allocated_by = result.allocated_by_sprint_resource()

        headers = ["Sprint", "Sprint_start", "Sprint_end"]
        for resource in resources:
            headers.extend([f"{resource}_allocated_h", f"{resource}_capacity_h", f"{resource}_util_pct"])
        summary = []
        for sprint in sprint_indexes:
            row = [
                self._sprint_number(sprint),
                result.sprint_start(sprint).strftime('%Y-%m-%d'),
                result.sprint_end(sprint).strftime('%Y-%m-%d'),
            ]
            for resource in resources:
                allocated = round(allocated_by.get((sprint, normalize_name(resource)), 0.0), 2)
                capacity = result.capacity_of(sprint, resource).development
                pct = round(allocated / capacity * 100.0, 2) if capacity > 0 else 0.0
                row.extend([allocated, capacity, pct])
            summary.append(row)
        write_table(wb.create_sheet("PerSprintSummary"), headers, summary)

        write_table(
            wb.create_sheet("Underutilization"),
            ["Sprint", "Resource", "Unused_h", "Reason"],
            [
                [self._sprint_number(u.sprint), u.resource, u.unused, u.reason]
                for u in self._sorted_underutilization()
            ],
        )

        write_table(
            wb.create_sheet("OverBooking"),
            ["Resource", "Total_wish_pct", "Over_100pct", "Details"],
            [
                [resource, round(total * 100, 1), total > 1.0, "; ".join(details)]
                for resource, total, details in result.wish_overbooking()
            ],
        )

        write_table(
            wb.create_sheet("MaintenanceCapacities"),
            ["Sprint", "Resource", "Maintenance_h"],
            [
                [self._sprint_number(sprint), resource, result.capacity_of(sprint, resource).maintenance]
                for sprint in sprint_indexes
                for resource in resources
            ],
        )

        write_table(
            wb.create_sheet("AnalysisCapacities"),
            ["Sprint", "Resource", "Analysis_h"],
            [
                [self._sprint_number(sprint), resource, result.capacity_of(sprint, resource).analysis]
                for sprint in sprint_indexes
                for resource in resources
            ],
        )

        wb.save(str(excel_path))
        logger.info(f"Relatório Excel gerado em {excel_path}")

    def generate(self, base_name: str = "planejamento") -> Dict[str, Path]:
        """
        Gera os relatórios em Markdown, PDF e Excel

        Args:
            base_name: Nome base dos arquivos gerados

        Returns:
            Dict[str, Path]: Caminho de cada relatório gerado, por formato
        """
        markdown_path = self.output_dir / f"{base_name}.md"
        markdown_path.write_text(self._generate_markdown(), encoding='utf-8')
        logger.info(f"Relatório Markdown gerado em {markdown_path}")

        pdf_path = self.output_dir / f"{base_name}.pdf"
        self._generate_pdf(pdf_path)

        excel_path = self.output_dir / f"{base_name}.xlsx"
        self._generate_excel(excel_path)

        return {"markdown": markdown_path, "pdf": pdf_path, "excel": excel_path}
