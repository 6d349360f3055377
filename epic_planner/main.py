import json
from pathlib import Path
from zipfile import BadZipFile
import typer
from loguru import logger
from openpyxl.utils.exceptions import InvalidFileException
from rich.console import Console

from epic_planner.models.config import SetupConfig
from epic_planner.services.checker import CheckerMode, PlanChecker
from epic_planner.services.loader import PlanningDataLoader
from epic_planner.services.report import ReportGenerator

# Erros de entrada e saída tratados pelos comandos
INPUT_ERRORS = (OSError, ValueError, InvalidFileException, BadZipFile)

app = typer.Typer(help="Planejador de Epics - Simulação de capacity por sprint")
console = Console()


def configurar_logger(output_dir: Path = Path("logs")):
    """Configura o sistema de logs"""
    output_dir.mkdir(parents=True, exist_ok=True)

    logger.remove()  # Remove handlers padrão
    logger.add(
        output_dir / "planejador_{time}.log",
        rotation="1 day",
        retention="7 days",
        level="INFO",
        encoding='utf-8'
    )
    logger.add(lambda msg: console.print(msg, style="blue", end=""), level="INFO")


def load_json_file(path: Path) -> dict:
    """
    Carrega um arquivo JSON

    Args:
        path: Caminho do arquivo

    Returns:
        dict: Conteúdo do arquivo
    """
    try:
        return json.loads(path.read_text(encoding='utf-8'))
    except (OSError, ValueError) as e:
        logger.error(f"Erro ao carregar arquivo {path}: {str(e)}")
        raise typer.Exit(1)


def carregar_setup(config_dir: Path) -> SetupConfig:
    """Lê o setup.json do diretório de configuração e inicializa os logs"""
    setup_data = load_json_file(config_dir / "setup.json")
    try:
        setup = SetupConfig(**setup_data)
    except ValueError as e:
        logger.error(f"Configuração inválida em {config_dir / 'setup.json'}: {str(e)}")
        raise typer.Exit(1)

    configurar_logger(Path(setup.log_dir))
    return setup


@app.command()
def planejar(
    config_dir: Path = typer.Option(
        "config",
        help="Diretório com os arquivos de configuração",
        exists=True,
        dir_okay=True,
        file_okay=False
    )
):
    """Simula o planejamento dos epics e gera os relatórios"""
    setup = carregar_setup(config_dir)
    logger.info("Iniciando planejamento de epics")
    logger.info(f"Usando diretório de configuração: {config_dir}")

    try:
        logger.info("Carregando arquivos de entrada...")
        snapshot = PlanningDataLoader(setup, base_dir=config_dir).load()

        logger.info("Executando simulação...")
        result = snapshot.create_simulator().run()

        logger.info("Gerando relatórios...")
        ReportGenerator(result, setup.files.output_dir).generate()

        logger.info("Processo concluído com sucesso!")
    except INPUT_ERRORS as e:
        logger.error(f"Erro durante execução: {str(e)}")
        raise typer.Exit(1)


@app.command()
def verificar(
    config_dir: Path = typer.Option(
        "config",
        help="Diretório com os arquivos de configuração",
        exists=True,
        dir_okay=True,
        file_okay=False
    ),
    modo: CheckerMode = typer.Option(
        CheckerMode.COMPARISON,
        help="Tipo de verificação: comparacao (recursos) ou epicos"
    )
):
    """Compara a sprint corrente planejada com a simulação"""
    setup = carregar_setup(config_dir)
    logger.info(f"Iniciando verificação da sprint {setup.planner.initial_sprint_number} ({modo.value})")

    try:
        snapshot = PlanningDataLoader(setup, base_dir=config_dir).load(include_planned_hours=True)
        result = snapshot.create_simulator().run()

        checker = PlanChecker(
            result,
            planned_hours=snapshot.planned_hours.resources,
            epic_summaries=snapshot.planned_hours.epics,
            planned_capacity_by_epic=snapshot.planned_capacity_by_epic,
        )
        checker.export(setup.files.output_dir, modo)

        logger.info("Verificação concluída com sucesso!")
    except INPUT_ERRORS as e:
        logger.error(f"Erro durante verificação: {str(e)}")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
