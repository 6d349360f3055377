from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence
from loguru import logger

from ..models.entities import Epic, normalize_name


class DependencyCycleError(ValueError):
    """Erro lançado quando as dependências entre epics formam um ciclo"""

    def __init__(self, cycle: List[str]):
        self.cycle = cycle
        super().__init__(f"Ciclo de dependências entre epics: {' -> '.join(cycle)}")


def match_epic_name(
    dependency: str, names: Sequence[str], exclude: Optional[str] = None
) -> Optional[str]:
    """
    Encontra o nome canônico de uma dependência

    Primeiro procura igualdade sem diferenciar maiúsculas; na falta dela,
    aceita o primeiro epic cujo nome contém a dependência (ou vice-versa).

    Args:
        dependency: Nome da dependência como informado
        names: Nomes dos epics conhecidos, na ordem de carga
        exclude: Nome ignorado na busca por aproximação (o próprio epic)

    Returns:
        Optional[str]: Nome canônico ou None se nenhum epic corresponder
    """
    key = normalize_name(dependency)
    if not key:
        return None

    for name in names:
        if normalize_name(name) == key:
            return name

    excluded = normalize_name(exclude) if exclude else None
    for name in names:
        candidate = normalize_name(name)
        if candidate == excluded:
            continue
        if candidate and (key in candidate or candidate in key):
            return name

    return None


class EpicGraph:
    """Grafo de dependências entre epics, indexado pela posição do epic na lista"""

    def __init__(self, epics: List[Epic]):
        self.epics = epics
        self.dependencies: List[List[int]] = [[] for _ in epics]
        self.unresolved: Dict[str, List[str]] = {}
        self._index: Dict[str, int] = {}
        for i, epic in enumerate(epics):
            self._index.setdefault(epic.key, i)

    @classmethod
    def build(cls, epics: List[Epic]) -> "EpicGraph":
        """
        Resolve as dependências de todos os epics e valida a ausência de ciclos

        Os nomes das dependências são reescritos nos epics com o nome canônico.
        Dependências que não correspondem a nenhum epic são mantidas como estão
        e, portanto, bloqueiam o epic indefinidamente.

        Args:
            epics: Epics carregados

        Returns:
            EpicGraph: Grafo resolvido

        Raises:
            DependencyCycleError: Se existir um ciclo de dependências
        """
        graph = cls(epics)
        names = [e.name for e in epics]

        for i, epic in enumerate(epics):
            resolved_names = []
            for dependency in epic.dependencies:
                match = match_epic_name(dependency, names, exclude=epic.name)
                if match is None:
                    graph.unresolved.setdefault(epic.name, []).append(dependency)
                    logger.warning(
                        f"Dependência '{dependency}' do epic {epic.name} não corresponde a nenhum epic"
                    )
                    resolved_names.append(dependency.strip())
                    continue

                resolved_names.append(match)
                j = graph.index_of(match)
                if j not in graph.dependencies[i]:
                    graph.dependencies[i].append(j)
            epic.dependencies = resolved_names

        graph.check_cycles()
        return graph

    def index_of(self, name: str) -> Optional[int]:
        return self._index.get(normalize_name(name))

    def check_cycles(self) -> None:
        """Busca em profundidade iterativa; lança DependencyCycleError no primeiro ciclo"""
        white, grey, black = 0, 1, 2
        color = [white] * len(self.epics)

        for root in range(len(self.epics)):
            if color[root] != white:
                continue

            path: List[int] = [root]
            stack = [iter(self.dependencies[root])]
            color[root] = grey

            while stack:
                child = next(stack[-1], None)
                if child is None:
                    color[path.pop()] = black
                    stack.pop()
                    continue

                if color[child] == grey:
                    start = path.index(child)
                    cycle = [self.epics[k].name for k in path[start:]] + [self.epics[child].name]
                    raise DependencyCycleError(cycle)

                if color[child] == white:
                    color[child] = grey
                    path.append(child)
                    stack.append(iter(self.dependencies[child]))


class ReadinessGate:
    """Decide se um epic pode consumir capacity de desenvolvimento em uma sprint"""

    def __init__(self, epics: List[Epic], only_development_epics: bool = False):
        """
        Inicializa o gate

        Args:
            epics: Epics da simulação (usados para conhecer o estado das dependências)
            only_development_epics: Considera satisfeitas as dependências que não
                estão em desenvolvimento e ainda não foram concluídas
        """
        self.only_development_epics = only_development_epics
        self._epics_by_key: Dict[str, Epic] = {}
        for epic in epics:
            self._epics_by_key.setdefault(epic.key, epic)

    def _assumed_satisfied(self, dependency: str) -> bool:
        if not self.only_development_epics:
            return False
        dependency_epic = self._epics_by_key.get(normalize_name(dependency))
        return dependency_epic is not None and not dependency_epic.is_in_development

    def is_ready(self, epic: Epic, sprint_start: datetime, completed: Mapping[str, datetime]) -> bool:
        """
        Verifica se o epic está liberado para a sprint

        Args:
            epic: Epic a ser verificado
            sprint_start: Data de início da sprint candidata
            completed: Datas de conclusão por nome normalizado do epic

        Returns:
            bool: True se a análise terminou e todas as dependências foram
                concluídas em uma sprint anterior
        """
        if epic.end_analysis is not None and sprint_start.date() < epic.end_analysis.date():
            return False

        if not epic.dependencies:
            return True

        for dependency in epic.dependencies:
            dependency_end = completed.get(normalize_name(dependency))
            if dependency_end is None:
                if self._assumed_satisfied(dependency):
                    continue
                return False

            # Sem repasse dentro da mesma sprint
            if dependency_end.date() >= sprint_start.date():
                return False

        return True
