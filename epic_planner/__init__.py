"""
Planejador de Epics

Este pacote simula, sprint a sprint, a distribuição da capacity de desenvolvimento
dos recursos entre os epics do backlog, respeitando dependências, níveis de prioridade
e o percentual desejado de cada recurso, e gera os relatórios de planejamento e de
verificação da sprint corrente.
"""

__version__ = "1.0.0"
