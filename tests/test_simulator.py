import pytest
from collections import defaultdict
from datetime import datetime, timedelta
from epic_planner.models.entities import Epic, ResourceCapacity, Wish
from epic_planner.services.dependencies import EpicGraph
from epic_planner.services.simulator import (
    REASON_NO_ASSIGNED_EPICS,
    REASON_NO_REMAINING_HOURS,
    PlanningSimulator,
    simulate,
)

INITIAL_DATE = datetime(2024, 1, 1)
SPRINT_DAYS = 14

def make_capacities(sprints=10, **resources):
    """Monta uma tabela de capacity constante por sprint"""
    return {
        s: {name: ResourceCapacity(development=dev) for name, dev in resources.items()}
        for s in range(sprints)
    }

def make_epic(name, charge, wishes=None, state="In development", priority="Normal", **kwargs):
    """Monta um epic com desejos no formato {recurso: percentual}"""
    return Epic(
        name=name,
        state=state,
        charge=charge,
        priority=priority,
        wishes=[Wish(resource=r, percentage=p) for r, p in (wishes or {}).items()],
        **kwargs
    )

def run(epics, capacities, max_sprint_count=10, **kwargs):
    EpicGraph.build(epics)
    return simulate(epics, capacities, INITIAL_DATE, SPRINT_DAYS, max_sprint_count, **kwargs)

def sprint_start(index):
    return INITIAL_DATE + timedelta(days=index * SPRINT_DAYS)

def hours_by_sprint(result, epic_name):
    totals = defaultdict(float)
    for a in result.allocations:
        if a.epic == epic_name:
            totals[a.sprint] += a.hours
    return dict(totals)

@pytest.fixture
def mixed_backlog():
    """Fixture para um backlog com prioridades, dependências e estados variados"""
    def factory():
        return [
            make_epic("2024-01 Login", 45, {"Alice": 1.0}),
            make_epic("2024-02 Profile", 30, {"Alice": 0.5, "Bob": 0.5}, dependencies=["Login"]),
            make_epic("2024-03 Billing", 60, {"Bob": 1.0}, priority="Urgent"),
            make_epic("2024-04 Reports", 25, {"Alice": 0.3, "Carol": 1.0}, state="In analysis"),
            make_epic("2024-05 Search", 40, {"Carol": 0.6}, priority="High", dependencies=["Billing"]),
            make_epic("2024-06 Export", 20, {"Bob": 0.2}, state="Pending development"),
            make_epic("2024-07 Legacy", 0, {"Alice": 1.0}),
        ]
    return factory

@pytest.fixture
def mixed_capacities():
    """Fixture para capacity de três recursos"""
    return make_capacities(10, Alice=20, Bob=15, Carol=10)

def test_single_epic_completes_in_two_sprints():
    """Testa um epic sem concorrência consumindo toda a capacity do recurso"""
    epic = make_epic("E", 40, {"EngA": 1.0})
    result = run([epic], make_capacities(EngA=20))

    assert hours_by_sprint(result, "E") == {0: 20, 1: 20}
    assert epic.remaining == 0
    assert epic.start_date == sprint_start(0)
    assert epic.end_date == sprint_start(1)
    assert sum(a.hours for a in result.allocations) == 40
    assert result.completed["e"] == sprint_start(1)

def test_equal_priority_split_in_half():
    """Testa a divisão proporcional entre epics de mesma prioridade"""
    first = make_epic("First", 10, {"EngA": 1.0})
    second = make_epic("Second", 10, {"EngA": 1.0})
    result = run([first, second], make_capacities(EngA=10))

    assert hours_by_sprint(result, "First") == {0: 5, 1: 5}
    assert hours_by_sprint(result, "Second") == {0: 5, 1: 5}
    assert first.end_date == sprint_start(1)
    assert second.end_date == sprint_start(1)

def test_dependency_waits_for_next_sprint():
    """Testa que o dependente só começa na sprint seguinte à conclusão da dependência"""
    a = make_epic("A", 10, {"EngA": 1.0})
    b = make_epic("B", 10, {"EngA": 1.0}, dependencies=["A"])
    result = run([a, b], make_capacities(EngA=20))

    assert a.end_date == sprint_start(0)
    assert 0 not in hours_by_sprint(result, "B")
    assert min(hours_by_sprint(result, "B")) == 1
    assert b.end_date == sprint_start(1)

def test_leftover_exhausts_resource():
    """Testa que a capacity restante é distribuída entre os mesmos epics"""
    first = make_epic("First", 500, {"EngA": 0.1})
    second = make_epic("Second", 500, {"EngA": 0.1})
    result = run([first, second], make_capacities(EngA=20), max_sprint_count=1)

    assert sum(a.hours for a in result.allocations) == pytest.approx(20)
    assert hours_by_sprint(result, "First")[0] == pytest.approx(10)
    assert hours_by_sprint(result, "Second")[0] == pytest.approx(10)
    assert result.underutilization == []

def test_leftover_sweep_goes_to_epics_with_remaining_hours():
    """Testa a varredura das sobras após um epic concluir com menos que sua parte"""
    small = make_epic("Small", 2, {"EngA": 0.1})
    large = make_epic("Large", 100, {"EngA": 0.1})
    result = run([small, large], make_capacities(EngA=20), max_sprint_count=1)

    assert hours_by_sprint(result, "Small") == {0: pytest.approx(2)}
    assert hours_by_sprint(result, "Large") == {0: pytest.approx(18)}
    large_allocations = [a.hours for a in result.allocations if a.epic == "Large"]
    assert large_allocations == [pytest.approx(10), pytest.approx(8)]

def test_higher_priority_served_first():
    """Testa que o nível de prioridade maior é atendido antes do menor"""
    normal = make_epic("Normal", 30, {"EngA": 1.0})
    urgent = make_epic("Urgent", 30, {"EngA": 1.0}, priority="Urgent")
    result = run([normal, urgent], make_capacities(EngA=20))

    assert hours_by_sprint(result, "Urgent")[0] == 20
    assert 0 not in hours_by_sprint(result, "Normal")
    assert hours_by_sprint(result, "Urgent")[1] == 10
    assert hours_by_sprint(result, "Normal")[1] == 10

def test_lower_priority_gets_what_higher_does_not_need():
    """Testa que o nível menor recebe a sobra do nível maior"""
    normal = make_epic("Normal", 30, {"EngA": 1.0})
    high = make_epic("High", 5, {"EngA": 1.0}, priority="High")
    result = run([normal, high], make_capacities(EngA=20), max_sprint_count=1)

    assert hours_by_sprint(result, "High") == {0: 5}
    assert hours_by_sprint(result, "Normal") == {0: 15}

def test_development_pass_runs_before_others():
    """Testa que epics em desenvolvimento consomem a capacity antes dos demais"""
    analysis = make_epic("Analysis", 30, {"EngA": 1.0}, state="In analysis")
    dev = make_epic("Dev", 15, {"EngA": 1.0})
    result = run([analysis, dev], make_capacities(EngA=20), max_sprint_count=1)

    assert hours_by_sprint(result, "Dev") == {0: 15}
    assert hours_by_sprint(result, "Analysis") == {0: 5}

def test_other_states_are_not_scheduled():
    """Testa que epics em estados não planejáveis não recebem capacity"""
    closed = make_epic("Closed", 10, {"EngA": 1.0}, state="Blocked")
    result = run([closed], make_capacities(EngA=20), max_sprint_count=2)

    assert result.allocations == []
    assert closed.remaining == 10
    assert closed.end_date is None

def test_only_development_mode():
    """Testa o modo que simula apenas epics em desenvolvimento"""
    design = make_epic("Design", 10, {"EngA": 1.0}, state="In analysis")
    feature = make_epic("Feature", 10, {"EngA": 1.0}, dependencies=["Design"])
    result = run([design, feature], make_capacities(EngA=20), max_sprint_count=3, only_development_epics=True)

    assert hours_by_sprint(result, "Feature") == {0: 10}
    assert hours_by_sprint(result, "Design") == {}
    assert design.remaining == 10

def test_underutilization_reasons():
    """Testa os motivos registrados para capacity não utilizada"""
    epic = make_epic("E", 5, {"EngA": 1.0})
    result = run([epic], make_capacities(EngA=20, EngB=8), max_sprint_count=1)

    entries = {(u.sprint, u.resource): u for u in result.underutilization}
    assert entries[(0, "EngA")].unused == 15
    assert entries[(0, "EngA")].reason == REASON_NO_REMAINING_HOURS
    assert entries[(0, "EngB")].unused == 8
    assert entries[(0, "EngB")].reason == REASON_NO_ASSIGNED_EPICS

def test_underutilization_is_rounded():
    """Testa o arredondamento da capacity não utilizada"""
    epic = make_epic("E", 1.333, {"EngA": 1.0})
    result = run([epic], make_capacities(EngA=10), max_sprint_count=1)

    assert result.underutilization[0].unused == 8.67

def test_pre_completed_dependency_unblocks_first_sprint():
    """Testa que dependência sem carga libera o dependente já na primeira sprint"""
    legacy = make_epic("Legacy", 0, {"EngA": 1.0})
    feature = make_epic("Feature", 10, {"EngA": 1.0}, dependencies=["Legacy"])
    result = run([legacy, feature], make_capacities(EngA=20), max_sprint_count=1)

    assert hours_by_sprint(result, "Feature") == {0: 10}
    assert result.completed["legacy"] == INITIAL_DATE - timedelta(days=1)
    assert legacy.history == []

def test_pre_completed_dependency_with_end_date():
    """Testa que a data de conclusão informada de uma dependência sem carga é respeitada"""
    legacy = make_epic("Legacy", 0, end_date=datetime(2024, 1, 20))
    feature = make_epic("Feature", 10, {"EngA": 1.0}, dependencies=["Legacy"])
    result = run([legacy, feature], make_capacities(EngA=20))

    assert min(hours_by_sprint(result, "Feature")) == 2

def test_end_of_analysis_delays_start():
    """Testa que o epic só começa a partir da data de fim da análise"""
    epic = make_epic("E", 10, {"EngA": 1.0}, end_analysis=datetime(2024, 1, 20))
    result = run([epic], make_capacities(EngA=20))

    assert hours_by_sprint(result, "E") == {2: 10}
    assert epic.start_date == sprint_start(2)

def test_unknown_dependency_never_scheduled():
    """Testa que dependência desconhecida bloqueia o epic sem erro"""
    epic = make_epic("E", 10, {"EngA": 1.0}, dependencies=["Ghost"])
    result = run([epic], make_capacities(EngA=20), max_sprint_count=3)

    assert result.allocations == []
    assert epic.remaining == 10
    assert epic.end_date is None
    assert len(result.underutilization) == 3

def test_unsatisfiable_schedule_is_silent():
    """Testa que a falta de capacity apenas deixa horas restantes"""
    epic = make_epic("E", 100, {"EngA": 1.0})
    result = run([epic], make_capacities(EngA=20), max_sprint_count=2)

    assert epic.remaining == 60
    assert epic.end_date is None
    assert epic.start_date == sprint_start(0)

def test_wish_for_unknown_resource_is_ignored():
    """Testa que desejos para recursos fora da tabela não geram alocação"""
    epic = make_epic("E", 10, {"Ghost": 1.0, "EngA": 0.5})
    result = run([epic], make_capacities(EngA=20), max_sprint_count=1)

    assert {a.resource for a in result.allocations} == {"EngA"}
    assert epic.remaining == 0

def test_zero_percentage_wish_only_receives_leftover():
    """Testa que desejo com 0% não gera pedido, mas recebe sobras na varredura"""
    zero = make_epic("Zero", 10, {"EngA": 0.0})
    full = make_epic("Full", 15, {"EngA": 1.0})
    result = run([zero, full], make_capacities(EngA=20), max_sprint_count=1)

    assert [(a.epic, a.hours) for a in result.allocations] == [("Full", 15), ("Zero", 5)]

def test_resource_names_are_case_insensitive():
    """Testa que o recurso do desejo é encontrado sem diferenciar maiúsculas"""
    epic = make_epic("E", 10, {"enga": 1.0})
    result = run([epic], make_capacities(EngA=20), max_sprint_count=1)

    assert result.allocations[0].resource == "EngA"
    assert epic.remaining == 0

def test_missing_sprint_in_capacity_table():
    """Testa que sprint ausente da tabela é tratada como sem capacity"""
    epic = make_epic("E", 30, {"EngA": 1.0})
    result = run([epic], make_capacities(1, EngA=20), max_sprint_count=3)

    assert hours_by_sprint(result, "E") == {0: 20}
    assert epic.remaining == 10

def test_stops_when_all_epics_complete():
    """Testa a parada antecipada quando todos os epics terminam"""
    epic = make_epic("E", 10, {"EngA": 1.0})
    result = run([epic], make_capacities(EngA=20), max_sprint_count=10)

    assert {u.sprint for u in result.underutilization} == {0}

def test_capacity_table_is_not_modified():
    """Testa que a tabela de capacity de entrada não é alterada"""
    capacities = make_capacities(EngA=20)
    run([make_epic("E", 100, {"EngA": 1.0})], capacities)

    assert all(c["EngA"].development == 20 for c in capacities.values())

def test_conservation_and_monotonicity(mixed_backlog, mixed_capacities):
    """Testa a conservação das horas e o decréscimo das horas restantes"""
    epics = mixed_backlog()
    result = run(epics, mixed_capacities)

    for epic in epics:
        allocated = sum(a.hours for a in epic.history)
        assert epic.charge - allocated == pytest.approx(epic.remaining, abs=1e-6)
        assert epic.remaining >= 0

        remaining = epic.charge
        previous_sprint = -1
        for allocation in epic.history:
            assert allocation.hours > 0
            assert allocation.sprint >= previous_sprint
            previous_sprint = allocation.sprint
            remaining -= allocation.hours
            assert remaining >= -1e-6

    ledger = sum(a.hours for a in result.allocations)
    assert ledger == pytest.approx(sum(e.allocated_hours for e in epics))

def test_capacity_not_oversubscribed(mixed_backlog, mixed_capacities):
    """Testa que nenhuma sprint aloca mais do que a capacity do recurso"""
    result = run(mixed_backlog(), mixed_capacities)

    for (sprint, resource), hours in result.allocated_by_sprint_resource().items():
        capacity = result.capacity_of(sprint, resource).development
        assert hours <= capacity + 1e-6

def test_dependencies_complete_before_dependents(mixed_backlog, mixed_capacities):
    """Testa que os dependentes só recebem horas depois da conclusão das dependências"""
    epics = mixed_backlog()
    result = run(epics, mixed_capacities)
    by_name = {e.name: e for e in epics}

    for epic in epics:
        for dependency in epic.dependencies:
            dependency_end = by_name[dependency].end_date
            for allocation in epic.history:
                assert dependency_end is not None
                assert dependency_end < allocation.sprint_start

def test_runs_are_deterministic(mixed_backlog, mixed_capacities):
    """Testa que duas execuções com a mesma entrada geram o mesmo ledger"""
    first = run(mixed_backlog(), mixed_capacities)
    second = run(mixed_backlog(), mixed_capacities)

    assert first.allocations == second.allocations
    assert first.underutilization == second.underutilization

def test_simulator_class_matches_facade(mixed_backlog, mixed_capacities):
    """Testa que a classe e a função de simulação produzem o mesmo resultado"""
    epics = mixed_backlog()
    EpicGraph.build(epics)
    result = PlanningSimulator(epics, mixed_capacities, INITIAL_DATE, SPRINT_DAYS, 10).run()

    assert result.allocations == run(mixed_backlog(), mixed_capacities).allocations

def test_result_aggregations():
    """Testa as agregações do ledger"""
    first = make_epic("First", 30, {"EngA": 1.0})
    second = make_epic("Second", 10, {"EngB": 1.0})
    result = run([first, second], make_capacities(EngA=20, EngB=10), sprint_offset=40)

    assert result.hours_by_epic_sprint_resource() == {
        ("First", 0, "EngA"): 20,
        ("First", 1, "EngA"): 10,
        ("Second", 0, "EngB"): 10,
    }
    assert result.hours_by_epic_sprint() == {("First", 0): 20, ("First", 1): 10, ("Second", 0): 10}
    assert result.allocated_by_sprint_resource()[(0, "enga")] == 20
    assert result.sprint_indexes() == [0, 1]
    assert result.sprint_start(1) == sprint_start(1)
    assert result.sprint_end(0) == datetime(2024, 1, 14)
    assert result.resources() == ["EngA", "EngB"]
    assert result.sprint_offset == 40

def test_result_without_allocations_reports_first_sprint():
    """Testa que um resultado vazio ainda expõe a primeira sprint"""
    result = run([], make_capacities(EngA=20), max_sprint_count=1)

    assert result.sprint_indexes() == [0]
    assert result.allocations == []

def test_wish_overbooking():
    """Testa a soma dos percentuais desejados por recurso"""
    epics = [
        make_epic("A", 10, {"EngA": 0.8}),
        make_epic("B", 10, {"enga": 0.5, "EngB": 0.2}),
    ]
    result = run(epics, make_capacities(EngA=20, EngB=20), max_sprint_count=1)

    rows = {resource: (total, details) for resource, total, details in result.wish_overbooking()}
    assert rows["EngA"][0] == pytest.approx(1.3)
    assert rows["EngA"][1] == ["A:80%", "B:50%"]
    assert rows["EngB"] == (pytest.approx(0.2), ["B:20%"])
