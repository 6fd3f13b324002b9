import pytest

from timeline_ai.executor.schemas import StepCategory, StepResult, WorkflowStepSpec
from timeline_ai.executor.step_graph import StepGraph, resolve_step_order
from timeline_ai.executor.steps import BuiltinSteps
from timeline_ai.workflows.registry import WorkflowRegistry
from timeline_ai.workflows.schemas import WorkflowDefinitionError

from tests.fakes import FakeBridge

WORKFLOW_TYPES = {
    "quick_edit",
    "social_media_pack",
    "podcast_editing",
    "wedding_highlights",
    "corporate_intro",
    "educational_content",
    "travel_vlog",
    "music_video",
    "product_showcase",
    "presentation_video",
}


def _spec(step_id: str, *deps: str) -> WorkflowStepSpec:
    return WorkflowStepSpec(
        id=step_id,
        name=step_id,
        description="",
        category=StepCategory.EDITING,
        dependencies=list(deps),
        estimated_duration_s=1,
        execute=lambda context: StepResult(success=True),
    )


def test_registry_loads_every_workflow_type():
    registry = WorkflowRegistry()

    assert {w.workflow_type for w in registry.list_all()} == WORKFLOW_TYPES
    assert registry.count() == 10
    quick_edit = registry.require("quick_edit")
    assert quick_edit.steps == [
        "analyze_input",
        "detect_scenes",
        "create_timeline",
        "add_transitions",
        "export_video",
    ]
    summary = next(w for w in registry.list_all() if w.workflow_type == "quick_edit")
    assert summary.step_count == 5


def test_registry_rejects_unknown_type():
    with pytest.raises(WorkflowDefinitionError, match="Unknown workflow type: nope"):
        WorkflowRegistry().require("nope")


def test_registry_skips_invalid_files(tmp_path):
    (tmp_path / "ok.yaml").write_text(
        "workflow_type: tiny\nname: Tiny\nestimated_duration_min: 1\nsteps: [analyze_input]\n"
    )
    (tmp_path / "broken.yaml").write_text("workflow_type: broken\nname: Broken\nsteps: []\n")

    registry = WorkflowRegistry(definitions_dir=tmp_path)

    assert [w.workflow_type for w in registry.list_all()] == ["tiny"]


def test_every_builtin_workflow_resolves_against_step_library():
    graph = StepGraph(BuiltinSteps(FakeBridge()).specs())
    for definition in WorkflowRegistry().list_definitions():
        order = [s.id for s in graph.execution_order(definition.workflow_type, definition.steps)]
        assert sorted(order) == sorted(definition.steps)
        assert order[0] == "analyze_input"
        assert order.index("create_timeline") < order.index("export_video")


def test_order_respects_dependencies_over_declared_order():
    steps = {s.id: s for s in [_spec("a"), _spec("b", "c"), _spec("c", "a")]}
    assert [s.id for s in resolve_step_order(["b", "c", "a"], steps)] == ["a", "c", "b"]


def test_independent_steps_keep_declared_order():
    steps = {s.id: s for s in [_spec("root"), _spec("x", "root"), _spec("y", "root"), _spec("z", "root")]}
    assert [s.id for s in resolve_step_order(["root", "z", "x", "y"], steps)] == ["root", "z", "x", "y"]


def test_dependencies_outside_the_workflow_are_ignored():
    steps = {s.id: s for s in [_spec("a"), _spec("b", "a", "not_selected"), _spec("not_selected")]}
    assert [s.id for s in resolve_step_order(["b", "a"], steps)] == ["a", "b"]


def test_cycle_is_rejected():
    steps = {s.id: s for s in [_spec("a", "b"), _spec("b", "a"), _spec("c")]}
    with pytest.raises(WorkflowDefinitionError, match="cycle"):
        resolve_step_order(["c", "a", "b"], steps)


def test_unknown_and_duplicate_steps_are_rejected():
    steps = {"a": _spec("a")}
    with pytest.raises(WorkflowDefinitionError, match="Unknown workflow steps"):
        resolve_step_order(["a", "missing"], steps)
    with pytest.raises(WorkflowDefinitionError, match="Duplicate"):
        resolve_step_order(["a", "a"], steps)


def test_step_graph_caches_order_per_workflow_type():
    steps = {s.id: s for s in [_spec("a"), _spec("b", "a")]}
    graph = StepGraph(steps)

    first = graph.execution_order("wf", ["b", "a"])

    assert graph.execution_order("wf", ["b", "a"]) is first
