import json
import math
import pytest

from g4editor.project_manager import ProjectManager
from g4editor.expression_evaluator import ExpressionEvaluator

@pytest.fixture
def pm():
    evaluator = ExpressionEvaluator()
    pm = ProjectManager(evaluator)
    pm.create_empty_project()
    return pm

@pytest.fixture
def nested(pm):
    # World -> Det(0,0,100) -> Crystal(10,0,0)
    pm.add_volume("Det", "box", {"x": 0, "y": 0, "z": 100})
    pm.add_volume("Crystal", "box", {"x": 10, "y": 0, "z": 0}, mother_volume="Det")
    return pm

def test_add_volume_generates_unique_names(pm):
    first, _ = pm.add_volume("Box", "box")
    second, _ = pm.add_volume("Box", "box")
    assert first['name'] == "Box"
    assert second['name'] == "Box_1"
    assert second['g4name'] == "Box_2"

def test_add_volume_rejects_bad_input(pm):
    vol, error = pm.add_volume("X", "hexagon")
    assert vol is None and "Unknown volume type" in error

    vol, error = pm.add_volume("X", "box", mother_volume="Nowhere")
    assert vol is None and "not found" in error

    vol, error = pm.add_volume("X", "box", {"x": "2 +"})
    assert vol is None and "Invalid value for 'x'" in error

def test_expression_input_is_evaluated(pm):
    vol, _ = pm.add_volume("Rot", "cylinder", rotation={"x": "0", "y": "0", "z": "pi/2"})
    assert vol['rotation']['z'] == pytest.approx(math.pi / 2)

def test_boolean_component_fields(pm):
    pm.add_volume("U", "union")
    vol, _ = pm.add_volume("Part", "box", mother_volume="U", boolean={"parent": "U", "operation": "subtract"})
    assert vol['is_boolean_component'] is True
    assert vol['boolean_parent'] == "U"
    assert vol['boolean_operation'] == "subtract"

def test_world_pose_and_scene(nested):
    pose, error = nested.get_world_pose("Crystal")
    assert error is None
    assert pose['position'] == {'x': 10.0, 'y': 0.0, 'z': 100.0}

    scene = nested.get_scene_description()
    crystal = next(obj for obj in scene if obj['name'] == "Crystal")
    det = next(obj for obj in scene if obj['name'] == "Det")
    assert crystal['parent_key'] == det['key']
    assert det['is_mother_volume'] is True
    assert crystal['world_position']['z'] == 100.0

def test_update_merges_partial_position(nested):
    success, error = nested.update_volume("Crystal", {"position": {"y": "5"}})
    assert success, error
    crystal = nested.current_geometry_state.get_volume("Crystal")
    assert crystal.position == {'x': 10.0, 'y': 5.0, 'z': 0.0}

def test_rename_updates_daughters(nested):
    nested.add_volume("Cut", "box", mother_volume="Det", boolean={"parent": "Det", "operation": "union"})
    success, _ = nested.update_volume("Det", {"name": "Detector"})
    assert success
    state = nested.current_geometry_state
    assert state.get_volume("Crystal").mother_volume == "Detector"
    assert state.get_volume("Cut").boolean_parent == "Detector"

def test_rename_to_existing_name_rejected(nested):
    success, error = nested.update_volume("Det", {"name": "Crystal"})
    assert not success and "already in use" in error

def test_mother_cycle_is_rejected(nested):
    success, error = nested.update_volume("Det", {"mother_volume": "Crystal"})
    assert not success and "circular" in error

    success, error = nested.update_volume("Det", {"mother_volume": "Det"})
    assert not success
    assert nested.current_geometry_state.get_volume("Det").mother_volume == "World"

def test_boolean_component_cannot_be_its_own_mother(pm):
    pm.add_volume("U", "union")
    pm.add_volume("Part", "box", mother_volume="U", boolean={"parent": "U", "operation": "union"})
    pm.add_volume("Other", "box")

    success, error = pm.update_volume("Part", {"mother_volume": "Part"})
    assert not success and "own mother" in error
    assert pm.current_geometry_state.get_volume("Part").mother_volume == "U"

    # Boolean components may still move between unrelated mothers
    success, _ = pm.update_volume("Part", {"mother_volume": "Other"})
    assert success

def test_delete_clears_dangling_boolean_parent(pm):
    pm.add_volume("U", "union")
    pm.add_volume("Part", "box", boolean={"parent": "U", "operation": "subtract"})

    success, removed = pm.delete_volume("U")
    assert success and removed == ["U"]
    part = pm.current_geometry_state.get_volume("Part")
    assert part.boolean_parent is None
    assert part.is_boolean_component is False
    assert part.boolean_operation is None

def test_delete_removes_descendants(nested):
    nested.add_volume("Other", "sphere")
    success, removed = nested.delete_volume("Det")
    assert success
    assert removed == ["Crystal", "Det"]
    assert [v.name for v in nested.current_geometry_state.volumes] == ["Other"]

def test_undo_redo(nested):
    nested.update_volume("Crystal", {"position": {"x": 50}})
    assert nested.undo() == (True, "Undo successful.")
    assert nested.current_geometry_state.get_volume("Crystal").position['x'] == 10.0
    assert nested.redo() == (True, "Redo successful.")
    assert nested.current_geometry_state.get_volume("Crystal").position['x'] == 50.0
    assert nested.get_history_status() == {"can_undo": True, "can_redo": False}

def test_history_is_capped(pm):
    for i in range(pm.MAX_HISTORY_SIZE + 10):
        pm.add_volume(f"V{i}", "box")
    assert len(pm.history) == pm.MAX_HISTORY_SIZE

def test_drag_commit_records_one_history_entry(nested):
    before = len(nested.history)
    mode, error = nested.begin_drag("Crystal")
    assert error is None and mode == "leaf"

    nested.update_drag("Crystal", {"x": 0, "y": 20, "z": 100}, {"x": 0, "y": 0, "z": 0})
    nested.update_drag("Crystal", {"x": 0, "y": 30, "z": 100}, {"x": 0, "y": 0, "z": 0})
    local, error = nested.end_drag("Crystal", {"x": 0, "y": 30, "z": 100}, {"x": 0, "y": 0, "z": 0})

    assert error is None
    assert local['position']['y'] == pytest.approx(30)
    assert local['position']['z'] == pytest.approx(0)
    assert len(nested.history) == before + 1
    assert nested.active_drag is None

def test_drag_cancel_leaves_state_and_history_untouched(nested):
    before_state = nested.get_full_project_state_dict()
    before_history = len(nested.history)

    nested.begin_drag("Det")
    nested.update_drag("Det", {"x": 500, "y": 0, "z": 0}, {"x": 0, "y": 0, "z": 0})
    assert nested.get_world_pose("Crystal")[0]['position']['x'] == pytest.approx(510)

    success, _ = nested.cancel_drag("Det")
    assert success
    assert nested.get_full_project_state_dict() == before_state
    assert len(nested.history) == before_history
    assert nested.get_world_pose("Crystal")[0]['position']['x'] == pytest.approx(10)

@pytest.fixture
def chain(pm):
    # World -> A(10) -> B(5) -> C(1), B is an intermediate volume
    pm.add_volume("A", "box", {"x": 10, "y": 0, "z": 0})
    pm.add_volume("B", "box", {"x": 5, "y": 0, "z": 0}, mother_volume="A")
    pm.add_volume("C", "box", {"x": 1, "y": 0, "z": 0}, mother_volume="B")
    return pm

def test_save_during_intermediate_drag_keeps_pre_drag_pose(chain):
    chain.begin_drag("B")
    chain.update_drag("B", {"x": 20, "y": 0, "z": 0}, {"x": 0, "y": 0, "z": 0})
    # The live scene follows the gesture
    assert chain.get_world_pose("B")[0]['position']['x'] == pytest.approx(20)

    saved = chain.save_project_to_json_string()
    b_record = next(v for v in json.loads(saved)['geometry']['volumes'] if v['name'] == "B")
    assert b_record['position']['x'] == 5

    other = ProjectManager(ExpressionEvaluator())
    success, _ = other.load_project_from_json_string(saved)
    assert success
    assert other.get_world_pose("B")[0]['position']['x'] == pytest.approx(15)

    chain.end_drag("B", {"x": 20, "y": 0, "z": 0}, {"x": 0, "y": 0, "z": 0})
    saved = json.loads(chain.save_project_to_json_string())
    b_record = next(v for v in saved['geometry']['volumes'] if v['name'] == "B")
    assert b_record['position']['x'] == pytest.approx(10)

def test_drag_leaves_callers_transaction_open(chain):
    before = len(chain.history)
    chain.begin_transaction()
    chain.update_volume("C", {"position": {"y": 7}})

    chain.begin_drag("A")
    chain.end_drag("A", {"x": 50, "y": 0, "z": 0}, {"x": 0, "y": 0, "z": 0})
    assert chain._is_transaction_open
    assert len(chain.history) == before

    chain.begin_drag("A")
    chain.cancel_drag("A")
    assert chain._is_transaction_open

    chain.end_transaction("Grouped edit")
    assert len(chain.history) == before + 1
    assert chain.undo()[0]
    state = chain.current_geometry_state
    assert state.get_volume("A").position['x'] == 10
    assert state.get_volume("C").position['y'] == 0

def test_only_the_drag_writes_the_dragged_volume(nested):
    nested.begin_drag("Crystal")

    _, error = nested.begin_drag("Det")
    assert "already in progress" in error

    success, error = nested.update_volume("Crystal", {"position": {"x": 1}})
    assert not success and "dragged" in error

    _, error = nested.update_drag("Det", {"x": 0, "y": 0, "z": 0}, {"x": 0, "y": 0, "z": 0})
    assert "not the one being dragged" in error

    nested.cancel_drag()
    success, _ = nested.update_volume("Crystal", {"position": {"x": 1}})
    assert success

def test_mother_candidates(nested):
    candidates, _ = nested.get_mother_candidates("Det")
    assert candidates == ["World"]
    candidates, _ = nested.get_mother_candidates("Crystal")
    assert candidates == ["World", "Det"]

def test_diagnostics_for_broken_document(pm):
    doc = {
        "world": {"name": "World"},
        "volumes": [
            {"name": "A", "type": "box", "mother_volume": "B"},
            {"name": "B", "type": "box", "mother_volume": "A"},
            {"name": "Lost", "type": "box", "mother_volume": "Gone"},
        ]
    }
    success, _ = pm.load_project_from_json_string(json.dumps(doc))
    assert success
    found = {(d['kind'], d['volume']) for d in pm.get_diagnostics()}
    assert ("cyclic_parentage", "A") in found
    assert ("cyclic_parentage", "B") in found
    assert ("unresolved_parent", "Lost") in found
    # Still renders everything
    assert len(pm.get_scene_description()) == 3

def test_json_round_trip_and_legacy_keys(pm):
    doc = {
        "project_name": "calorimeter",
        "geometry": {
            "world": {"name": "World", "size": {"x": 500, "y": 500, "z": 500}},
            "volumes": [
                {"name": "U", "type": "union", "mother_volume": "World"},
                {"name": "Part", "type": "box", "mother_volume": "U",
                 "_is_boolean_component": True, "_boolean_parent": "U", "_boolean_operation": "union",
                 "size": {"x": 10, "y": 10, "z": 10}}
            ]
        }
    }
    success, error = pm.load_project_from_json_string(json.dumps(doc))
    assert success, error
    part = pm.current_geometry_state.get_volume("Part")
    assert part.is_boolean_component and part.boolean_parent == "U"
    assert part.dimensions['size'] == {"x": 10, "y": 10, "z": 10}

    saved = json.loads(pm.save_project_to_json_string())
    assert saved['project_name'] == "calorimeter"
    assert saved['geometry']['volumes'][1]['boolean_operation'] == "union"

def test_load_rejects_garbage(pm):
    success, error = pm.load_project_from_json_string("{not json")
    assert not success and "Invalid JSON" in error

    success, error = pm.load_project_from_json_string(json.dumps({"volumes": [{"type": "box"}]}))
    assert not success and "missing 'name'" in error
