# g4editor/project_manager.py
import copy
import json

from .geometry_types import GeometryState, Volume, WORLD_NAME, VOLUME_TYPES, BOOLEAN_OPERATIONS
from .hierarchy import HierarchyIndex, volume_key
from .transforms import TransformEngine
from .drag import DragSession


class ProjectManager:
    def __init__(self, expression_evaluator):
        self.current_geometry_state = GeometryState()

        # Give the project manager an evaluator instance
        self.expression_evaluator = expression_evaluator

        # Derived lookups, rebuilt from scratch after every change
        self.hierarchy = None
        self.transform_engine = None

        # --- History Management ---
        self.history = []
        self.history_index = -1
        self.MAX_HISTORY_SIZE = 50 # Cap the undo stack
        self._is_transaction_open = False
        self._pre_transaction_state = None

        # --- Interactive drag (at most one at a time) ---
        self.active_drag = None
        self._drag_owns_transaction = False

        self.project_name = "untitled"
        self.is_changed = False

        self._rebuild_index()

    def _rebuild_index(self):
        state = self.current_geometry_state
        self.hierarchy = HierarchyIndex.build(state.volumes, state.world_name)
        self.transform_engine = TransformEngine(state.volumes, state.world_name, index=self.hierarchy)

    def create_empty_project(self, world_size=None):
        """Resets to a project with only the world frame."""
        self.current_geometry_state = GeometryState(WORLD_NAME, world_size)
        self.project_name = "untitled"
        self.active_drag = None
        self._drag_owns_transaction = False
        self._is_transaction_open = False
        self._pre_transaction_state = None
        self.history = []
        self.history_index = -1
        self._rebuild_index()
        self._capture_history_state("New project")
        self.is_changed = False

    # --- History ---
    def begin_transaction(self):
        """Starts a transaction, preventing intermediate history captures."""
        if not self._is_transaction_open:
            print("Beginning transaction...")
            self._is_transaction_open = True
            # Store the state *before* the transaction starts, in case we need to revert.
            self._pre_transaction_state = GeometryState.from_dict(self.current_geometry_state.to_dict())

    def end_transaction(self, description=""):
        """Ends a transaction and captures the final state to the history stack."""
        if self._is_transaction_open:
            print("Ending transaction.")
            self._is_transaction_open = False
            self._pre_transaction_state = None
            self._capture_history_state(description)

    def close_transaction_if_unchanged(self, description=""):
        """
        Ends a transaction, recording history only if the state differs from
        what it was when the transaction began.
        """
        if self._is_transaction_open:
            changed = self.current_geometry_state.to_dict() != self._pre_transaction_state.to_dict()
            self._is_transaction_open = False
            self._pre_transaction_state = None
            if changed:
                self._capture_history_state(description)

    def _capture_history_state(self, description=""):
        """Captures the current state for undo/redo."""
        if self._is_transaction_open:
            return # Do nothing if a transaction is in progress

        # If we undo and then make a change, invalidate the "redo" stack
        if self.history_index < len(self.history) - 1:
            self.history = self.history[:self.history_index + 1]

        self.history.append(GeometryState.from_dict(self.get_full_project_state_dict()))

        if len(self.history) > self.MAX_HISTORY_SIZE:
            self.history.pop(0)

        self.history_index = len(self.history) - 1
        self.is_changed = True

    def _restore_history_state(self):
        self.current_geometry_state = GeometryState.from_dict(self.history[self.history_index].to_dict())
        self._rebuild_index()

    def undo(self):
        """Reverts to the previous state in history."""
        if self.active_drag:
            return False, "Cannot undo while a drag is in progress."
        if self.history_index > 0:
            self.history_index -= 1
            self._restore_history_state()
            return True, "Undo successful."
        return False, "Nothing to undo."

    def redo(self):
        """Applies the next state in history."""
        if self.active_drag:
            return False, "Cannot redo while a drag is in progress."
        if self.history_index < len(self.history) - 1:
            self.history_index += 1
            self._restore_history_state()
            return True, "Redo successful."
        return False, "Nothing to redo."

    def get_history_status(self):
        return {
            "can_undo": self.history_index > 0,
            "can_redo": self.history_index < len(self.history) - 1
        }

    # --- Helpers ---
    def _generate_unique_name(self, base_name, existing_names):
        if base_name not in existing_names:
            return base_name
        i = 1
        while f"{base_name}_{i}" in existing_names:
            i += 1
        return f"{base_name}_{i}"

    def _next_display_name(self, volume_type):
        # Format: Type_Number (e.g., Box_1, Sphere_2)
        count = sum(1 for v in self.current_geometry_state.volumes if v.type == volume_type)
        return f"{volume_type.capitalize()}_{count + 1}"

    def _evaluate_vector(self, vector_data, existing=None):
        """
        Evaluates a partial {x, y, z[, unit]} input on top of an existing record.
        Components may be numbers or expression strings like "pi/2".
        """
        result = copy.deepcopy(existing) if isinstance(existing, dict) else {'x': 0.0, 'y': 0.0, 'z': 0.0}
        if vector_data is None:
            return result, None
        if not isinstance(vector_data, dict):
            return None, f"Expected an object with x, y, z but got {vector_data!r}"

        for key, value in vector_data.items():
            if key == 'unit':
                result['unit'] = value
                continue
            if key not in ('x', 'y', 'z'):
                continue
            success, num = self.expression_evaluator.evaluate_number(value)
            if not success:
                return None, f"Invalid value for '{key}': {num}"
            result[key] = num
        return result, None

    def _is_dragged(self, name):
        return self.active_drag is not None and self.active_drag.volume_name == name

    # --- Volumes ---
    def add_volume(self, name_suggestion, volume_type, position=None, rotation=None,
                   mother_volume=WORLD_NAME, dimensions=None, boolean=None):
        """Adds a volume. Returns (volume_dict, None) or (None, error_message)."""
        state = self.current_geometry_state
        if volume_type not in VOLUME_TYPES:
            return None, f"Unknown volume type '{volume_type}'."

        mother_volume = mother_volume or state.world_name
        if mother_volume != state.world_name and state.get_volume(mother_volume) is None:
            return None, f"Mother volume '{mother_volume}' not found."

        eval_position, error = self._evaluate_vector(position)
        if error: return None, error
        eval_rotation, error = self._evaluate_vector(rotation)
        if error: return None, error

        base_name = name_suggestion or volume_type
        name = self._generate_unique_name(base_name, state.names() | {state.world_name})

        new_volume = Volume(name, volume_type, eval_position, eval_rotation, mother_volume,
                            copy.deepcopy(dimensions) if dimensions else {},
                            self._next_display_name(volume_type))
        if boolean:
            operation = boolean.get('operation', 'union')
            if operation not in BOOLEAN_OPERATIONS:
                return None, f"Unknown boolean operation '{operation}'."
            new_volume.is_boolean_component = True
            new_volume.boolean_parent = boolean.get('parent')
            new_volume.boolean_operation = operation

        state.add_volume(new_volume)
        self._rebuild_index()
        self._capture_history_state(f"Added volume {name}")
        return new_volume.to_dict(), None

    def update_volume(self, name, changes):
        """
        Applies a partial update to one volume. Position, rotation and dimensions
        are merged key by key; a new name is propagated to all references.
        """
        state = self.current_geometry_state
        volume = state.get_volume(name)
        if volume is None:
            return False, f"Volume '{name}' not found."
        if self._is_dragged(name):
            return False, f"Volume '{name}' is being dragged."

        new_position, error = self._evaluate_vector(changes.get('position'), volume.position)
        if error: return False, error
        new_rotation, error = self._evaluate_vector(changes.get('rotation'), volume.rotation)
        if error: return False, error

        new_name = changes.get('name', name)
        if new_name != name:
            if not new_name:
                return False, "Volume name cannot be empty."
            if new_name in state.names() or new_name == state.world_name:
                return False, f"Name '{new_name}' is already in use."

        new_mother = changes.get('mother_volume', volume.mother_volume) or state.world_name
        if new_mother != volume.mother_volume:
            if new_mother in (name, new_name):
                return False, f"Volume '{name}' cannot be its own mother."
            if new_mother != state.world_name and state.get_volume(new_mother) is None:
                return False, f"Mother volume '{new_mother}' not found."
            if not volume.is_boolean_component and self.hierarchy.would_create_cycle(name, new_mother):
                return False, f"Placing '{name}' inside '{new_mother}' would create a circular hierarchy."

        if 'type' in changes and changes['type'] not in VOLUME_TYPES:
            return False, f"Unknown volume type '{changes['type']}'."

        # All checks passed; apply.
        volume.position = new_position
        volume.rotation = new_rotation
        volume.mother_volume = new_mother
        if 'type' in changes: volume.type = changes['type']
        if 'g4name' in changes: volume.g4name = changes['g4name']
        if 'dimensions' in changes and isinstance(changes['dimensions'], dict):
            volume.dimensions.update(copy.deepcopy(changes['dimensions']))

        if new_name != name:
            volume.name = new_name
            for other in state.volumes:
                if other is volume:
                    continue
                if other.mother_volume == name:
                    other.mother_volume = new_name
                if other.boolean_parent == name:
                    other.boolean_parent = new_name

        self._rebuild_index()
        self._capture_history_state(f"Updated volume {new_name}")
        return True, None

    def delete_volume(self, name):
        """Removes a volume together with all of its descendants."""
        state = self.current_geometry_state
        if state.get_volume(name) is None:
            return False, f"Volume '{name}' not found."
        if self.active_drag is not None:
            return False, "Cannot delete while a drag is in progress."

        to_remove = {name} | {v.name for v in self.hierarchy.find_all_descendants(name)}
        print(f"Removing volume {name} with {len(to_remove) - 1} descendants")
        state.volumes = [v for v in state.volumes if v.name not in to_remove]

        # Components whose boolean parent is gone become plain volumes
        for other in state.volumes:
            if other.boolean_parent in to_remove:
                other.is_boolean_component = False
                other.boolean_parent = None
                other.boolean_operation = None

        self._rebuild_index()
        self._capture_history_state(f"Deleted volume {name}")
        return True, sorted(to_remove)

    # --- Transforms ---
    def get_world_pose(self, name):
        if self.current_geometry_state.get_volume(name) is None:
            return None, f"Volume '{name}' not found."
        return self.transform_engine.resolve_world_pose(name), None

    def world_to_local(self, name, world_position, world_rotation):
        if self.current_geometry_state.get_volume(name) is None:
            return None, f"Volume '{name}' not found."
        return self.transform_engine.convert_world_to_local(name, world_position, world_rotation), None

    def get_mother_candidates(self, name=None):
        if name is not None and self.current_geometry_state.get_volume(name) is None:
            return None, f"Volume '{name}' not found."
        return self.hierarchy.valid_mother_candidates(name), None

    def get_diagnostics(self):
        """Resolves every volume once and returns whatever problems were recovered."""
        for volume in self.current_geometry_state.volumes:
            self.transform_engine.resolve_world_pose(volume)
        return [d.to_dict() for d in self.transform_engine.diagnostics]

    def get_scene_description(self):
        """One render record per volume, with its resolved world pose."""
        scene = []
        for i, volume in enumerate(self.current_geometry_state.volumes):
            key = volume_key(i)
            pose = self.transform_engine.resolve_world_pose(volume)
            scene.append({
                "id": volume.id,
                "key": key,
                "name": volume.name,
                "display_name": volume.display_name,
                "type": volume.type,
                "parent_key": self.hierarchy.parent_key(volume),
                "is_mother_volume": self.hierarchy.is_mother(volume.name),
                "is_assembly_marker": volume.is_assembly,
                "is_boolean_component": volume.is_boolean_component,
                "world_position": pose['position'],
                "world_rotation": pose['rotation'],
                "dimensions": copy.deepcopy(volume.dimensions)
            })
        return scene

    # --- Drag ---
    def begin_drag(self, name):
        if self.active_drag is not None:
            return None, f"A drag of '{self.active_drag.volume_name}' is already in progress."
        if self.current_geometry_state.get_volume(name) is None:
            return None, f"Volume '{name}' not found."

        # A transaction the caller already opened stays theirs to close
        self._drag_owns_transaction = not self._is_transaction_open
        self.begin_transaction()
        self.active_drag = DragSession(self.current_geometry_state, name, self.current_geometry_state.world_name)
        return self.active_drag.mode, None

    def _finish_drag(self, description, committed):
        self.active_drag = None
        self._rebuild_index()
        if not self._drag_owns_transaction:
            return
        self._drag_owns_transaction = False
        if committed:
            self.end_transaction(description)
        else:
            self.close_transaction_if_unchanged(description)

    def _check_drag(self, name):
        if self.active_drag is None:
            return "No drag in progress."
        if name is not None and name != self.active_drag.volume_name:
            return f"Volume '{name}' is not the one being dragged."
        return None

    def update_drag(self, name, world_position, world_rotation):
        error = self._check_drag(name)
        if error: return None, error
        written = self.active_drag.preview_pose(world_position, world_rotation)
        if written is not None:
            self._rebuild_index()
        return written, None

    def end_drag(self, name, world_position=None, world_rotation=None):
        error = self._check_drag(name)
        if error: return None, error

        drag = self.active_drag
        local = drag.commit_pose(world_position, world_rotation)
        if local is None:
            self._finish_drag("Edits during drag", committed=False)
            return None, None

        self._finish_drag(f"Moved volume {drag.volume_name}", committed=True)
        return local, None

    def cancel_drag(self, name=None):
        error = self._check_drag(name)
        if error: return False, error
        self.active_drag.cancel()
        self._finish_drag("Edits during drag", committed=False)
        return True, None

    # --- Documents ---
    def get_full_project_state_dict(self):
        """
        The project as a plain dict. While a drag is running the dragged record is
        reported with its pre-drag pose, since preview writes may be in world frame.
        """
        data = self.current_geometry_state.to_dict()
        if self.active_drag is not None:
            dragged = self.active_drag.volume_name
            data['volumes'] = [
                self.active_drag.committed_dict() if v['name'] == dragged else v
                for v in data['volumes']
            ]
        return data

    def save_project_to_json_string(self):
        data = {"project_name": self.project_name, "geometry": self.get_full_project_state_dict()}
        return json.dumps(data, indent=2)

    def load_project_from_json_string(self, json_string):
        """Replaces the current project. Returns (success, error_message)."""
        try:
            data = json.loads(json_string)
        except json.JSONDecodeError as e:
            return False, f"Invalid JSON: {e}"
        if not isinstance(data, dict):
            return False, "Project document must be a JSON object."

        geometry = data.get('geometry', data)
        try:
            new_state = GeometryState.from_dict(geometry)
        except (ValueError, TypeError, AttributeError) as e:
            return False, f"Invalid project document: {e}"

        self.current_geometry_state = new_state
        self.project_name = data.get('project_name', "untitled")
        self.active_drag = None
        self._drag_owns_transaction = False
        self._is_transaction_open = False
        self._pre_transaction_state = None
        self._rebuild_index()
        self.history = []
        self.history_index = -1
        self._capture_history_state("Loaded project")
        self.is_changed = False
        return True, None
