# FILE: g4editor/drag.py

import copy

from .geometry_types import WORLD_NAME, read_vector
from .hierarchy import HierarchyIndex
from .transforms import TransformEngine

MODE_LEAF = "leaf"
MODE_MOTHER = "mother"
MODE_INTERMEDIATE = "intermediate"


class DragSession:
    """
    One interactive drag of a single volume.

    While the gesture is running, only this session writes the dragged record.
    preview_pose() is cheap and may leave raw world coordinates in the record;
    commit_pose() always stores the exact mother-local pose. cancel() puts the
    record back the way it was before the drag.
    """
    def __init__(self, state, volume_name, world_name=WORLD_NAME):
        self.state = state
        self.world_name = world_name
        self.volume = state.get_volume(volume_name)
        if self.volume is None:
            raise KeyError(f"Volume '{volume_name}' not found")

        index = HierarchyIndex.build(state.volumes, world_name)
        if index.is_intermediate(volume_name):
            self.mode = MODE_INTERMEDIATE
        elif index.is_mother(volume_name):
            self.mode = MODE_MOTHER
        else:
            self.mode = MODE_LEAF

        # Last committed values, restored on cancel
        self._original = {
            'position': copy.deepcopy(self.volume.position),
            'rotation': copy.deepcopy(self.volume.rotation),
            'uses_world_coordinates': self.volume.uses_world_coordinates
        }
        self.pending_pose = None
        self.active = True

    @property
    def volume_name(self):
        return self.volume.name

    def committed_dict(self):
        """The dragged record as it stood before the gesture began."""
        data = self.volume.to_dict()
        data['position'] = copy.deepcopy(self._original['position'])
        data['rotation'] = copy.deepcopy(self._original['rotation'])
        return data

    def _check_active(self):
        if not self.active:
            raise RuntimeError(f"Drag of '{self.volume.name}' has already ended")

    def _engine(self):
        return TransformEngine(self.state.volumes, self.world_name)

    def _write(self, position, rotation):
        # Keep display unit tags the record already had
        new_position = dict(position)
        new_rotation = dict(rotation)
        if isinstance(self._original['position'], dict) and 'unit' in self._original['position']:
            new_position['unit'] = self._original['position']['unit']
        if isinstance(self._original['rotation'], dict) and 'unit' in self._original['rotation']:
            new_rotation['unit'] = self._original['rotation']['unit']
        self.volume.position = new_position
        self.volume.rotation = new_rotation

    def preview_pose(self, world_position, world_rotation):
        """
        Applies an intermediate pose reported mid-gesture.

        Returns the record's new {'position', 'rotation'}, or None when nothing
        was written (plain leaf volumes wait for the commit).
        """
        self._check_active()
        world_position = read_vector(world_position)
        world_rotation = read_vector(world_rotation)
        self.pending_pose = {'position': world_position, 'rotation': world_rotation}

        if self.mode == MODE_LEAF:
            return None

        if self.mode == MODE_INTERMEDIATE:
            # Store world coordinates directly; flipping frames every event makes it jitter.
            self._write(world_position, world_rotation)
            self.volume.uses_world_coordinates = True
        else:
            # Mother volume: keep the record current so daughters follow along.
            local = self._engine().convert_world_to_local(self.volume, world_position, world_rotation)
            self._write(local['position'], local['rotation'])

        return {'position': dict(self.volume.position), 'rotation': dict(self.volume.rotation)}

    def commit_pose(self, world_position=None, world_rotation=None):
        """
        Ends the gesture and stores the final pose in mother-local coordinates.

        With no pose given, the last previewed pose is committed. Returns the
        written local pose, or None if there was nothing to commit.
        """
        self._check_active()
        if world_position is None and world_rotation is None:
            if self.pending_pose is None:
                self.cancel()
                return None
            world_position = self.pending_pose['position']
            world_rotation = self.pending_pose['rotation']

        # Parent poses never depend on the dragged volume, so drop the flag before converting.
        self.volume.uses_world_coordinates = False
        local = self._engine().convert_world_to_local(
            self.volume, read_vector(world_position), read_vector(world_rotation)
        )
        self._write(local['position'], local['rotation'])
        self.active = False
        return {'position': dict(self.volume.position), 'rotation': dict(self.volume.rotation)}

    def cancel(self):
        """Drops every preview write and closes the session."""
        self._check_active()
        self.volume.position = copy.deepcopy(self._original['position'])
        self.volume.rotation = copy.deepcopy(self._original['rotation'])
        self.volume.uses_world_coordinates = self._original['uses_world_coordinates']
        self.pending_pose = None
        self.active = False
