# FILE: g4editor/transforms.py
"""
World/local placement math for the volume hierarchy.

Rotations follow the Geant4 placement convention: rotate about X, then about the
new Y, then about the new Z (intrinsic XYZ). As a matrix that is Rx @ Ry @ Rz, which
is what scipy calls 'XYZ' (upper case = intrinsic). The generic extrinsic order
would give Rz @ Ry @ Rx and place rotated daughters in the wrong spot.
"""

import math
import numpy as np
from scipy.spatial.transform import Rotation as R

from .geometry_types import WORLD_NAME, DEFAULT_LUNIT, DEFAULT_AUNIT, Volume, read_vector
from .hierarchy import HierarchyIndex

# cos(pitch) below this means the X and Z axes coincide.
GIMBAL_LOCK_EPSILON = 1e-12


def _vec_to_array(v):
    return np.array([v['x'], v['y'], v['z']], dtype=float)


def _array_to_vec(a):
    return {'x': float(a[0]), 'y': float(a[1]), 'z': float(a[2])}


def euler_xyz_to_matrix(rotation):
    """3x3 rotation matrix for an intrinsic X->Y->Z rotation dict (radians)."""
    rx, ry, rz = rotation['x'], rotation['y'], rotation['z']

    Rx = np.array([[1, 0, 0], [0, math.cos(rx), -math.sin(rx)], [0, math.sin(rx), math.cos(rx)]])
    Ry = np.array([[math.cos(ry), 0, math.sin(ry)], [0, 1, 0], [-math.sin(ry), 0, math.cos(ry)]])
    Rz = np.array([[math.cos(rz), -math.sin(rz), 0], [math.sin(rz), math.cos(rz), 0], [0, 0, 1]])

    # Order matters: X first, then Y about the new axis, then Z.
    return Rx @ Ry @ Rz


def euler_xyz_to_rotation(rotation):
    """scipy Rotation (quaternion backed) for the same intrinsic X->Y->Z sequence."""
    return R.from_euler('XYZ', [rotation['x'], rotation['y'], rotation['z']])


def matrix_to_euler_xyz(matrix):
    """
    Reads intrinsic XYZ angles back out of a rotation matrix.

    At the Y = +-90 deg singularity X and Z describe the same axis, so Z is pinned
    to zero and the whole remaining rotation is put on X. Only the true
    singularity takes that branch; pitches merely close to it keep their Z.
    """
    m = np.asarray(matrix, dtype=float)
    cos_y = math.hypot(m[0, 0], m[0, 1])
    y = math.atan2(m[0, 2], cos_y)
    if cos_y >= GIMBAL_LOCK_EPSILON:
        x = math.atan2(-m[1, 2], m[2, 2])
        z = math.atan2(-m[0, 1], m[0, 0])
    else:
        x = math.atan2(m[2, 1], m[1, 1])
        z = 0.0
    return {'x': x, 'y': y, 'z': z}


def rotation_to_euler_xyz(rotation):
    return matrix_to_euler_xyz(rotation.as_matrix())


def placement_matrix(position, rotation):
    """4x4 rigid transform: translate by position after rotating by rotation."""
    M = np.eye(4)
    M[:3, :3] = euler_xyz_to_matrix(rotation)
    M[:3, 3] = _vec_to_array(position)
    return M


def invert_rigid(matrix):
    """Inverse of a rotation + translation matrix (unit scale assumed)."""
    Rm = matrix[:3, :3]
    t = matrix[:3, 3]
    inv = np.eye(4)
    inv[:3, :3] = Rm.T
    inv[:3, 3] = -Rm.T @ t
    return inv


class TransformDiagnostic:
    """A recovered problem found while resolving a volume's placement."""
    KINDS = ("unresolved_parent", "cyclic_parentage", "self_reference", "malformed_numeric")

    def __init__(self, kind, volume_name, message):
        self.kind = kind
        self.volume_name = volume_name
        self.message = message

    def key(self):
        return (self.kind, self.volume_name)

    def to_dict(self):
        return {"kind": self.kind, "volume": self.volume_name, "message": self.message}

    def __repr__(self):
        return f"TransformDiagnostic({self.kind!r}, {self.volume_name!r})"


class TransformEngine:
    """
    Forward (local -> world) and inverse (world -> local) placement transforms.

    Never raises for malformed scene data. Broken references, cycles and bad
    numbers degrade to "this volume sits directly in the world with its own
    local pose", and a diagnostic is recorded.
    """
    def __init__(self, volumes, world_name=WORLD_NAME, index=None):
        self.volumes = [v if isinstance(v, Volume) else Volume.from_dict(v) for v in volumes]
        self.world_name = world_name
        if index is None or index.volumes != self.volumes:
            index = HierarchyIndex.build(self.volumes, world_name)
        self.index = index
        self._diagnostics = {}

    # --- Diagnostics ---
    @property
    def diagnostics(self):
        return list(self._diagnostics.values())

    def _report(self, kind, volume_name, message):
        diag = TransformDiagnostic(kind, volume_name, message)
        if diag.key() in self._diagnostics:
            return
        self._diagnostics[diag.key()] = diag
        print(f"Warning: {message}")

    # --- Helpers ---
    def _lookup(self, volume_ref):
        if isinstance(volume_ref, Volume):
            return volume_ref
        if isinstance(volume_ref, dict):
            found = self.index.get(volume_ref.get('name'))
            return found if found is not None else Volume.from_dict(volume_ref)
        return self.index.get(volume_ref)

    def local_pose(self, volume):
        """The volume's own position/rotation as clean float dicts."""
        problems = []
        position = read_vector(volume.position, problems)
        rotation = read_vector(volume.rotation, problems)
        if problems:
            self._report(
                "malformed_numeric", volume.name,
                f"Volume '{volume.name}' has missing or non-numeric placement values; using 0 instead."
            )
        return {'position': position, 'rotation': rotation}

    def _on_own_cycle(self, volume):
        """True if following mother links from `volume` leads back to it."""
        seen = set()
        current = volume
        while current is not None and not current.has_root_mother(self.world_name):
            if current.mother_volume == volume.name:
                return True
            if current.name in seen:
                # Loops further up without including this volume
                return False
            seen.add(current.name)
            current = self.index.get(current.mother_volume)
        return False

    # --- Forward transform ---
    def compose(self, parent_pose, local_position, local_rotation):
        """Places a local pose inside a parent's world pose."""
        parent_matrix = placement_matrix(parent_pose['position'], parent_pose['rotation'])
        local_point = np.append(_vec_to_array(local_position), 1.0)
        world_position = (parent_matrix @ local_point)[:3]

        # Parent orientation first, local rotation layered on top: q_world = q_parent * q_local
        q_world = euler_xyz_to_rotation(parent_pose['rotation']) * euler_xyz_to_rotation(local_rotation)

        return {
            'position': _array_to_vec(world_position),
            'rotation': rotation_to_euler_xyz(q_world)
        }

    def resolve_world_pose(self, volume_ref, visited=None):
        """
        World position and rotation of a volume, following its mother chain.

        `visited` holds the names already on the current resolution path; it is
        passed down explicitly and never kept between calls.
        """
        volume = self._lookup(volume_ref)
        if volume is None:
            self._report("unresolved_parent", str(volume_ref),
                         f"Volume '{volume_ref}' does not exist; using an identity pose.")
            return {'position': {'x': 0.0, 'y': 0.0, 'z': 0.0},
                    'rotation': {'x': 0.0, 'y': 0.0, 'z': 0.0}}

        if visited is None:
            visited = frozenset()

        local = self.local_pose(volume)

        if volume.name in visited:
            self._report("cyclic_parentage", volume.name,
                         f"Circular mother reference detected at volume '{volume.name}'.")
            return local

        if volume.uses_world_coordinates or volume.has_root_mother(self.world_name):
            return local

        if volume.mother_volume == volume.name:
            self._report("self_reference", volume.name,
                         f"Volume '{volume.name}' has itself as mother; placing it in the world.")
            return local

        parent = self.index.get(volume.mother_volume)
        if parent is None:
            self._report("unresolved_parent", volume.name,
                         f"Mother volume '{volume.mother_volume}' of '{volume.name}' not found; placing it in the world.")
            return local

        if self._on_own_cycle(volume):
            self._report("cyclic_parentage", volume.name,
                         f"Volume '{volume.name}' is part of a circular mother chain; placing it in the world.")
            return local

        # Assemblies are ordinary frames here: their own chain is resolved the same way.
        parent_world = self.resolve_world_pose(parent, visited | {volume.name})
        return self.compose(parent_world, local['position'], local['rotation'])

    # --- Inverse transform ---
    def parent_world_pose(self, volume):
        """World pose of the frame `volume` is expressed in, or None for the root frame."""
        if volume.has_root_mother(self.world_name):
            return None
        parent = self.index.get(volume.mother_volume)
        if parent is None:
            self._report("unresolved_parent", volume.name,
                         f"Mother volume '{volume.mother_volume}' of '{volume.name}' not found; using world coordinates.")
            return None
        if parent.name == volume.name:
            self._report("self_reference", volume.name,
                         f"Volume '{volume.name}' has itself as mother; using world coordinates.")
            return None
        if self._on_own_cycle(volume):
            self._report("cyclic_parentage", volume.name,
                         f"Volume '{volume.name}' is part of a circular mother chain; using world coordinates.")
            return None
        return self.resolve_world_pose(parent, frozenset({volume.name}))

    def convert_world_to_local(self, volume_ref, world_position, world_rotation):
        """
        Expresses a world pose in the frame of the volume's mother.

        This is the exact inverse of compose() for the same parent, which is what
        keeps drag-to-place stable. The returned position/rotation carry the
        volume's unit tags as metadata; the numbers are always mm and rad.
        """
        volume = self._lookup(volume_ref)
        world_position = read_vector(world_position)
        world_rotation = read_vector(world_rotation)

        if volume is None:
            self._report("unresolved_parent", str(volume_ref),
                         f"Volume '{volume_ref}' does not exist; returning the world pose unchanged.")
            return self._with_units(None, world_position, world_rotation)

        parent_world = self.parent_world_pose(volume)
        if parent_world is None:
            return self._with_units(volume, world_position, world_rotation)

        parent_matrix = np.eye(4)
        q_parent = euler_xyz_to_rotation(parent_world['rotation'])
        parent_matrix[:3, :3] = q_parent.as_matrix()
        parent_matrix[:3, 3] = _vec_to_array(parent_world['position'])

        world_point = np.append(_vec_to_array(world_position), 1.0)
        local_position = (invert_rigid(parent_matrix) @ world_point)[:3]

        q_local = q_parent.inv() * euler_xyz_to_rotation(world_rotation)

        return self._with_units(volume, _array_to_vec(local_position), rotation_to_euler_xyz(q_local))

    @staticmethod
    def _with_units(volume, position, rotation):
        lunit, aunit = DEFAULT_LUNIT, DEFAULT_AUNIT
        if volume is not None:
            if isinstance(volume.position, dict):
                lunit = volume.position.get('unit') or DEFAULT_LUNIT
            if isinstance(volume.rotation, dict):
                aunit = volume.rotation.get('unit') or DEFAULT_AUNIT
        return {
            'position': dict(position, unit=lunit),
            'rotation': dict(rotation, unit=aunit)
        }


def _engine_for(all_volumes, name_to_index=None, world_name=WORLD_NAME):
    engine = TransformEngine(all_volumes, world_name)
    if name_to_index is not None and name_to_index != engine.index.name_to_index:
        print("Warning: Stale name index passed to transform lookup; using a rebuilt one.")
    return engine


def resolve_world_pose(volume_ref, all_volumes, name_to_index=None, world_name=WORLD_NAME):
    """World pose of one volume. Used by the renderer once per volume per frame."""
    return _engine_for(all_volumes, name_to_index, world_name).resolve_world_pose(volume_ref)


def convert_world_to_local(volume_ref, world_position, world_rotation, all_volumes,
                           name_to_index=None, world_name=WORLD_NAME):
    """Mother-local pose for a world pose reported by the viewer after a drag."""
    engine = _engine_for(all_volumes, name_to_index, world_name)
    return engine.convert_world_to_local(volume_ref, world_position, world_rotation)
