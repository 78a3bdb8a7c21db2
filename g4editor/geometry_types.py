# FILE: g4editor/geometry_types.py

import copy
import math
import uuid # For unique IDs

# Name of the root frame. Volumes without a mother, or with this mother, sit in the world frame.
WORLD_NAME = "World"

VOLUME_TYPES = (
    "box", "cylinder", "sphere", "trapezoid", "torus",
    "ellipsoid", "polycone", "assembly", "union"
)
BOOLEAN_OPERATIONS = ("union", "subtract")

# Internal units are mm for length, rad for angle. Unit tags on records are display metadata only.
DEFAULT_LUNIT = "mm"
DEFAULT_AUNIT = "rad"

# Keys handled explicitly by Volume; everything else is type-specific payload.
_VOLUME_KEYS = {
    "id", "name", "type", "g4name", "position", "rotation", "mother_volume",
    "dimensions", "is_boolean_component", "boolean_parent", "boolean_operation",
    "_is_boolean_component", "_boolean_parent", "_boolean_operation", "displayName"
}


def _finite_float(value):
    """Returns value as a finite float, or None if that is not possible."""
    if value is None or isinstance(value, bool):
        return None
    try:
        num = float(value)
    except (ValueError, TypeError):
        return None
    if not math.isfinite(num):
        return None
    return num


def read_vector(data, problems=None):
    """
    Reads an {x, y, z} record into plain floats.

    Missing or non-numeric components default to 0.0 so that NaN never reaches
    the transform math. If a `problems` list is passed, the offending axis names
    are appended to it. A missing record (None) is a zero vector and is not a problem.
    """
    if data is None:
        return {'x': 0.0, 'y': 0.0, 'z': 0.0}
    if not isinstance(data, dict):
        if problems is not None:
            problems.extend(['x', 'y', 'z'])
        return {'x': 0.0, 'y': 0.0, 'z': 0.0}

    result = {}
    for axis in ('x', 'y', 'z'):
        num = _finite_float(data.get(axis))
        if num is None:
            if problems is not None:
                problems.append(axis)
            num = 0.0
        result[axis] = num
    return result


class Volume:
    """
    One placed solid or container.

    Position and rotation are expressed in the frame of `mother_volume`; rotation
    angles are an intrinsic X, then Y, then Z sequence in radians.
    """
    def __init__(self, name, volume_type, position=None, rotation=None,
                 mother_volume=WORLD_NAME, dimensions=None, g4name=None):
        self.id = str(uuid.uuid4())
        self.name = name
        self.type = volume_type
        self.g4name = g4name
        self.position = position if position is not None else {'x': 0.0, 'y': 0.0, 'z': 0.0}
        self.rotation = rotation if rotation is not None else {'x': 0.0, 'y': 0.0, 'z': 0.0}
        self.mother_volume = mother_volume
        # Solid-specific fields (size, radius, zSections, ...). Not used by the transform code.
        self.dimensions = dimensions if dimensions is not None else {}

        # Boolean linkage, only meaningful for the CSG preview
        self.is_boolean_component = False
        self.boolean_parent = None
        self.boolean_operation = None

        # Set while an intermediate volume is being dragged: position/rotation hold
        # raw world coordinates instead of mother-local ones. Never serialized.
        self.uses_world_coordinates = False

    @property
    def display_name(self):
        return self.g4name or self.name

    @property
    def is_assembly(self):
        return self.type == "assembly"

    def has_root_mother(self, world_name=WORLD_NAME):
        return not self.mother_volume or self.mother_volume == world_name

    def to_dict(self):
        return {
            "id": self.id, "name": self.name, "type": self.type,
            "g4name": self.g4name,
            "position": copy.deepcopy(self.position),
            "rotation": copy.deepcopy(self.rotation),
            "mother_volume": self.mother_volume,
            "dimensions": copy.deepcopy(self.dimensions),
            "is_boolean_component": self.is_boolean_component,
            "boolean_parent": self.boolean_parent,
            "boolean_operation": self.boolean_operation
        }

    @classmethod
    def from_dict(cls, data):
        name = data.get('name')
        if not name:
            raise ValueError("Volume record is missing 'name'")

        # Older editor documents keep solid parameters at the top level.
        dimensions = copy.deepcopy(data.get('dimensions')) or {}
        for key, value in data.items():
            if key not in _VOLUME_KEYS and not key.startswith('_'):
                dimensions.setdefault(key, copy.deepcopy(value))

        instance = cls(
            name,
            data.get('type', 'box'),
            copy.deepcopy(data.get('position')),
            copy.deepcopy(data.get('rotation')),
            data.get('mother_volume', WORLD_NAME),
            dimensions,
            data.get('g4name', data.get('displayName'))
        )
        instance.id = data.get('id', str(uuid.uuid4()))
        instance.is_boolean_component = bool(
            data.get('is_boolean_component', data.get('_is_boolean_component', False))
        )
        instance.boolean_parent = data.get('boolean_parent', data.get('_boolean_parent'))
        instance.boolean_operation = data.get('boolean_operation', data.get('_boolean_operation'))
        return instance


class GeometryState:
    """Holds the world frame and the flat, ordered list of volumes."""
    def __init__(self, world_name=WORLD_NAME, world_size=None):
        self.world = {
            "name": world_name,
            "size": world_size if world_size is not None else {'x': 2000.0, 'y': 2000.0, 'z': 2000.0}
        }
        self.volumes = [] # list of Volume objects; order is significant for index keys

    @property
    def world_name(self):
        return self.world["name"]

    def add_volume(self, volume):
        self.volumes.append(volume)

    def get_volume(self, name):
        for volume in self.volumes:
            if volume.name == name:
                return volume
        return None

    def index_of(self, name):
        for i, volume in enumerate(self.volumes):
            if volume.name == name:
                return i
        return -1

    def names(self):
        return {volume.name for volume in self.volumes}

    def to_dict(self):
        return {
            "world": copy.deepcopy(self.world),
            "volumes": [volume.to_dict() for volume in self.volumes]
        }

    @classmethod
    def from_dict(cls, data):
        world = data.get('world') or {}
        instance = cls(world.get('name', WORLD_NAME), copy.deepcopy(world.get('size')))
        for vol_data in data.get('volumes', []):
            instance.volumes.append(Volume.from_dict(vol_data))
        return instance
