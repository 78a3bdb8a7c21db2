# FILE: g4editor/hierarchy.py

from .geometry_types import WORLD_NAME

ROOT_KEY = "world"


def volume_key(index):
    return f"volume-{index}"


class HierarchyIndex:
    """
    Name lookup and parent -> children grouping for a flat list of volumes.

    The index holds no opinion about cycles; it only groups. Rebuild it whenever
    the volume list changes.
    """
    def __init__(self, volumes, name_to_index, children_of, world_name=WORLD_NAME):
        self.volumes = volumes
        self.name_to_index = name_to_index
        self.children_of = children_of
        self.world_name = world_name

    @classmethod
    def build(cls, volumes, world_name=WORLD_NAME):
        volumes = list(volumes)
        name_to_index = {}
        for i, volume in enumerate(volumes):
            name_to_index[volume.name] = i

        children_of = {ROOT_KEY: []}
        for i in range(len(volumes)):
            children_of[volume_key(i)] = []

        instance = cls(volumes, name_to_index, children_of, world_name)
        for i, volume in enumerate(volumes):
            children_of[instance.parent_key(volume)].append({
                'volume': volume,
                'key': volume_key(i),
                'index': i
            })
        return instance

    def parent_key(self, volume):
        if volume.has_root_mother(self.world_name):
            return ROOT_KEY
        parent_index = self.name_to_index.get(volume.mother_volume)
        if parent_index is None:
            # Orphan: show it under the root rather than dropping it
            return ROOT_KEY
        return volume_key(parent_index)

    def get(self, name):
        index = self.name_to_index.get(name)
        if index is None:
            return None
        return self.volumes[index]

    def key_for(self, name):
        index = self.name_to_index.get(name)
        if index is None:
            return None
        return volume_key(index)

    def children(self, name):
        key = self.key_for(name)
        if key is None:
            return []
        return self.children_of.get(key, [])

    def has_children(self, name):
        return len(self.children(name)) > 0

    def find_all_descendants(self, name):
        """Depth-first list of every volume below `name`. Safe against cycles."""
        descendants = []
        visited = {name}
        stack = [name]
        while stack:
            current = stack.pop()
            # Reverse so that the first child is processed first
            for entry in reversed(self.children(current)):
                child = entry['volume']
                if child.name in visited:
                    continue
                visited.add(child.name)
                descendants.append(child)
                stack.append(child.name)
        return descendants

    # --- Drag classification ---
    def is_mother(self, name):
        return self.has_children(name)

    def is_daughter(self, name):
        volume = self.get(name)
        return volume is not None and not volume.has_root_mother(self.world_name)

    def is_intermediate(self, name):
        return self.is_mother(name) and self.is_daughter(name)

    # --- Mother selection ---
    def would_create_cycle(self, name, new_mother):
        """True if placing `name` inside `new_mother` makes the mother chain loop."""
        if not new_mother or new_mother == self.world_name:
            return False
        if new_mother == name:
            return True
        current = self.get(new_mother)
        seen = set()
        while current is not None and not current.has_root_mother(self.world_name):
            if current.name in seen:
                # The chain above new_mother already loops without passing through name
                return False
            seen.add(current.name)
            if current.mother_volume == name:
                return True
            current = self.get(current.mother_volume)
        return False

    def valid_mother_candidates(self, name=None):
        """
        Names that `name` may be placed in: the root first, then every volume
        except `name` itself and its descendants, ordered by display name.
        """
        excluded = set()
        if name is not None:
            excluded.add(name)
            excluded.update(v.name for v in self.find_all_descendants(name))

        candidates = [v for v in self.volumes if v.name not in excluded]
        candidates.sort(key=lambda v: v.display_name or '')
        return [self.world_name] + [v.name for v in candidates]
