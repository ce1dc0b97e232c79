import math
from typing import List

from app.schemas.flash_cards import CardLayout, Scene, ScenePosition


def compute_layout(scenes: List[Scene]) -> CardLayout:
    """Place scenes on a grid in ``order``: two columns up to four scenes, three beyond."""
    count = len(scenes)
    columns = 2 if count <= 4 else 3
    rows = max(1, math.ceil(count / columns))

    positions = {}
    for index, scene in enumerate(sorted(scenes, key=lambda s: s.order)):
        positions[scene.id] = ScenePosition(row=index // columns, col=index % columns)

    return CardLayout(grid_columns=columns, grid_rows=rows, scene_positions=positions)
