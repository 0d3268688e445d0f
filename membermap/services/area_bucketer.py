import math
from typing import Tuple

from membermap.core.config import settings

class AreaBucketer:
    """
    Spatial quantization used to decide which markers would stack on the map.
    Default cell: GROUP_CELL_DEGREES (~3 km), coarser than the ~1.1 km privacy
    rounding so that near-duplicate city-level placements share a bucket.
    """

    @staticmethod
    def cell_key(lat: float, lon: float, cell_size: float = None) -> Tuple[int, int]:
        """
        Returns the grid cell containing the coordinate.

        Cell size guide (approximate at equator):
        - 0.01 degrees: ~1.1 km
        - 0.03 degrees: ~3.3 km
        - 0.1 degrees: ~11 km

        Args:
            lat: Latitude
            lon: Longitude
            cell_size: Cell edge in degrees; defaults to GROUP_CELL_DEGREES.

        Returns:
            (row, column) of the cell, e.g. (1330, 3880) for Beijing at 0.03.
        """
        cell = cell_size or settings.GROUP_CELL_DEGREES
        if cell <= 0 or not math.isfinite(cell):
            raise ValueError(f"cell_size must be a positive number, got {cell!r}")
        return round(lat / cell), round(lon / cell)
