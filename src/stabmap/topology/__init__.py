from stabmap.topology._topology import (
    is_connected,
    mosaic_data_topology,
    shortest_paths_from,
    topology_components,
)

__all__ = [
    "mosaic_data_topology",
    "topology_components",
    "is_connected",
    "shortest_paths_from",
]
